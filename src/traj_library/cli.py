"""
traj_library/cli.py - 命令行入口

    traj-library build  job.json --out lib/ [--plot-dir plots/] [--format v2]
    traj-library replay lib/ --robot ur5 [--cycles 10] [--seed 0]
    traj-library inspect lib/pickplan.bin [--dof 6]

job.json 格式::

    {
      "robot": "ur5",                      # 内置配置名，或完整机器人 dict
      "config": {...},                     # LibraryConfig 字段
      "pick_grid":  {"x": [lo, hi, n], "y": [...], "z": [...], "orientation": [x, y, z, w]},
      "place_grid": {...},
      "scene": {"obstacles": [{"min": [...], "max": [...], "name": "..."}]}
    }
"""

import sys
import json
import logging
import argparse
from pathlib import Path
from typing import Any, Dict, List, Optional

from arm_model.robot import Robot, load_robot
from .library import TrajectoryLibrary
from .models import LibraryConfig, RectGrid
from .plan_store import load_plan_group
from .scene import Scene
from .telemetry import PlotSink

logger = logging.getLogger(__name__)


def _load_job(path: str) -> Dict[str, Any]:
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def _robot_from(entry: Any) -> Robot:
    if isinstance(entry, dict):
        return Robot.from_dict(entry)
    return load_robot(str(entry))


def _cmd_build(args: argparse.Namespace) -> int:
    job = _load_job(args.job)
    robot = _robot_from(job.get('robot', 'ur5'))
    config = LibraryConfig.from_dict({'group_name': robot.group_name,
                                      **job.get('config', {})})
    if args.format:
        config.file_format = args.format
    scene = Scene.from_dict(job.get('scene', {}))
    sink = PlotSink(args.plot_dir) if args.plot_dir else None

    lib = TrajectoryLibrary(robot, config, scene=scene, sink=sink)
    n_picks, n_places = lib.generate_targets(RectGrid.from_dict(job['pick_grid']),
                                             RectGrid.from_dict(job['place_grid']))
    report = lib.build()
    print(f"targets: pick={n_picks} place={n_places}")
    print(f"plans:   {report.success_count} / {report.theoretical_count}")

    if not lib.export_to_file(args.out):
        return 1
    config.to_json(Path(args.out) / 'library_config.json')
    return 0 if report.success_count > 0 else 2


def _cmd_replay(args: argparse.Namespace) -> int:
    robot = _robot_from(args.robot)
    config = (LibraryConfig.from_json(args.config) if args.config
              else LibraryConfig(group_name=robot.group_name))
    lib = TrajectoryLibrary(robot, config)
    if not lib.import_from_file(args.dir):
        return 1
    cycles = lib.demo(max_cycles=args.cycles, seed=args.seed)
    print(f"completed {cycles} cycles")
    return 0


def _cmd_inspect(args: argparse.Namespace) -> int:
    group = load_plan_group(args.file, dof=args.dof)
    if group is None:
        return 1
    print(f"{args.file}: {group.plan_count} plans")
    for k, plan in enumerate(group.plans):
        print(f"  [{k:4d}] pick={plan.pick_index:3d} place={plan.place_index:3d} "
              f"waypoints={plan.num_waypoints:3d} duration={plan.duration:8.3f}s "
              f"frame={plan.trajectory.header.frame_id!r}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="traj-library", description="抓取 / 放置轨迹库构建与回放")
    parser.add_argument("-v", "--verbose", action="store_true", help="DEBUG 日志")
    sub = parser.add_subparsers(dest="command", required=True)

    p_build = sub.add_parser("build", help="生成目标并构建轨迹库")
    p_build.add_argument("job", help="任务 JSON 文件")
    p_build.add_argument("--out", default=".", help="轨迹库输出目录")
    p_build.add_argument("--plot-dir", default=None, help="保存显示轨迹图像的目录")
    p_build.add_argument("--format", choices=("legacy", "v2"), default=None,
                         help="文件格式（覆盖 job 中的 file_format）")
    p_build.set_defaults(func=_cmd_build)

    p_replay = sub.add_parser("replay", help="随机回放轨迹库")
    p_replay.add_argument("dir", help="轨迹库目录")
    p_replay.add_argument("--robot", default="ur5", help="内置机器人配置名")
    p_replay.add_argument("--config", default=None, help="LibraryConfig JSON")
    p_replay.add_argument("--cycles", type=int, default=None, help="循环次数（默认不限）")
    p_replay.add_argument("--seed", type=int, default=0)
    p_replay.set_defaults(func=_cmd_replay)

    p_inspect = sub.add_parser("inspect", help="列出轨迹库文件内容")
    p_inspect.add_argument("file", help="pickplan.bin / placeplan.bin")
    p_inspect.add_argument("--dof", type=int, default=6, help="legacy 文件的关节数")
    p_inspect.set_defaults(func=_cmd_inspect)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
