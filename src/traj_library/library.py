"""
traj_library/library.py - 轨迹库门面

TrajectoryLibrary 按 LibraryConfig 组装各组件：

    Robot ─▶ PlanningScene ─▶ PoseIKSolver ─▶ GridSampler
    PlanningScene ─▶ SamplingPlanner ─┐
    TrajectoryOptimizer ─────────────┴─▶ TrajectoryPlanner ─▶ LibraryBuilder ─▶ PlanLibrary

典型流程::

    lib = TrajectoryLibrary(load_robot('ur5'), LibraryConfig())
    lib.generate_targets(pick_grid, place_grid)
    report = lib.build()
    lib.export_to_file('out/')
"""

import time
import logging
from pathlib import Path
from typing import Callable, Optional, Tuple

from arm_model.ik import PoseIKSolver
from arm_model.models import Pose
from arm_model.robot import Robot
from .constraints import build_pose_constraint
from .grid_sampler import GridSampler
from .library_builder import BuildReport, LibraryBuilder
from .models import (
    LibraryConfig, MotionPlan, RectGrid, RobotState, TargetGroup, TargetVolume,
)
from .motion_planner import BasePlanner, create_planner
from .plan_store import PlanLibrary
from .replay import ReplaySession
from .scene import PlanningScene, Scene
from .telemetry import TelemetrySink, NullSink
from .time_parameterization import TimeParameterizer
from .timing import Timer
from .trajectory_optimizer import TrajectoryOptimizer
from .trajectory_planner import PlanOutcome, TrajectoryPlanner

logger = logging.getLogger(__name__)


class TrajectoryLibrary:
    """抓取 / 放置轨迹库

    Args:
        robot: 机器人模型
        config: 轨迹库配置
        scene: 障碍物场景（可选）
        sink: 遥测输出（可选）
        ik_solver: 自定义 IK 求解器（可选）
        planner: 自定义运动规划器（可选，默认按 config.planner_id 创建）
    """

    def __init__(
        self,
        robot: Robot,
        config: Optional[LibraryConfig] = None,
        scene: Optional[Scene] = None,
        sink: Optional[TelemetrySink] = None,
        ik_solver: Optional[PoseIKSolver] = None,
        planner: Optional[BasePlanner] = None,
    ) -> None:
        self.robot = robot
        self.config = config or LibraryConfig(group_name=robot.group_name)
        cfg = self.config
        if cfg.group_name != robot.group_name:
            raise ValueError(f"规划组 '{cfg.group_name}' 与机器人 {robot.name} "
                             f"的规划组 '{robot.group_name}' 不一致")

        self.timer = Timer()
        self.sink = sink or NullSink()

        self.planning_scene = PlanningScene(
            robot, scene,
            frame_id=cfg.frame_id,
            safety_margin=cfg.link_padding,
            check_self_collision=cfg.check_self_collision,
        )
        if cfg.add_ground_plane:
            self.planning_scene.init_world()

        self.ik_solver = ik_solver or PoseIKSolver(robot, seed=cfg.ik_seed)
        self.sampler = GridSampler(self.ik_solver, self.planning_scene.is_state_valid,
                                   max_attempts=cfg.ik_attempts, timeout=cfg.ik_timeout)

        self.optimizer = TrajectoryOptimizer(
            TimeParameterizer(robot),
            self.planning_scene.is_state_valid,
            collision_check_dt=cfg.collision_check_dt,
            slow_factor=cfg.slow_factor,
        )
        self.planner = planner or create_planner(
            cfg.planner_id, self.planning_scene, self.ik_solver,
            step_size=cfg.planner_step_size,
            resolution=cfg.planner_resolution,
            seed=cfg.planner_seed,
            enforce_workspace_bounds=cfg.enforce_workspace_bounds,
        )
        self.trajectory_planner = TrajectoryPlanner(
            self.planning_scene, self.planner, self.optimizer, cfg, self.timer)
        self.builder = LibraryBuilder(
            self.trajectory_planner, self.planning_scene, cfg, self.sink, self.timer)

        self.pick_volume: Optional[TargetVolume] = None
        self.place_volume: Optional[TargetVolume] = None
        self.plans = PlanLibrary()

    # ── 目标生成与构建 ──

    def generate_targets(self, pick_grid: RectGrid,
                         place_grid: RectGrid) -> Tuple[int, int]:
        """生成抓取 / 放置目标，返回 (抓取点数, 放置点数)"""
        with self.timer.phase("generate_targets"):
            self.pick_volume, self.place_volume = self.sampler.generate_targets(
                pick_grid, place_grid)
        return self.pick_volume.target_count, self.place_volume.target_count

    @property
    def n_pick_targets(self) -> int:
        return self.pick_volume.target_count if self.pick_volume else 0

    @property
    def n_place_targets(self) -> int:
        return self.place_volume.target_count if self.place_volume else 0

    def build(self) -> BuildReport:
        """构建轨迹库（覆盖已有规划）"""
        empty = TargetVolume(grid=None)
        report = self.builder.build(self.pick_volume or empty,
                                    self.place_volume or empty)
        self.plans = PlanLibrary(report.pick_group, report.place_group)
        if report.success_count:
            logger.info("构建耗时:\n%s", self.timer.summary())
        return report

    def plan_to_pose(self, start_state: RobotState, pose: Pose) -> PlanOutcome:
        """从 start_state 规划到末端位姿 pose"""
        constraints = build_pose_constraint(
            pose, link_name=self.robot.tip_link, frame_id=self.config.frame_id,
            position_tolerance=self.config.position_tolerance,
            orientation_tolerance=self.config.orientation_tolerance,
        )
        return self.trajectory_planner.plan(start_state, constraints)

    # ── 持久化 ──

    def export_to_file(self, directory: str | Path) -> bool:
        cfg = self.config
        return self.plans.export_to_dir(directory, dof=self.robot.dof,
                                        fmt=cfg.file_format,
                                        pick_file=cfg.pick_file,
                                        place_file=cfg.place_file)

    def import_from_file(self, directory: str | Path) -> bool:
        cfg = self.config
        plans = PlanLibrary.import_from_dir(directory, dof=self.robot.dof,
                                            pick_file=cfg.pick_file,
                                            place_file=cfg.place_file)
        if plans is None:
            return False
        self.plans = plans
        return True

    # ── 查询 ──

    def get_pick_plan(self, place_start: int, pick_end: int) -> Optional[MotionPlan]:
        return self.plans.fetch_pick_plan(place_index=place_start, pick_index=pick_end)

    def get_place_plan(self, pick_start: int, place_end: int) -> Optional[MotionPlan]:
        return self.plans.fetch_place_plan(pick_index=pick_start, place_index=place_end)

    def fetch_plan(self, start_group: TargetGroup, start_index: int,
                   end_group: TargetGroup, end_index: int) -> Optional[MotionPlan]:
        return self.plans.fetch_plan(start_group, start_index, end_group, end_index)

    # ── 回放 ──

    def demo(self, max_cycles: Optional[int] = None,
             sleep: Callable[[float], None] = time.sleep,
             seed: Optional[int] = 0) -> int:
        """随机回放已构建 / 已加载的轨迹库，返回完成的循环次数"""
        session = ReplaySession(
            self.plans,
            n_pick_targets=self.n_pick_targets or None,
            n_place_targets=self.n_place_targets or None,
            planning_scene=self.planning_scene,
            sink=self.sink,
            seed=seed,
            sleep=sleep,
        )
        return session.run(max_cycles=max_cycles)
