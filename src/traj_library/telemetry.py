"""
traj_library/telemetry.py - 构建过程遥测

构建器在状态切换时发布场景快照，在每对抓取 / 放置规划成功后
发布组合显示轨迹。遥测只用于观察，不影响构建结果：
sink 内部的异常由 safe_publish_* 记录日志后吞掉。

- NullSink: 丢弃全部消息
- RecordingSink: 记录到内存列表（测试 / 调试）
- PlotSink: 用 matplotlib 把显示轨迹的关节曲线保存为 PNG
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Sequence

import numpy as np

from .models import JointTrajectory, RobotState

logger = logging.getLogger(__name__)


class TelemetrySink:
    """遥测接口（默认实现全部为空操作）"""

    def publish_scene(self, snapshot: Dict[str, Any]) -> None:
        pass

    def publish_trajectory(self, start_state: RobotState,
                           trajectories: Sequence[JointTrajectory]) -> None:
        pass


class NullSink(TelemetrySink):
    pass


class RecordingSink(TelemetrySink):
    """把收到的消息记录在内存中"""

    def __init__(self) -> None:
        self.scenes: List[Dict[str, Any]] = []
        self.trajectories: List[tuple] = []

    def publish_scene(self, snapshot: Dict[str, Any]) -> None:
        self.scenes.append(snapshot)

    def publish_trajectory(self, start_state: RobotState,
                           trajectories: Sequence[JointTrajectory]) -> None:
        self.trajectories.append((start_state, list(trajectories)))


class PlotSink(TelemetrySink):
    """把每条显示轨迹的关节曲线保存为 PNG

    Args:
        output_dir: 输出目录
        dpi: 图像分辨率
    """

    def __init__(self, output_dir: str, dpi: int = 100) -> None:
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.dpi = dpi
        self.saved: List[str] = []

    def publish_trajectory(self, start_state: RobotState,
                           trajectories: Sequence[JointTrajectory]) -> None:
        import matplotlib
        matplotlib.use("Agg")  # 非交互后端
        import matplotlib.pyplot as plt

        fig, ax = plt.subplots(figsize=(8, 4))
        t_offset = 0.0
        for k, traj in enumerate(trajectories):
            t = traj.time_from_start + t_offset
            for j, name in enumerate(traj.joint_names):
                ax.plot(t, traj.positions[:, j], marker='.',
                        color=f"C{j}", label=name if k == 0 else None)
            t_offset = float(t[-1]) if traj.n_waypoints else t_offset
            ax.axvline(t_offset, color='gray', linewidth=0.5, linestyle='--')

        ax.set_xlabel("time (s)")
        ax.set_ylabel("joint position (rad)")
        ax.set_title(f"Display trajectory {len(self.saved)} "
                     f"(start |q|={np.linalg.norm(start_state.positions):.3f})")
        ax.legend(loc='upper right', fontsize='small')

        path = str(self.output_dir / f"trajectory_{len(self.saved):04d}.png")
        fig.savefig(path, dpi=self.dpi, bbox_inches="tight")
        plt.close(fig)
        self.saved.append(path)
        logger.debug("保存显示轨迹到 %s", path)


def safe_publish_scene(sink: TelemetrySink, snapshot: Dict[str, Any]) -> None:
    try:
        sink.publish_scene(snapshot)
    except Exception:
        logger.exception("遥测 publish_scene 失败")


def safe_publish_trajectory(sink: TelemetrySink, start_state: RobotState,
                            trajectories: Sequence[JointTrajectory]) -> None:
    try:
        sink.publish_trajectory(start_state, trajectories)
    except Exception:
        logger.exception("遥测 publish_trajectory 失败")
