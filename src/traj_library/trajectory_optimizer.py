"""
traj_library/trajectory_optimizer.py - 轨迹 shortcut 优化

确定性的贪心 shortcut：对每个路径点 i（按当前长度重新判断），
先按速度 / 加速度限制重新计算时间戳，然后从最后一个路径点向前
寻找离 i 最远、且 i→j 直线插值全程有效的路径点 j；
找到后只保留 [0..i] 与 [j..end]，时间戳清零，进入下一个 i。

直线段有效性按时间采样：step_count = int((t_j - t_i) / dt)，
检查插值比例 s / step_count，s = 1 .. step_count-1（不含端点）。
"""

import logging
from typing import Callable, Sequence

import numpy as np

from .models import JointTrajectory
from .time_parameterization import TimeParameterizer, time_warp

logger = logging.getLogger(__name__)

ValidityFn = Callable[[np.ndarray], bool]


def interpolate(q_from: Sequence[float], q_to: Sequence[float], fraction: float) -> np.ndarray:
    """关节空间线性插值"""
    q_from = np.asarray(q_from, dtype=np.float64)
    q_to = np.asarray(q_to, dtype=np.float64)
    return q_from + fraction * (q_to - q_from)


class TrajectoryOptimizer:
    """轨迹 shortcut 优化器

    Args:
        parameterizer: 时间参数化器
        validity: 配置有效性回调（通常为 PlanningScene.is_state_valid）
        collision_check_dt: 直线段碰撞检测的时间步长 (s)
        slow_factor: 优化完成后的整体减速倍数

    Example:
        >>> optimizer = TrajectoryOptimizer(parameterizer, scene.is_state_valid)
        >>> smooth = optimizer.optimize_and_scale(raw_trajectory)
    """

    def __init__(
        self,
        parameterizer: TimeParameterizer,
        validity: ValidityFn,
        collision_check_dt: float = 0.05,
        slow_factor: float = 3.0,
    ) -> None:
        if collision_check_dt <= 0.0:
            raise ValueError("collision_check_dt 必须 > 0")
        self.parameterizer = parameterizer
        self.validity = validity
        self.collision_check_dt = collision_check_dt
        self.slow_factor = slow_factor
        self.n_validity_checks = 0

    def _direct_path_valid(self, trajectory: JointTrajectory, i: int, j: int) -> bool:
        duration = trajectory.duration_between(i, j)
        step_count = int(duration / self.collision_check_dt)
        q_i = trajectory.positions[i]
        q_j = trajectory.positions[j]
        for s in range(1, step_count):
            self.n_validity_checks += 1
            if not self.validity(interpolate(q_i, q_j, s / step_count)):
                return False
        return True

    def shortcut_waypoints(self, trajectory: JointTrajectory) -> JointTrajectory:
        """贪心 shortcut，返回路径点子序列（时间戳为最后一次重新参数化的结果）

        首尾路径点总是保留，输入轨迹不被修改。
        """
        result = trajectory.copy()
        n_before = result.n_waypoints

        i = 0
        while i < result.n_waypoints:
            result = self.parameterizer.compute_time_stamps(result)

            for j in range(result.n_waypoints - 1, i, -1):
                if not self._direct_path_valid(result, i, j):
                    continue
                if j > i + 1:
                    keep = list(range(0, i + 1)) + list(range(j, result.n_waypoints))
                    result = JointTrajectory(
                        joint_names=result.joint_names,
                        positions=result.positions[keep],
                        time_from_start=np.zeros(len(keep)),
                        header=result.header,
                    )
                break
            i += 1

        if result.n_waypoints < n_before:
            logger.debug("Shortcut 优化: 路径从 %d → %d 个点", n_before, result.n_waypoints)
        return result

    def optimize(self, trajectory: JointTrajectory) -> JointTrajectory:
        """shortcut 后重新计算时间戳"""
        if trajectory.n_waypoints <= 2:
            return self.parameterizer.compute_time_stamps(trajectory)
        shortened = self.shortcut_waypoints(trajectory)
        return self.parameterizer.compute_time_stamps(shortened)

    def optimize_and_scale(self, trajectory: JointTrajectory) -> JointTrajectory:
        """shortcut + 时间参数化 + 整体减速"""
        return time_warp(self.optimize(trajectory), self.slow_factor)
