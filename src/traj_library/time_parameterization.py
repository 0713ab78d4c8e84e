"""
traj_library/time_parameterization.py - 轨迹时间参数化

为关节路径点分配 time_from_start：每段按"静止到静止"的
梯形 / 三角形速度曲线，在逐关节速度与加速度限制下取最慢关节的时间。

    d = |dq_i|
    d <= v^2/a : 三角形，t_i = 2*sqrt(d/a)
    d >  v^2/a : 梯形，  t_i = d/v + v/a
    段时间 t = max_i t_i

time_warp 把每段 duration_from_previous 乘以同一倍数（整体减速）。
"""

import logging
from typing import Sequence

import numpy as np

from arm_model.robot import Robot
from .models import JointTrajectory

logger = logging.getLogger(__name__)


def segment_time(
    q_from: Sequence[float],
    q_to: Sequence[float],
    max_velocity: Sequence[float],
    max_acceleration: Sequence[float],
    eps: float = 1e-9,
) -> float:
    """静止到静止的最短同步时间 (s)"""
    q_from = np.asarray(q_from, dtype=np.float64)
    q_to = np.asarray(q_to, dtype=np.float64)
    vmax = np.maximum(np.asarray(max_velocity, dtype=np.float64), eps)
    amax = np.maximum(np.asarray(max_acceleration, dtype=np.float64), eps)
    if q_from.shape != q_to.shape:
        raise ValueError(f"q_from shape {q_from.shape} != q_to shape {q_to.shape}")

    dq = np.abs(q_to - q_from)
    dcrit = (vmax * vmax) / amax
    t_tri = 2.0 * np.sqrt(dq / amax)
    t_trap = dq / vmax + vmax / amax
    t = np.where(dq <= dcrit, t_tri, t_trap)
    return float(np.max(t)) if t.size else 0.0


class TimeParameterizer:
    """基于机器人速度 / 加速度限制的时间参数化

    Args:
        robot: 机器人模型（提供 velocity_limits / acceleration_limits）
        velocity_scale: 速度限制缩放 (0, 1]
        acceleration_scale: 加速度限制缩放 (0, 1]
    """

    def __init__(self, robot: Robot,
                 velocity_scale: float = 1.0,
                 acceleration_scale: float = 1.0) -> None:
        if not (0.0 < velocity_scale <= 1.0 and 0.0 < acceleration_scale <= 1.0):
            raise ValueError("velocity_scale / acceleration_scale 必须在 (0, 1] 内")
        self.robot = robot
        self.max_velocity = robot.velocity_limits * velocity_scale
        self.max_acceleration = robot.acceleration_limits * acceleration_scale

    def compute_time_stamps(self, trajectory: JointTrajectory) -> JointTrajectory:
        """返回重新计算 time_from_start 的轨迹副本（第一个路径点时间为 0）"""
        result = trajectory.copy()
        n = result.n_waypoints
        times = np.zeros(n)
        for k in range(1, n):
            times[k] = times[k - 1] + segment_time(
                result.positions[k - 1], result.positions[k],
                self.max_velocity, self.max_acceleration)
        result.time_from_start = times
        return result


def time_warp(trajectory: JointTrajectory, slow_factor: float) -> JointTrajectory:
    """把每段 duration_from_previous 乘以 slow_factor，返回副本"""
    if slow_factor <= 0.0:
        raise ValueError(f"slow_factor 必须 > 0，得到 {slow_factor}")
    result = trajectory.copy()
    deltas = result.durations_from_previous() * slow_factor
    result.time_from_start = np.cumsum(deltas) + (
        result.time_from_start[0] if result.n_waypoints else 0.0)
    return result
