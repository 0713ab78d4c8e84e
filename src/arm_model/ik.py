"""
ik.py - 数值逆运动学求解

对给定末端位姿，以 L-BFGS-B（关节限制作为 box 约束）最小化
位置误差 + 姿态误差。多起点尝试：第一次从种子配置出发，
其后在关节限制内随机采样初值。

解必须同时满足：
1. 位置误差 < position_tolerance
2. 姿态误差（旋转向量范数）< orientation_tolerance（orientation_weight > 0 时）
3. validity 回调返回 True（例如无自碰撞）
"""

import time
import logging
from typing import Callable, Optional, Sequence

import numpy as np
from scipy.optimize import minimize
from scipy.spatial.transform import Rotation

from .models import Pose
from .robot import Robot

logger = logging.getLogger(__name__)

ValidityFn = Callable[[np.ndarray], bool]


class PoseIKSolver:
    """多起点数值 IK 求解器

    Args:
        robot: 机器人模型
        position_tolerance: 位置收敛阈值 (m)
        orientation_tolerance: 姿态收敛阈值 (rad)
        orientation_weight: 姿态误差权重；0 表示只约束位置
        seed: 随机初值的种子

    Example:
        >>> solver = PoseIKSolver(robot)
        >>> q = solver.solve(Pose([0.4, 0.1, 0.5]), max_attempts=10, timeout=0.1)
    """

    def __init__(
        self,
        robot: Robot,
        position_tolerance: float = 1e-3,
        orientation_tolerance: float = 1e-2,
        orientation_weight: float = 1.0,
        seed: Optional[int] = None,
        max_iterations: int = 200,
    ) -> None:
        self.robot = robot
        self.position_tolerance = position_tolerance
        self.orientation_tolerance = orientation_tolerance
        self.orientation_weight = orientation_weight
        self.max_iterations = max_iterations
        self._rng = np.random.default_rng(seed)
        self.n_calls = 0

    def pose_error(self, q: np.ndarray, pose: Pose) -> tuple:
        """返回 (位置误差, 姿态误差)"""
        pos, rot = self.robot.end_effector_pose(q)
        pos_err = float(np.linalg.norm(pos - pose.position))
        rot_err = Rotation.from_matrix(pose.rotation_matrix.T @ rot).magnitude()
        return pos_err, float(rot_err)

    def _objective(self, q: np.ndarray, pose: Pose) -> float:
        pos, rot = self.robot.end_effector_pose(q)
        cost = float(np.sum((pos - pose.position) ** 2))
        if self.orientation_weight > 0.0:
            # 0.5 * ||R_target - R||_F^2 在解附近与旋转角平方同阶
            cost += self.orientation_weight * 0.5 * float(
                np.sum((pose.rotation_matrix - rot) ** 2))
        return cost

    def _accept(self, q: np.ndarray, pose: Pose) -> bool:
        pos_err, rot_err = self.pose_error(q, pose)
        if pos_err > self.position_tolerance:
            return False
        if self.orientation_weight > 0.0 and rot_err > self.orientation_tolerance:
            return False
        return True

    def solve(
        self,
        pose: Pose,
        max_attempts: int = 10,
        timeout: float = 0.1,
        validity: Optional[ValidityFn] = None,
        seed_config: Optional[Sequence[float]] = None,
    ) -> Optional[np.ndarray]:
        """求解 IK

        Args:
            pose: 目标位姿
            max_attempts: 最大起点数
            timeout: 单次尝试的时间预算 (s)，总预算为 max_attempts * timeout
            validity: 解的可行性回调
            seed_config: 第一次尝试的初值，默认为关节限制中点

        Returns:
            关节配置 (n_joints,)，失败返回 None
        """
        self.n_calls += 1
        bounds = self.robot.position_bounds
        deadline = time.perf_counter() + max(timeout, 0.0) * max(max_attempts, 1)

        for attempt in range(max(max_attempts, 1)):
            if attempt == 0:
                q0 = (np.asarray(seed_config, dtype=np.float64)
                      if seed_config is not None
                      else self.robot.default_configuration())
                q0 = self.robot.clamp(q0)
            else:
                q0 = self.robot.random_configuration(self._rng)

            res = minimize(
                self._objective, q0, args=(pose,),
                method='L-BFGS-B', bounds=bounds,
                options={'maxiter': self.max_iterations, 'ftol': 1e-14, 'gtol': 1e-10},
            )
            q = np.asarray(res.x, dtype=np.float64)

            if self._accept(q, pose):
                if validity is None or validity(q):
                    logger.debug("IK 成功: attempt=%d", attempt)
                    return q
                logger.debug("IK 解被 validity 拒绝: attempt=%d", attempt)

            if time.perf_counter() > deadline:
                logger.debug("IK 超时: %d 次尝试", attempt + 1)
                break

        return None
