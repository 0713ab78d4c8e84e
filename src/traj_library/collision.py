"""
traj_library/collision.py - 碰撞检测模块

提供基于 AABB 的碰撞检测：
- 环境碰撞：FK → 逐 link 线段 AABB vs obstacle AABB
- 自碰撞：非相邻 link 线段之间的最近距离
- 线段碰撞检测：关节空间等间隔采样逐点检查

障碍物的 allowed_links 相当于允许碰撞矩阵中的条目，
例如地面与基座连杆。
"""

import logging
from typing import List, Tuple, Set, Optional, TYPE_CHECKING

import numpy as np

from arm_model.robot import Robot
if TYPE_CHECKING:
    from .scene import Scene

logger = logging.getLogger(__name__)


def aabb_overlap(
    min1: np.ndarray, max1: np.ndarray,
    min2: np.ndarray, max2: np.ndarray,
) -> bool:
    """检测两个 AABB 是否重叠（分离轴测试）

    Returns:
        True 表示重叠，False 表示分离
    """
    ndim = min(len(min1), len(min2))
    for i in range(ndim):
        if max1[i] < min2[i] - 1e-10 or max2[i] < min1[i] - 1e-10:
            return False
    return True


def segment_distance(
    p1: np.ndarray, q1: np.ndarray,
    p2: np.ndarray, q2: np.ndarray,
) -> float:
    """两条 3D 线段 [p1, q1] 与 [p2, q2] 之间的最近距离"""
    d1 = q1 - p1
    d2 = q2 - p2
    r = p1 - p2
    a = float(d1 @ d1)
    e = float(d2 @ d2)
    f = float(d2 @ r)
    eps = 1e-12

    if a <= eps and e <= eps:
        return float(np.linalg.norm(r))
    if a <= eps:
        s = 0.0
        t = min(max(f / e, 0.0), 1.0)
    else:
        c = float(d1 @ r)
        if e <= eps:
            t = 0.0
            s = min(max(-c / a, 0.0), 1.0)
        else:
            b = float(d1 @ d2)
            denom = a * e - b * b
            s = min(max((b * f - c * e) / denom, 0.0), 1.0) if denom > eps else 0.0
            t = (b * s + f) / e
            if t < 0.0:
                t = 0.0
                s = min(max(-c / a, 0.0), 1.0)
            elif t > 1.0:
                t = 1.0
                s = min(max((b - c) / a, 0.0), 1.0)

    c1 = p1 + d1 * s
    c2 = p2 + d2 * t
    return float(np.linalg.norm(c1 - c2))


class CollisionChecker:
    """碰撞检测器

    封装机械臂与障碍物之间、以及机械臂自身的碰撞检测逻辑。

    Args:
        robot: 机器人模型
        scene: 障碍物场景
        safety_margin: 安全裕度（对 obstacle AABB 向外扩展，同时作为自碰撞距离阈值）
        skip_base_link: 是否跳过第一个连杆的环境碰撞检测
        check_self_collision: 是否检测自碰撞

    Example:
        >>> checker = CollisionChecker(robot, scene)
        >>> is_collide = checker.check_config_collision(q)
    """

    def __init__(
        self,
        robot: Robot,
        scene: 'Scene',
        safety_margin: float = 0.0,
        skip_base_link: bool = False,
        check_self_collision: bool = True,
    ) -> None:
        self.robot = robot
        self.scene = scene
        self.safety_margin = safety_margin
        self.self_collision_enabled = check_self_collision
        self._n_collision_checks = 0

        self._zero_length_links: Set[int] = robot.zero_length_links.copy()
        self._skip_env_links: Set[int] = set(self._zero_length_links)
        if skip_base_link:
            self._skip_env_links.add(1)

        # 非零长度连杆按链顺序排列；在此序列中相邻的连杆共享端点，不做自碰撞检测
        n_links = robot.n_joints + (1 if robot.tool_frame is not None else 0)
        solid = [li for li in range(1, n_links + 1)
                 if li not in self._zero_length_links]
        self._self_pairs: List[Tuple[int, int]] = [
            (solid[a], solid[b])
            for a in range(len(solid))
            for b in range(a + 2, len(solid))
        ]

    @property
    def n_collision_checks(self) -> int:
        """累计碰撞检测调用次数"""
        return self._n_collision_checks

    @property
    def self_collision_pairs(self) -> List[Tuple[int, int]]:
        return list(self._self_pairs)

    def reset_counter(self) -> None:
        self._n_collision_checks = 0

    def check_config_collision(self, joint_values: np.ndarray) -> bool:
        """单配置碰撞检测（环境 + 自碰撞）

        Returns:
            True = 存在碰撞, False = 无碰撞
        """
        self._n_collision_checks += 1
        positions = self.robot.get_link_positions(joint_values)
        if self._env_collision(positions):
            return True
        if self.self_collision_enabled and self._self_collision(positions):
            return True
        return False

    def check_self_collision(self, joint_values: np.ndarray) -> bool:
        positions = self.robot.get_link_positions(joint_values)
        return self._self_collision(positions)

    def _env_collision(self, positions: List[np.ndarray]) -> bool:
        obstacles = self.scene.get_obstacles()
        if not obstacles:
            return False
        margin = self.safety_margin

        # link i 的线段是 positions[i-1] 到 positions[i]
        for li in range(1, len(positions)):
            if li in self._skip_env_links:
                continue
            p_start = positions[li - 1]
            p_end = positions[li]
            link_min = np.minimum(p_start, p_end)
            link_max = np.maximum(p_start, p_end)

            for obs in obstacles:
                if li in obs.allowed_links:
                    continue
                if aabb_overlap(link_min, link_max,
                                obs.min_point - margin, obs.max_point + margin):
                    logger.debug("link %d 与障碍物 '%s' 碰撞", li, obs.name)
                    return True
        return False

    def _self_collision(self, positions: List[np.ndarray]) -> bool:
        threshold = 2.0 * self.safety_margin + 1e-9
        for la, lb in self._self_pairs:
            dist = segment_distance(positions[la - 1], positions[la],
                                    positions[lb - 1], positions[lb])
            if dist < threshold:
                logger.debug("自碰撞: link %d / link %d (dist=%.3e)", la, lb, dist)
                return True
        return False

    def check_segment_collision(
        self,
        q_start: np.ndarray,
        q_end: np.ndarray,
        resolution: Optional[float] = None,
    ) -> bool:
        """线段碰撞检测

        在两个关节配置之间等间隔采样，逐点做碰撞检测。

        Args:
            q_start: 起始关节配置
            q_end: 终止关节配置
            resolution: 采样间隔（关节空间 L2 距离），默认 0.05 rad

        Returns:
            True = 存在碰撞点, False = 所有采样点无碰撞
        """
        if resolution is None:
            resolution = 0.05

        q_start = np.asarray(q_start, dtype=np.float64)
        q_end = np.asarray(q_end, dtype=np.float64)
        dist = float(np.linalg.norm(q_end - q_start))
        if dist < 1e-10:
            return self.check_config_collision(q_start)

        n_steps = max(2, int(np.ceil(dist / resolution)) + 1)
        for i in range(n_steps):
            t = i / (n_steps - 1)
            if self.check_config_collision(q_start + t * (q_end - q_start)):
                return True
        return False

    def check_config_in_limits(self, joint_values: np.ndarray) -> bool:
        """检查配置是否在关节限制内（容差 1e-10）"""
        return self.robot.satisfies_position_bounds(joint_values, margin=1e-10)
