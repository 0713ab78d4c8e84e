"""
traj_library/scene.py - 障碍物与规划场景

Scene 管理工作空间中的 AABB 障碍物集合（增删查改与 JSON 持久化）；
PlanningScene 把机器人模型、障碍物与碰撞检测器组合为规划场景，
回答"该配置 / 该路径是否有效"的查询。

场景状态不在此处隐式保存：调用方通过 make_state() 得到 RobotState，
并在各次规划调用之间显式传递。
"""

import json
import logging
from typing import List, Dict, Any, Optional, Sequence

import numpy as np

from arm_model.robot import Robot
from .models import Obstacle, RobotState, JointTrajectory, Header
from .collision import CollisionChecker

logger = logging.getLogger(__name__)

GROUND_NAME = "workspace_bounds"
GROUND_EXTENT = 10.0
GROUND_THICKNESS = 1.0


class Scene:
    """工作空间场景管理

    管理一组 AABB 障碍物，提供增删查改和持久化功能。

    Example:
        >>> scene = Scene()
        >>> scene.add_obstacle([0.5, -0.3, 0], [0.8, 0.3, 0.5], name="桌子")
        >>> scene.add_ground_plane()
    """

    def __init__(self) -> None:
        self._obstacles: List[Obstacle] = []

    @property
    def n_obstacles(self) -> int:
        return len(self._obstacles)

    def add_obstacle(
        self,
        min_point: Any,
        max_point: Any,
        name: str = "",
        allowed_links: Sequence[int] = (),
    ) -> Obstacle:
        """添加一个 AABB 障碍物

        Args:
            min_point: AABB 最小角点 [x, y, z]
            max_point: AABB 最大角点
            name: 障碍物名称
            allowed_links: 允许接触该障碍物的连杆索引（1-based）

        Returns:
            创建的 Obstacle 实例
        """
        min_pt = np.array(min_point, dtype=np.float64)
        max_pt = np.array(max_point, dtype=np.float64)
        if min_pt.shape != (3,) or max_pt.shape != (3,):
            raise ValueError("障碍物角点必须是 3 维")
        if np.any(min_pt > max_pt):
            raise ValueError(f"障碍物 min > max: {min_pt.tolist()} / {max_pt.tolist()}")

        if not name:
            name = f"obstacle_{self.n_obstacles}"

        obs = Obstacle(min_point=min_pt, max_point=max_pt, name=name,
                       allowed_links=tuple(allowed_links))
        self._obstacles.append(obs)
        logger.debug("添加障碍物 '%s': min=%s, max=%s", name,
                     min_pt.tolist(), max_pt.tolist())
        return obs

    def add_ground_plane(self, base_link_index: int = 1) -> Obstacle:
        """在 z=0 以下加入地面，基座连杆允许接触"""
        return self.add_obstacle(
            [-GROUND_EXTENT, -GROUND_EXTENT, -GROUND_THICKNESS],
            [GROUND_EXTENT, GROUND_EXTENT, 0.0],
            name=GROUND_NAME,
            allowed_links=(base_link_index,),
        )

    def remove_obstacle(self, name: str) -> bool:
        """按名称移除障碍物"""
        for i, obs in enumerate(self._obstacles):
            if obs.name == name:
                self._obstacles.pop(i)
                return True
        return False

    def clear(self) -> None:
        self._obstacles.clear()

    def get_obstacles(self) -> List[Obstacle]:
        return list(self._obstacles)

    def get_obstacle(self, name: str) -> Optional[Obstacle]:
        for obs in self._obstacles:
            if obs.name == name:
                return obs
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {'obstacles': [obs.to_dict() for obs in self._obstacles]}

    def to_json(self, filepath: str) -> None:
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)

    @classmethod
    def from_json(cls, filepath: str) -> 'Scene':
        with open(filepath, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Scene':
        """从字典加载场景

        Args:
            data: {'obstacles': [{'min': [...], 'max': [...], 'name': ...,
                                  'allowed_links': [...]}, ...]}
        """
        scene = cls()
        for item in data.get('obstacles', []):
            scene.add_obstacle(
                min_point=item['min'],
                max_point=item['max'],
                name=item.get('name', ''),
                allowed_links=item.get('allowed_links', ()),
            )
        return scene

    def __repr__(self) -> str:
        return f"Scene(n_obstacles={self.n_obstacles})"


class PlanningScene:
    """规划场景：机器人 + 障碍物 + 碰撞检测

    有效性 = 在关节位置限制内 且 无环境碰撞 且 无自碰撞。

    Args:
        robot: 机器人模型
        scene: 障碍物场景，默认为空场景
        frame_id: 状态消息的参考坐标系
        safety_margin: 碰撞检测安全裕度
        check_self_collision: 是否检测自碰撞
    """

    def __init__(
        self,
        robot: Robot,
        scene: Optional[Scene] = None,
        frame_id: str = "world",
        safety_margin: float = 0.0,
        check_self_collision: bool = True,
    ) -> None:
        self.robot = robot
        self.scene = scene if scene is not None else Scene()
        self.frame_id = frame_id
        self.group_name = robot.group_name
        self.checker = CollisionChecker(
            robot, self.scene,
            safety_margin=safety_margin,
            check_self_collision=check_self_collision,
        )
        self._seq = 0

    def init_world(self) -> None:
        """初始化世界：加入地面（已存在时跳过）"""
        if self.scene.get_obstacle(GROUND_NAME) is None:
            self.scene.add_ground_plane()
            logger.info("已加入地面 '%s'（允许 %s 接触）",
                        GROUND_NAME, self.robot.base_link)

    def _check_group(self, group_name: Optional[str]) -> None:
        if group_name is not None and group_name != self.group_name:
            raise ValueError(
                f"未知规划组 '{group_name}'（机器人 {self.robot.name} 的规划组为 "
                f"'{self.group_name}'）")

    def make_state(self, joint_values: Sequence[float]) -> RobotState:
        """由关节值构造场景状态"""
        q = np.asarray(joint_values, dtype=np.float64)
        if q.shape != (self.robot.dof,):
            raise ValueError(f'期望 {self.robot.dof} 个关节值，得到 {q.shape}')
        return RobotState(
            joint_names=self.robot.joint_names,
            positions=q,
            header=Header(frame_id=self.frame_id),
        )

    def is_state_valid(
        self,
        joint_values: Sequence[float],
        group_name: Optional[str] = None,
        verbose: bool = False,
    ) -> bool:
        """配置是否有效（限制内且无碰撞）"""
        self._check_group(group_name)
        q = np.asarray(joint_values, dtype=np.float64)
        if not self.checker.check_config_in_limits(q):
            if verbose:
                logger.info("状态超出关节限制: %s", np.round(q, 4).tolist())
            return False
        if self.checker.check_config_collision(q):
            if verbose:
                logger.info("状态碰撞: %s", np.round(q, 4).tolist())
            return False
        return True

    def is_path_valid(
        self,
        start_state: RobotState,
        trajectory: JointTrajectory,
        group_name: Optional[str] = None,
        verbose: bool = False,
    ) -> bool:
        """整条轨迹是否有效：起点状态与每个路径点均有效"""
        self._check_group(group_name)
        if trajectory.n_waypoints == 0:
            if verbose:
                logger.info("空轨迹")
            return False
        if not self.is_state_valid(start_state.positions, verbose=verbose):
            return False
        for idx in range(trajectory.n_waypoints):
            if not self.is_state_valid(trajectory.positions[idx], verbose=False):
                if verbose:
                    logger.info("路径点 %d 无效", idx)
                return False
        return True

    def snapshot(self, state: RobotState) -> Dict[str, Any]:
        """场景快照（供可视化 / 遥测使用）"""
        self._seq += 1
        return {
            'seq': self._seq,
            'frame_id': self.frame_id,
            'joint_names': list(state.joint_names),
            'positions': state.positions.tolist(),
            'link_positions': [p.tolist() for p in
                               self.robot.get_link_positions(state.positions)],
            'obstacles': self.scene.to_dict()['obstacles'],
        }
