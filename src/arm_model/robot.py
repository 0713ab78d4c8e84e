"""
robot.py - 机器人运动学模型

基于修正 DH 参数 (Modified DH) 的串联机械臂运动学计算。
包含正运动学、连杆端点位置、末端位姿、关节限制检查
以及零长度连杆识别，供 IK 求解与碰撞检测共用。
"""

import math
import json
import hashlib
import logging
from pathlib import Path
from functools import cached_property
from typing import List, Dict, Tuple, Optional, Sequence, Set

import numpy as np

logger = logging.getLogger(__name__)

CONFIGS_DIR = Path(__file__).parent / 'configs'

DEFAULT_MAX_VELOCITY = 2.0      # rad/s
DEFAULT_MAX_ACCELERATION = 4.0  # rad/s^2


class Robot:
    """基于 DH 参数的串联机械臂

    使用修正DH约定 (Modified DH Convention)。每个关节对应一个
    可驱动关节，全部关节构成唯一的规划组 (actuated group)。

    Example:
        >>> dh = [
        ...     {"alpha": 0, "a": 0, "d": 0.089159, "theta": 0},
        ...     {"alpha": math.pi / 2, "a": 0, "d": 0, "theta": 0},
        ... ]
        >>> robot = Robot(dh, name="MyRobot")
        >>> T = robot.forward_kinematics([0.1, 0.2])

    Attributes:
        name: 机器人名称
        joint_names: 关节名称列表
        joint_limits: 关节位置限制 [(lo, hi), ...]
        velocity_limits: 关节最大速度 (rad/s)
        acceleration_limits: 关节最大加速度 (rad/s^2)
        group_name: 规划组名称
        base_link / tip_link: 基座与末端连杆名称
    """

    def __init__(
        self,
        dh_params: List[Dict],
        name: str = "Robot",
        joint_names: Optional[Sequence[str]] = None,
        joint_limits: Optional[List[Tuple[float, float]]] = None,
        velocity_limits: Optional[Sequence[float]] = None,
        acceleration_limits: Optional[Sequence[float]] = None,
        tool_frame: Optional[Dict] = None,
        group_name: str = "manipulator",
        base_link: str = "base_link",
        tip_link: str = "ee_link",
    ):
        """初始化机器人

        Args:
            dh_params: DH参数列表，每个元素是包含以下键的字典：
                - alpha: 连杆扭转角 (rad)
                - a: 连杆长度
                - d: 连杆偏移
                - theta: 关节角偏移 (rad)
                - type: 'revolute' 或 'prismatic'
            name: 机器人名称
            joint_names: 关节名称，默认 joint_1 ... joint_n
            joint_limits: 关节限制列表 [(lo, hi), ...]，默认 [-pi, pi]
            velocity_limits: 关节速度限制，默认 DEFAULT_MAX_VELOCITY
            acceleration_limits: 关节加速度限制，默认 DEFAULT_MAX_ACCELERATION
            tool_frame: 末端工具坐标系 DH 参数 {alpha, a, d}。
                        在 Modified DH 中，最后一个 DH 行之后的平移
                        需要通过 tool_frame 表示末端连杆。
        """
        self.name = name
        self.dh_params = [self._normalize_param(p) for p in dh_params]
        self.n_joints = len(self.dh_params)
        self.group_name = group_name
        self.base_link = base_link
        self.tip_link = tip_link

        if joint_names is None:
            joint_names = [f"joint_{i + 1}" for i in range(self.n_joints)]
        if len(joint_names) != self.n_joints:
            raise ValueError(
                f"joint_names 长度 {len(joint_names)} 与关节数 {self.n_joints} 不一致")
        self.joint_names: Tuple[str, ...] = tuple(str(n) for n in joint_names)

        if joint_limits is None:
            joint_limits = [(-math.pi, math.pi)] * self.n_joints
        self.joint_limits = [(float(lo), float(hi)) for lo, hi in joint_limits]
        if len(self.joint_limits) != self.n_joints:
            raise ValueError("joint_limits 长度与关节数不一致")

        self.velocity_limits = np.asarray(
            velocity_limits if velocity_limits is not None
            else [DEFAULT_MAX_VELOCITY] * self.n_joints, dtype=np.float64)
        self.acceleration_limits = np.asarray(
            acceleration_limits if acceleration_limits is not None
            else [DEFAULT_MAX_ACCELERATION] * self.n_joints, dtype=np.float64)

        self.tool_frame: Optional[Dict] = None
        if tool_frame is not None:
            self.tool_frame = {
                'alpha': float(tool_frame.get('alpha', 0.0)),
                'a': float(tool_frame.get('a', 0.0)),
                'd': float(tool_frame.get('d', 0.0)),
            }

    @staticmethod
    def _normalize_param(p: Dict) -> Dict:
        """标准化DH参数"""
        param = {
            'alpha': float(p.get('alpha', 0.0)),
            'a': float(p.get('a', 0.0)),
            'd': float(p.get('d', 0.0)) if p.get('d') is not None else 0.0,
            'theta': float(p.get('theta', 0.0)) if p.get('theta') is not None else 0.0,
            'type': p.get('type', 'revolute')
        }
        if param['type'] not in ('revolute', 'prismatic'):
            raise ValueError("关节类型必须是 'revolute' 或 'prismatic'")
        return param

    # ==================== 配置加载 ====================

    @classmethod
    def from_json(cls, filepath: str) -> 'Robot':
        """从JSON配置文件加载机器人

        格式::

            {
                "name": "UR5",
                "dh_params": [...],
                "joint_names": [...],
                "joint_limits": [[lo, hi], ...],
                "velocity_limits": [...],
                "acceleration_limits": [...],
                "tool_frame": {"alpha": 0, "a": 0, "d": 0.1},
                "group_name": "manipulator",
                "tip_link": "ee_link"
            }
        """
        with open(filepath, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return cls.from_dict(data, source=str(filepath))

    @classmethod
    def from_dict(cls, data: Dict, source: str = '<dict>') -> 'Robot':
        if not isinstance(data, dict):
            raise ValueError(f'{source}: 配置必须是 dict')
        dh_list = data.get('dh_params') or data.get('dh')
        if dh_list is None:
            raise ValueError(f'{source}: 缺少 "dh_params" 字段')
        joint_limits = (
            [tuple(lim) for lim in data['joint_limits']]
            if 'joint_limits' in data else None
        )
        return cls(
            dh_params=dh_list,
            name=data.get('name', 'Robot'),
            joint_names=data.get('joint_names'),
            joint_limits=joint_limits,
            velocity_limits=data.get('velocity_limits'),
            acceleration_limits=data.get('acceleration_limits'),
            tool_frame=data.get('tool_frame'),
            group_name=data.get('group_name', 'manipulator'),
            base_link=data.get('base_link', 'base_link'),
            tip_link=data.get('tip_link', 'ee_link'),
        )

    @classmethod
    def from_config(cls, name: str) -> 'Robot':
        """按名称加载内置机器人配置（``configs/<name>.json``，不区分大小写）

        Raises:
            FileNotFoundError: 找不到指定配置文件
        """
        target = name.lower()
        for f in CONFIGS_DIR.iterdir():
            if f.suffix == '.json' and f.stem.lower() == target:
                return cls.from_json(str(f))
        raise FileNotFoundError(
            f'找不到配置 "{name}"。可用配置: {list_configs()}'
        )

    # ==================== 正运动学 ====================

    @staticmethod
    def dh_transform(alpha: float, a: float, d: float, theta: float) -> np.ndarray:
        """
        计算单个DH变换矩阵 (Modified DH Convention)

        Returns:
            4x4齐次变换矩阵
        """
        ca, sa = math.cos(alpha), math.sin(alpha)
        ct, st = math.cos(theta), math.sin(theta)

        return np.array([
            [ct, -st, 0.0, a],
            [st * ca, ct * ca, -sa, -d * sa],
            [st * sa, ct * sa, ca, d * ca],
            [0.0, 0.0, 0.0, 1.0]
        ], dtype=float)

    def forward_kinematics(self, joint_values: Sequence[float],
                           return_all: bool = False):
        """
        正向运动学计算

        Args:
            joint_values: 关节值列表
            return_all: 是否返回所有连杆的变换矩阵

        Returns:
            如果return_all=False: 末端执行器的4x4变换矩阵
            如果return_all=True: 所有连杆变换矩阵的列表 [T0, T1, ..., Tn]
        """
        if len(joint_values) != self.n_joints:
            raise ValueError(f'期望 {self.n_joints} 个关节值，得到 {len(joint_values)}')

        transforms = [np.eye(4)]
        T = np.eye(4)

        for param, q in zip(self.dh_params, joint_values):
            if param['type'] == 'revolute':
                d = param['d']
                theta = float(q) + param['theta']
            else:
                d = param['d'] + float(q)
                theta = param['theta']
            T = T @ self.dh_transform(param['alpha'], param['a'], d, theta)
            transforms.append(T.copy())

        if self.tool_frame is not None:
            A_tool = self.dh_transform(
                self.tool_frame['alpha'],
                self.tool_frame['a'],
                self.tool_frame['d'],
                0.0,
            )
            T = T @ A_tool
            transforms.append(T.copy())

        return transforms if return_all else transforms[-1]

    def get_link_positions(self, joint_values: Sequence[float]) -> List[np.ndarray]:
        """获取所有连杆端点的世界坐标 [p0, p1, ..., pn]"""
        transforms = self.forward_kinematics(joint_values, return_all=True)
        return [T[:3, 3] for T in transforms]

    def end_effector_pose(self, joint_values: Sequence[float]) -> Tuple[np.ndarray, np.ndarray]:
        """
        获取末端执行器位姿

        Returns:
            (position, rotation_matrix): 位置(3,)和旋转矩阵(3,3)
        """
        T = self.forward_kinematics(joint_values)
        return T[:3, 3].copy(), T[:3, :3].copy()

    # ==================== 关节限制 ====================

    @property
    def dof(self) -> int:
        return self.n_joints

    @property
    def position_bounds(self) -> List[Tuple[float, float]]:
        return list(self.joint_limits)

    def satisfies_position_bounds(self, joint_values: Sequence[float],
                                  margin: float = 0.0) -> bool:
        """检查关节值是否在位置限制内"""
        if len(joint_values) != self.n_joints:
            return False
        for q, (lo, hi) in zip(joint_values, self.joint_limits):
            if q < lo - margin or q > hi + margin:
                return False
        return True

    def clamp(self, joint_values: Sequence[float]) -> np.ndarray:
        lows = np.array([lo for lo, _ in self.joint_limits])
        highs = np.array([hi for _, hi in self.joint_limits])
        return np.clip(np.asarray(joint_values, dtype=np.float64), lows, highs)

    def random_configuration(self, rng: np.random.Generator) -> np.ndarray:
        lows = np.array([lo for lo, _ in self.joint_limits])
        highs = np.array([hi for _, hi in self.joint_limits])
        return rng.uniform(lows, highs)

    def default_configuration(self) -> np.ndarray:
        """关节限制中点（限制含 0 时取 0）"""
        q = np.zeros(self.n_joints)
        for i, (lo, hi) in enumerate(self.joint_limits):
            if not lo <= 0.0 <= hi:
                q[i] = 0.5 * (lo + hi)
        return q

    # ==================== 零长度连杆识别 ====================

    @cached_property
    def zero_length_links(self) -> Set[int]:
        """识别零长度连杆（a=0 且 d=0 的连杆），索引 1-based"""
        result = set()
        for i, param in enumerate(self.dh_params):
            if abs(param['a']) < 1e-10 and abs(param['d']) < 1e-10:
                result.add(i + 1)
        if self.tool_frame is not None:
            if abs(self.tool_frame['a']) < 1e-10 and abs(self.tool_frame['d']) < 1e-10:
                result.add(self.n_joints + 1)
        return result

    def fingerprint(self) -> str:
        """基于 DH 参数与关节名称的 SHA256 指纹"""
        data = json.dumps({
            'name': self.name,
            'dh_params': self.dh_params,
            'joint_names': list(self.joint_names),
            'tool_frame': self.tool_frame,
        }, sort_keys=True, ensure_ascii=False)
        return hashlib.sha256(data.encode('utf-8')).hexdigest()

    def __repr__(self) -> str:
        return f"Robot(name={self.name!r}, n_joints={self.n_joints})"


# ==================== 便捷工厂函数 ====================

def load_robot(name: str) -> Robot:
    """按名称加载内置机器人配置

    Example:
        >>> robot = load_robot('ur5')
        >>> robot.name
        'UR5'
    """
    return Robot.from_config(name)


def list_configs() -> List[str]:
    """列出所有可用的内置机器人配置名称"""
    if not CONFIGS_DIR.exists():
        return []
    return sorted(f.stem for f in CONFIGS_DIR.glob('*.json'))
