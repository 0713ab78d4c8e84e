"""
traj_library/models.py - 轨迹库数据模型

定义轨迹库构建与查询使用的核心数据结构：RectGrid、TargetVolume、
Header、RobotState、JointTrajectory、MotionPlan、PlanGroup、
Obstacle、WorkspaceBounds 以及 LibraryConfig。
"""

import copy
import enum
import json
from pathlib import Path
from typing import List, Tuple, Dict, Optional, Any, Sequence
from dataclasses import dataclass, field, fields as dc_fields

import numpy as np

from arm_model.models import Pose, IDENTITY_QUAT


class TargetGroup(enum.IntEnum):
    """目标组：抓取点 / 放置点"""
    PICK = 0
    PLACE = 1


def as_joint_configuration(values: Sequence[float]) -> np.ndarray:
    """转为只读关节配置（存储后不可修改）"""
    q = np.array(values, dtype=np.float64).reshape(-1)
    q.setflags(write=False)
    return q


# ==================== 采样网格 ====================

@dataclass
class RectGrid:
    """轴对齐矩形采样网格

    各轴 (low, high, resolution)，所有采样点共用一个末端姿态。
    resolution = 1 时该轴退化为 low（间距为 0）。

    Attributes:
        x / y / z: (low, high, resolution)
        orientation: 四元数 (x, y, z, w)
    """
    x: Tuple[float, float, int]
    y: Tuple[float, float, int]
    z: Tuple[float, float, int]
    orientation: Tuple[float, float, float, float] = IDENTITY_QUAT

    def __post_init__(self) -> None:
        for name in ('x', 'y', 'z'):
            lo, hi, res = getattr(self, name)
            if int(res) < 1:
                raise ValueError(f"{name} 轴 resolution 必须 >= 1，得到 {res}")
            setattr(self, name, (float(lo), float(hi), int(res)))
        self.orientation = tuple(float(v) for v in self.orientation)

    def spacing(self, axis: str) -> float:
        lo, hi, res = getattr(self, axis)
        if res == 1:
            return 0.0
        return (hi - lo) / (res - 1)

    def axis_value(self, axis: str, index: int) -> float:
        lo, _, _ = getattr(self, axis)
        return lo + index * self.spacing(axis)

    def axis_values(self, axis: str) -> List[float]:
        _, _, res = getattr(self, axis)
        return [self.axis_value(axis, i) for i in range(res)]

    @property
    def shape(self) -> Tuple[int, int, int]:
        return (self.x[2], self.y[2], self.z[2])

    @property
    def n_points(self) -> int:
        return self.x[2] * self.y[2] * self.z[2]

    def pose_at(self, i: int, j: int, k: int) -> Pose:
        position = [
            self.axis_value('x', i),
            self.axis_value('y', j),
            self.axis_value('z', k),
        ]
        return Pose(position=position, orientation=self.orientation)

    def points(self):
        """按 x 外层 / y 中层 / z 内层 顺序生成采样位姿"""
        nx, ny, nz = self.shape
        for i in range(nx):
            for j in range(ny):
                for k in range(nz):
                    yield self.pose_at(i, j, k)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'x': list(self.x), 'y': list(self.y), 'z': list(self.z),
            'orientation': list(self.orientation),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RectGrid':
        return cls(
            x=tuple(data['x']),
            y=tuple(data['y']),
            z=tuple(data['z']),
            orientation=tuple(data.get('orientation', IDENTITY_QUAT)),
        )


@dataclass
class TargetVolume:
    """一个网格及其 IK 成功的关节配置（按生成顺序）"""
    grid: RectGrid
    configurations: List[np.ndarray] = field(default_factory=list)

    @property
    def target_count(self) -> int:
        return len(self.configurations)

    def __getitem__(self, index: int) -> np.ndarray:
        return self.configurations[index]


# ==================== 状态与轨迹 ====================

@dataclass
class Header:
    """消息头：序号、时间戳 (sec, nsec)、参考坐标系"""
    seq: int = 0
    stamp_sec: int = 0
    stamp_nsec: int = 0
    frame_id: str = ""


@dataclass(eq=False)
class RobotState:
    """规划场景的当前状态（显式值，在规划调用之间传递）"""
    joint_names: Tuple[str, ...]
    positions: np.ndarray
    header: Header = field(default_factory=Header)

    def __post_init__(self) -> None:
        self.joint_names = tuple(self.joint_names)
        self.positions = as_joint_configuration(self.positions)
        if len(self.joint_names) != self.positions.shape[0]:
            raise ValueError("joint_names 与 positions 长度不一致")

    def distance(self, other: 'RobotState') -> float:
        return float(np.linalg.norm(self.positions - other.positions))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RobotState):
            return NotImplemented
        return (self.joint_names == other.joint_names
                and self.header == other.header
                and np.array_equal(self.positions, other.positions))


@dataclass(eq=False)
class JointTrajectory:
    """关节空间路径点轨迹

    Attributes:
        joint_names: 关节名称
        positions: (N, dof) 路径点
        time_from_start: (N,) 各路径点自起点起的时间 (s)
        header: 消息头
    """
    joint_names: Tuple[str, ...]
    positions: np.ndarray
    time_from_start: Optional[np.ndarray] = None
    header: Header = field(default_factory=Header)

    def __post_init__(self) -> None:
        self.joint_names = tuple(self.joint_names)
        self.positions = np.array(self.positions, dtype=np.float64)
        if self.positions.ndim == 1:
            self.positions = self.positions.reshape(-1, len(self.joint_names))
        if self.time_from_start is None:
            self.time_from_start = np.zeros(self.positions.shape[0])
        self.time_from_start = np.array(self.time_from_start, dtype=np.float64)
        if self.time_from_start.shape[0] != self.positions.shape[0]:
            raise ValueError("time_from_start 与路径点数量不一致")

    @property
    def n_waypoints(self) -> int:
        return int(self.positions.shape[0])

    @property
    def duration(self) -> float:
        if self.n_waypoints == 0:
            return 0.0
        return float(self.time_from_start[-1])

    def duration_between(self, i: int, j: int) -> float:
        return float(self.time_from_start[j] - self.time_from_start[i])

    def durations_from_previous(self) -> np.ndarray:
        if self.n_waypoints == 0:
            return np.zeros(0)
        return np.diff(self.time_from_start, prepend=self.time_from_start[0])

    def copy(self) -> 'JointTrajectory':
        return JointTrajectory(
            joint_names=self.joint_names,
            positions=self.positions.copy(),
            time_from_start=self.time_from_start.copy(),
            header=copy.copy(self.header),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, JointTrajectory):
            return NotImplemented
        return (self.joint_names == other.joint_names
                and self.header == other.header
                and np.array_equal(self.positions, other.positions)
                and np.array_equal(self.time_from_start, other.time_from_start))


@dataclass(eq=False)
class MotionPlan:
    """一条已优化、已时间参数化的运动规划

    pick_index / place_index 标记该规划连接的抓取点与放置点下标。
    duration 与 num_waypoints 由轨迹推导。
    """
    trajectory: JointTrajectory
    start_state: RobotState
    end_state: RobotState
    pick_index: int = -1
    place_index: int = -1

    @property
    def duration(self) -> float:
        return self.trajectory.duration

    @property
    def num_waypoints(self) -> int:
        return self.trajectory.n_waypoints

    def tagged(self, pick_index: int, place_index: int) -> 'MotionPlan':
        return MotionPlan(
            trajectory=self.trajectory,
            start_state=self.start_state,
            end_state=self.end_state,
            pick_index=int(pick_index),
            place_index=int(place_index),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MotionPlan):
            return NotImplemented
        return (self.pick_index == other.pick_index
                and self.place_index == other.place_index
                and self.trajectory == other.trajectory
                and self.start_state == other.start_state
                and self.end_state == other.end_state)


@dataclass
class PlanGroup:
    """同一方向（抓取段或放置段）的全部运动规划

    Attributes:
        start_group: 起点目标组
        end_group: 终点目标组
        plans: 运动规划列表（按加入顺序）
    """
    start_group: TargetGroup
    end_group: TargetGroup
    plans: List[MotionPlan] = field(default_factory=list)

    @property
    def plan_count(self) -> int:
        return len(self.plans)

    def add(self, plan: MotionPlan) -> None:
        self.plans.append(plan)

    def find(self, pick_index: int, place_index: int) -> Optional[MotionPlan]:
        """线性扫描，返回第一个匹配 (pick_index, place_index) 的规划"""
        for plan in self.plans:
            if plan.place_index == place_index and plan.pick_index == pick_index:
                return plan
        return None

    def __len__(self) -> int:
        return len(self.plans)


# ==================== 场景 ====================

@dataclass
class Obstacle:
    """AABB 障碍物

    Attributes:
        min_point: AABB 最小角点 [x, y, z]
        max_point: AABB 最大角点 [x, y, z]
        name: 障碍物名称
        allowed_links: 允许与之接触的连杆（1-based 索引），对应允许碰撞矩阵条目
    """
    min_point: np.ndarray
    max_point: np.ndarray
    name: str = ""
    allowed_links: Tuple[int, ...] = ()

    def __post_init__(self) -> None:
        self.min_point = np.asarray(self.min_point, dtype=np.float64)
        self.max_point = np.asarray(self.max_point, dtype=np.float64)
        if self.min_point.shape != self.max_point.shape:
            raise ValueError("min_point 和 max_point 维度不匹配")
        self.allowed_links = tuple(int(i) for i in self.allowed_links)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'min': self.min_point.tolist(),
            'max': self.max_point.tolist(),
            'name': self.name,
            'allowed_links': list(self.allowed_links),
        }


@dataclass
class WorkspaceBounds:
    """规划请求的工作空间包围盒 (m)"""
    min_corner: Tuple[float, float, float] = (-1.0, -1.0, 0.25)
    max_corner: Tuple[float, float, float] = (1.0, 1.0, 0.7)

    def contains(self, point: Sequence[float]) -> bool:
        return all(lo <= float(p) <= hi
                   for p, lo, hi in zip(point, self.min_corner, self.max_corner))


# ==================== 配置 ====================

@dataclass
class LibraryConfig:
    """轨迹库构建参数配置

    Attributes:
        group_name: 规划组名称
        frame_id: 轨迹与状态消息的参考坐标系
        ik_attempts: 网格采样时 IK 最大尝试次数
        ik_timeout: 单次 IK 尝试时间预算 (s)
        planner_id: 规划算法 ('RRTConnect' / 'RRT')
        planning_time: 单次规划的时间预算 (s)
        plan_retries: 单条规划的最大尝试次数
        planner_step_size: RRT 扩展步长 (rad)
        planner_resolution: RRT 边碰撞检测间隔 (rad)
        planner_seed: 规划器随机种子
        workspace_min / workspace_max: 规划请求的工作空间包围盒
        enforce_workspace_bounds: 规划时是否要求末端位于工作空间内
        collision_check_dt: shortcut 碰撞检测的时间步长 (s)
        slow_factor: 时间参数化后的整体减速倍数
        joint_tolerance: 关节目标约束容差 (rad)
        position_tolerance: 位姿目标位置容差 (m)
        orientation_tolerance: 位姿目标姿态容差 (rad)
        link_padding: 连杆碰撞检测的安全裕度 (m)
        check_self_collision: 是否检测自碰撞
        add_ground_plane: 是否在 z=0 加入地面（基座连杆允许接触）
        restore_place_state_on_failure: 放置段失败后是否恢复到放置点状态
        pick_file / place_file: 轨迹库文件名
        file_format: 'legacy'（与原始二进制布局兼容）或 'v2'（带版本头）
        verbose: 是否输出详细日志
    """
    group_name: str = "manipulator"
    frame_id: str = "world"
    ik_attempts: int = 10
    ik_timeout: float = 0.1
    ik_seed: Optional[int] = 0
    planner_id: str = "RRTConnect"
    planning_time: float = 5.0
    plan_retries: int = 3
    planner_step_size: float = 0.5
    planner_resolution: float = 0.05
    planner_seed: Optional[int] = 0
    workspace_min: Tuple[float, float, float] = (-1.0, -1.0, 0.25)
    workspace_max: Tuple[float, float, float] = (1.0, 1.0, 0.7)
    enforce_workspace_bounds: bool = False
    collision_check_dt: float = 0.05
    slow_factor: float = 3.0
    joint_tolerance: float = 0.01
    position_tolerance: float = 0.01
    orientation_tolerance: float = 0.01
    link_padding: float = 0.0
    check_self_collision: bool = True
    add_ground_plane: bool = True
    restore_place_state_on_failure: bool = False
    pick_file: str = "pickplan.bin"
    place_file: str = "placeplan.bin"
    file_format: str = "legacy"
    verbose: bool = False

    def __post_init__(self) -> None:
        self.workspace_min = tuple(float(v) for v in self.workspace_min)
        self.workspace_max = tuple(float(v) for v in self.workspace_max)
        if self.plan_retries < 1:
            raise ValueError("plan_retries 必须 >= 1")
        if self.collision_check_dt <= 0.0:
            raise ValueError("collision_check_dt 必须 > 0")
        if self.file_format not in ('legacy', 'v2'):
            raise ValueError(f"未知文件格式: {self.file_format}")

    @property
    def workspace_bounds(self) -> WorkspaceBounds:
        return WorkspaceBounds(self.workspace_min, self.workspace_max)

    # ── JSON 序列化 ──

    def to_dict(self) -> Dict[str, Any]:
        """转为字典"""
        data = {f.name: getattr(self, f.name) for f in dc_fields(self)}
        data['workspace_min'] = list(self.workspace_min)
        data['workspace_max'] = list(self.workspace_max)
        return data

    def to_json(self, filepath: str | Path) -> str:
        """保存到 JSON 文件，返回保存路径"""
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)
        return str(filepath)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LibraryConfig':
        """从字典创建（忽略未知字段，缺失字段用默认值）"""
        valid_fields = {f.name for f in dc_fields(cls)}
        filtered = {k: v for k, v in data.items() if k in valid_fields}
        return cls(**filtered)

    @classmethod
    def from_json(cls, filepath: str | Path) -> 'LibraryConfig':
        filepath = Path(filepath)
        with open(filepath, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return cls.from_dict(data)
