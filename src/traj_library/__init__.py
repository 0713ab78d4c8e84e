"""
traj_library: 抓取 / 放置轨迹库

离线为每对 (放置点, 抓取点) 规划往返轨迹，保存为二进制文件，
运行时按下标线性查询。

- GridSampler: 网格采样 + IK → 关节空间目标
- TrajectoryPlanner: 单条规划（重试、shortcut 优化、时间参数化、路径验证）
- LibraryBuilder: 放置点 × 抓取点 双重循环构建
- PlanLibrary / save_plan_group / load_plan_group: 文件读写与查询
- TrajectoryLibrary: 门面
"""

from .models import (
    RectGrid, TargetVolume, Header, RobotState, JointTrajectory,
    MotionPlan, PlanGroup, TargetGroup, Obstacle, WorkspaceBounds,
    LibraryConfig,
)
from .scene import Scene, PlanningScene
from .collision import CollisionChecker
from .constraints import Constraints, build_pose_constraint, build_joint_constraint
from .grid_sampler import GridSampler, grid_linspace
from .motion_planner import (
    BasePlanner, MotionPlanRequest, PlanningResult, SamplingPlanner,
    PLANNERS, create_planner,
)
from .time_parameterization import TimeParameterizer, time_warp
from .trajectory_optimizer import TrajectoryOptimizer
from .trajectory_planner import TrajectoryPlanner, PlanOutcome
from .library_builder import LibraryBuilder, BuildReport, BuilderState
from .plan_store import (
    PlanFileError, PlanLibrary, save_plan_group, load_plan_group,
    encode_plan_group, decode_plan_group,
)
from .telemetry import TelemetrySink, NullSink, RecordingSink, PlotSink
from .replay import ReplaySession
from .library import TrajectoryLibrary

__version__ = "0.1.0"

__all__ = [
    'RectGrid', 'TargetVolume', 'Header', 'RobotState', 'JointTrajectory',
    'MotionPlan', 'PlanGroup', 'TargetGroup', 'Obstacle', 'WorkspaceBounds',
    'LibraryConfig',
    'Scene', 'PlanningScene', 'CollisionChecker',
    'Constraints', 'build_pose_constraint', 'build_joint_constraint',
    'GridSampler', 'grid_linspace',
    'BasePlanner', 'MotionPlanRequest', 'PlanningResult', 'SamplingPlanner',
    'PLANNERS', 'create_planner',
    'TimeParameterizer', 'time_warp',
    'TrajectoryOptimizer',
    'TrajectoryPlanner', 'PlanOutcome',
    'LibraryBuilder', 'BuildReport', 'BuilderState',
    'PlanFileError', 'PlanLibrary', 'save_plan_group', 'load_plan_group',
    'encode_plan_group', 'decode_plan_group',
    'TelemetrySink', 'NullSink', 'RecordingSink', 'PlotSink',
    'ReplaySession',
    'TrajectoryLibrary',
]
