"""
traj_library/motion_planner.py - 关节空间运动规划器

MotionPlanRequest ：一次规划请求（起点状态 + 目标约束 + 工作空间 + 时间预算）
PlanningResult    ：规划结果（原始路径点，未做时间参数化）
BasePlanner ABC   ：规划器能力接口
SamplingPlanner   ：RRT / RRT-Connect 实现

规划算法在构造时按 planner_id 从固定注册表 PLANNERS 中选择。
"""

from __future__ import annotations

import abc
import time
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from arm_model.ik import PoseIKSolver
from .constraints import Constraints
from .models import RobotState, WorkspaceBounds
from .scene import PlanningScene

logger = logging.getLogger(__name__)

ValidityFn = Callable[[np.ndarray], bool]


# ═══════════════════════════════════════════════════════════════════════════
# 请求与结果
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class MotionPlanRequest:
    """一次规划请求."""

    group_name: str
    start_state: RobotState
    goal_constraints: Constraints
    workspace_bounds: WorkspaceBounds = field(default_factory=WorkspaceBounds)
    allowed_planning_time: float = 5.0
    planner_id: str = "RRTConnect"


@dataclass
class PlanningResult:
    """规划结果."""

    success: bool
    path: Optional[np.ndarray]       # (N, DOF) waypoints, None if failed
    cost: float                      # path length (L2 in joint space)
    planning_time: float
    collision_checks: int = 0
    nodes_explored: int = 0
    metadata: Dict = field(default_factory=dict)

    @property
    def n_waypoints(self) -> int:
        if self.path is None:
            return 0
        return self.path.shape[0]

    @staticmethod
    def failure(planning_time: float = 0.0,
                collision_checks: int = 0,
                nodes_explored: int = 0,
                **metadata) -> "PlanningResult":
        return PlanningResult(
            success=False, path=None, cost=float("inf"),
            planning_time=planning_time,
            collision_checks=collision_checks,
            nodes_explored=nodes_explored,
            metadata=metadata,
        )


# ═══════════════════════════════════════════════════════════════════════════
# BasePlanner ABC
# ═══════════════════════════════════════════════════════════════════════════

class BasePlanner(abc.ABC):
    """规划器能力接口.

    生命周期::

        planner = create_planner("RRTConnect", planning_scene, ik_solver)
        r1 = planner.plan(request1)
        r2 = planner.plan(request2)
    """

    @abc.abstractmethod
    def plan(self, request: MotionPlanRequest) -> PlanningResult:
        """执行规划，失败时返回 success=False 的结果（不抛异常）."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """规划器名称."""


# ═══════════════════════════════════════════════════════════════════════════
# _NodePool - 树节点存储
# ═══════════════════════════════════════════════════════════════════════════

class _NodePool:
    """用 numpy 数组存储树节点."""
    __slots__ = ('configs', 'parents', 'n', 'cap', 'ndim')

    def __init__(self, ndim: int, cap: int = 1024):
        self.ndim = ndim
        self.cap = cap
        self.configs = np.empty((cap, ndim), dtype=np.float64)
        self.parents = np.full(cap, -1, dtype=np.int32)
        self.n = 0

    def add(self, config: np.ndarray, parent: int) -> int:
        if self.n >= self.cap:
            self.cap *= 2
            new_c = np.empty((self.cap, self.ndim), dtype=np.float64)
            new_c[:self.n] = self.configs[:self.n]
            self.configs = new_c
            new_p = np.full(self.cap, -1, dtype=np.int32)
            new_p[:self.n] = self.parents[:self.n]
            self.parents = new_p
        idx = self.n
        self.configs[idx] = config
        self.parents[idx] = parent
        self.n += 1
        return idx

    def nearest(self, config: np.ndarray) -> int:
        diffs = self.configs[:self.n] - config
        return int(np.argmin(np.sum(diffs * diffs, axis=1)))

    def extract_path(self, idx: int) -> List[np.ndarray]:
        """根节点 → idx 的路径"""
        path = []
        while idx >= 0:
            path.append(self.configs[idx].copy())
            idx = int(self.parents[idx])
        path.reverse()
        return path


def _steer(q_from: np.ndarray, q_to: np.ndarray, step_size: float) -> np.ndarray:
    diff = q_to - q_from
    dist = np.linalg.norm(diff)
    if dist <= step_size:
        return q_to.copy()
    return q_from + (step_size / dist) * diff


def _path_length(waypoints: Sequence[np.ndarray]) -> float:
    if len(waypoints) < 2:
        return 0.0
    return float(sum(
        np.linalg.norm(waypoints[i] - waypoints[i - 1])
        for i in range(1, len(waypoints))
    ))


class _SegmentChecker:
    """按关节空间间隔采样检查直线段，并统计调用次数."""

    def __init__(self, validity: ValidityFn, resolution: float):
        self.validity = validity
        self.resolution = resolution
        self.n_checks = 0

    def config_free(self, q: np.ndarray) -> bool:
        self.n_checks += 1
        return self.validity(q)

    def segment_free(self, q_from: np.ndarray, q_to: np.ndarray) -> bool:
        dist = float(np.linalg.norm(q_to - q_from))
        n_steps = max(1, int(np.ceil(dist / self.resolution)))
        for k in range(1, n_steps + 1):
            if not self.config_free(q_from + (k / n_steps) * (q_to - q_from)):
                return False
        return True


# ═══════════════════════════════════════════════════════════════════════════
# 算法
# ═══════════════════════════════════════════════════════════════════════════

def plan_rrt(q_start, q_goal, lows, highs, seg, rng, *,
             timeout=5.0, step_size=0.5, goal_bias=0.05, goal_tol=0.3):
    pool = _NodePool(len(q_start))
    pool.add(q_start, -1)
    t0 = time.perf_counter()

    while time.perf_counter() - t0 < timeout:
        q_rand = q_goal.copy() if rng.uniform() < goal_bias else rng.uniform(lows, highs)
        idx_near = pool.nearest(q_rand)
        q_near = pool.configs[idx_near]
        q_new = _steer(q_near, q_rand, step_size)
        if not seg.segment_free(q_near, q_new):
            continue
        idx_new = pool.add(q_new, idx_near)

        if np.linalg.norm(q_new - q_goal) < goal_tol and seg.segment_free(q_new, q_goal):
            idx_goal = pool.add(q_goal, idx_new)
            return pool.extract_path(idx_goal), pool.n

    return None, pool.n


def plan_rrt_connect(q_start, q_goal, lows, highs, seg, rng, *,
                     timeout=5.0, step_size=0.5):
    tree_start, tree_goal = _NodePool(len(q_start)), _NodePool(len(q_start))
    tree_start.add(q_start, -1)
    tree_goal.add(q_goal, -1)
    tree_a, tree_b = tree_start, tree_goal
    t0 = time.perf_counter()

    def _extend(tree, q_target):
        idx_near = tree.nearest(q_target)
        q_near = tree.configs[idx_near]
        q_new = _steer(q_near, q_target, step_size)
        if not seg.segment_free(q_near, q_new):
            return None, None
        return tree.add(q_new, idx_near), q_new

    def _connect(tree, q_target):
        while True:
            idx, q_new = _extend(tree, q_target)
            if idx is None:
                return None
            if np.linalg.norm(q_new - q_target) < 1e-9:
                return idx

    # 先尝试直连
    if seg.segment_free(q_start, q_goal):
        return [q_start.copy(), q_goal.copy()], 2

    while time.perf_counter() - t0 < timeout:
        q_rand = rng.uniform(lows, highs)
        idx_a, q_new_a = _extend(tree_a, q_rand)
        if idx_a is not None:
            idx_b = _connect(tree_b, q_new_a)
            if idx_b is not None:
                if tree_a is tree_start:
                    idx_s, idx_g = idx_a, idx_b
                else:
                    idx_s, idx_g = idx_b, idx_a
                path_s = tree_start.extract_path(idx_s)
                path_g = tree_goal.extract_path(idx_g)
                path_g.reverse()
                return path_s + path_g[1:], tree_start.n + tree_goal.n
        tree_a, tree_b = tree_b, tree_a

    return None, tree_start.n + tree_goal.n


PLANNERS = {
    "RRT": plan_rrt,
    "RRTConnect": plan_rrt_connect,
}


# ═══════════════════════════════════════════════════════════════════════════
# SamplingPlanner
# ═══════════════════════════════════════════════════════════════════════════

class SamplingPlanner(BasePlanner):
    """RRT 系列算法的规划器实现.

    关节目标直接作为树的目标配置；位姿目标先经 IK 求解为关节配置。

    Args:
        algorithm: 'RRT' | 'RRTConnect'
        planning_scene: 规划场景（提供有效性检查）
        ik_solver: 位姿目标的 IK 求解器（可选）
        step_size: 树扩展步长 (rad)
        resolution: 边碰撞检测间隔 (rad)
        seed: 随机种子（规划器生命周期内只初始化一次）
        enforce_workspace_bounds: 是否要求末端位于请求的工作空间内
    """

    def __init__(
        self,
        algorithm: str,
        planning_scene: PlanningScene,
        ik_solver: Optional[PoseIKSolver] = None,
        step_size: float = 0.5,
        resolution: float = 0.05,
        seed: Optional[int] = None,
        goal_bias: float = 0.05,
        goal_tol: float = 0.3,
        enforce_workspace_bounds: bool = False,
    ) -> None:
        if algorithm not in PLANNERS:
            raise ValueError(f"Unknown planner: {algorithm}. "
                             f"Choose from {list(PLANNERS.keys())}")
        self._algorithm = algorithm
        self._fn = PLANNERS[algorithm]
        self.planning_scene = planning_scene
        self.ik_solver = ik_solver
        self.step_size = step_size
        self.resolution = resolution
        self.goal_bias = goal_bias
        self.goal_tol = goal_tol
        self.enforce_workspace_bounds = enforce_workspace_bounds
        self._rng = np.random.default_rng(seed)

    @property
    def name(self) -> str:
        return self._algorithm

    def _validity_fn(self, bounds: WorkspaceBounds) -> ValidityFn:
        scene = self.planning_scene
        if not self.enforce_workspace_bounds:
            return scene.is_state_valid

        robot = scene.robot

        def _valid(q: np.ndarray) -> bool:
            pos, _ = robot.end_effector_pose(q)
            return bounds.contains(pos) and scene.is_state_valid(q)
        return _valid

    def _resolve_goal(self, request: MotionPlanRequest,
                      validity: ValidityFn) -> Optional[np.ndarray]:
        goal = request.goal_constraints.goal_configuration()
        if goal is not None:
            return goal
        pose = request.goal_constraints.target_pose()
        if pose is None or self.ik_solver is None:
            logger.error("无法解析目标约束 '%s'", request.goal_constraints.name)
            return None
        return self.ik_solver.solve(pose, validity=validity,
                                    seed_config=request.start_state.positions)

    def plan(self, request: MotionPlanRequest) -> PlanningResult:
        t0 = time.perf_counter()
        robot = self.planning_scene.robot
        if request.group_name != self.planning_scene.group_name:
            raise ValueError(f"未知规划组 '{request.group_name}'")

        validity = self._validity_fn(request.workspace_bounds)
        seg = _SegmentChecker(validity, self.resolution)
        q_start = np.array(request.start_state.positions, dtype=np.float64)

        if not seg.config_free(q_start):
            logger.warning("起点状态无效")
            return PlanningResult.failure(time.perf_counter() - t0, seg.n_checks,
                                          reason="invalid_start")

        q_goal = self._resolve_goal(request, validity)
        if q_goal is None or not seg.config_free(q_goal):
            logger.warning("目标状态无效或不可达")
            return PlanningResult.failure(time.perf_counter() - t0, seg.n_checks,
                                          reason="invalid_goal")

        lows = np.array([lo for lo, _ in robot.joint_limits], dtype=np.float64)
        highs = np.array([hi for _, hi in robot.joint_limits], dtype=np.float64)
        kwargs = dict(timeout=request.allowed_planning_time, step_size=self.step_size)
        if self._algorithm == "RRT":
            kwargs.update(goal_bias=self.goal_bias, goal_tol=self.goal_tol)

        waypoints, n_nodes = self._fn(q_start, q_goal, lows, highs, seg,
                                      self._rng, **kwargs)
        dt = time.perf_counter() - t0

        if waypoints is None:
            logger.debug("%s 在 %.2fs 内未找到路径", self._algorithm, dt)
            return PlanningResult.failure(dt, seg.n_checks, n_nodes, reason="timeout")

        path = np.array(waypoints, dtype=np.float64)
        return PlanningResult(
            success=True,
            path=path,
            cost=_path_length(waypoints),
            planning_time=dt,
            collision_checks=seg.n_checks,
            nodes_explored=n_nodes,
            metadata={"algorithm": self._algorithm},
        )


def create_planner(planner_id: str, planning_scene: PlanningScene,
                   ik_solver: Optional[PoseIKSolver] = None,
                   **kwargs) -> BasePlanner:
    """按 planner_id 从注册表构造规划器

    Raises:
        ValueError: 未知 planner_id
    """
    return SamplingPlanner(planner_id, planning_scene, ik_solver=ik_solver, **kwargs)
