"""
traj_library/trajectory_planner.py - 单条运动规划（含重试）

一次 plan() 调用最多尝试 plan_retries 次。每次尝试：
1. 以固定的工作空间与时间预算构造新的 MotionPlanRequest 并求解
2. 成功则 shortcut 优化 → 时间参数化 → 整体减速
3. 打包为 MotionPlan（start_state = 调用方给出的当前状态，
   end_state = 最后一个路径点）
4. 整条路径在规划场景中重新验证；验证失败计为一次失败尝试

所有失败都以 PlanOutcome(success=False) 返回，不抛异常。
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .constraints import Constraints
from .models import (
    Header, JointTrajectory, LibraryConfig, MotionPlan, RobotState,
)
from .motion_planner import BasePlanner, MotionPlanRequest
from .scene import PlanningScene
from .timing import Timer
from .trajectory_optimizer import TrajectoryOptimizer

logger = logging.getLogger(__name__)


@dataclass
class PlanOutcome:
    """规划结果：成功时 plan 非空"""
    success: bool
    plan: Optional[MotionPlan] = None
    attempts: int = 0
    reason: str = ""


class TrajectoryPlanner:
    """带重试的单条轨迹规划器

    Args:
        planning_scene: 规划场景
        planner: 关节空间运动规划器
        optimizer: 轨迹 shortcut 优化器
        config: 轨迹库配置（时间预算、重试次数、工作空间等）
        timer: 可选阶段计时器
    """

    def __init__(
        self,
        planning_scene: PlanningScene,
        planner: BasePlanner,
        optimizer: TrajectoryOptimizer,
        config: Optional[LibraryConfig] = None,
        timer: Optional[Timer] = None,
    ) -> None:
        self.planning_scene = planning_scene
        self.planner = planner
        self.optimizer = optimizer
        self.config = config or LibraryConfig()
        self.timer = timer or Timer()
        self.n_plan_calls = 0

    def _make_request(self, start_state: RobotState,
                      constraints: Constraints) -> MotionPlanRequest:
        cfg = self.config
        return MotionPlanRequest(
            group_name=cfg.group_name,
            start_state=start_state,
            goal_constraints=constraints,
            workspace_bounds=cfg.workspace_bounds,
            allowed_planning_time=cfg.planning_time,
            planner_id=cfg.planner_id,
        )

    def _pack(self, start_state: RobotState,
              trajectory: JointTrajectory) -> MotionPlan:
        trajectory.header = Header(frame_id=self.config.frame_id)
        end_state = self.planning_scene.make_state(trajectory.positions[-1])
        return MotionPlan(
            trajectory=trajectory,
            start_state=start_state,
            end_state=end_state,
        )

    def plan(self, start_state: RobotState, constraints: Constraints) -> PlanOutcome:
        """从 start_state 规划到满足 constraints 的配置"""
        retries = self.config.plan_retries
        joint_names = self.planning_scene.robot.joint_names
        reason = ""

        for attempt in range(1, retries + 1):
            self.n_plan_calls += 1
            request = self._make_request(start_state, constraints)
            with self.timer.phase("motion_plan"):
                result = self.planner.plan(request)
            if not result.success:
                reason = result.metadata.get("reason", "planner_failed")
                logger.debug("规划失败 (attempt %d/%d): %s", attempt, retries, reason)
                continue

            raw = JointTrajectory(joint_names=joint_names, positions=result.path)
            with self.timer.phase("optimize"):
                trajectory = self.optimizer.optimize_and_scale(raw)
            logger.info("Optimize: %d → %d waypoints.",
                        raw.n_waypoints, trajectory.n_waypoints)

            plan = self._pack(start_state, trajectory)
            if not self.planning_scene.is_path_valid(
                    plan.start_state, plan.trajectory, self.config.group_name):
                logger.error("Path invalid.")
                reason = "invalid_path"
                continue

            logger.info("Duration = %f.", plan.duration)
            return PlanOutcome(success=True, plan=plan, attempts=attempt)

        return PlanOutcome(success=False, attempts=retries, reason=reason or "planner_failed")
