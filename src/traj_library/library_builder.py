"""
traj_library/library_builder.py - 轨迹库构建

对每个放置点 n（外层）与每个抓取点 m（内层）：

    AT_PLACE ──规划 place n → pick m──▶ PICK_IN_PROGRESS
        失败 → 跳过 m，保持当前状态
        成功 → AT_PICK（当前状态 = 抓取段终点）
    AT_PICK ──规划 pick m → place n──▶ PLACE_IN_PROGRESS
        失败 → 跳过 m，当前状态不恢复
               （restore_place_state_on_failure=True 时恢复到 place n）
        成功 → 两条规划标记 (m, n) 后入库，恢复到 place n，AT_PLACE

当前状态是显式传递的 RobotState 值；两段规划成功时发布组合显示轨迹。
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

from arm_model.robot import Robot
from .constraints import build_joint_constraint
from .models import (
    LibraryConfig, PlanGroup, RobotState, TargetGroup, TargetVolume,
)
from .scene import PlanningScene
from .telemetry import (
    TelemetrySink, NullSink, safe_publish_scene, safe_publish_trajectory,
)
from .timing import Timer
from .trajectory_planner import TrajectoryPlanner

logger = logging.getLogger(__name__)


class BuilderState(enum.Enum):
    AT_PLACE = "at_place"
    PICK_IN_PROGRESS = "pick_in_progress"
    AT_PICK = "at_pick"
    PLACE_IN_PROGRESS = "place_in_progress"


@dataclass
class BuildReport:
    """构建结果

    Attributes:
        pick_group: 放置点 → 抓取点 的规划（抓取段）
        place_group: 抓取点 → 放置点 的规划（放置段）
        success_count: 成功入库的 (pick, place) 对数
        theoretical_count: 理论最大对数 = 抓取点数 × 放置点数
        failed_pairs: 被跳过的 (pick_index, place_index, 失败段)
    """
    pick_group: PlanGroup = field(
        default_factory=lambda: PlanGroup(TargetGroup.PLACE, TargetGroup.PICK))
    place_group: PlanGroup = field(
        default_factory=lambda: PlanGroup(TargetGroup.PICK, TargetGroup.PLACE))
    success_count: int = 0
    theoretical_count: int = 0
    failed_pairs: List[Tuple[int, int, str]] = field(default_factory=list)
    timing: dict = field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        if self.theoretical_count == 0:
            return 0.0
        return self.success_count / self.theoretical_count


class LibraryBuilder:
    """轨迹库构建器

    Args:
        trajectory_planner: 带重试的单条规划器
        planning_scene: 规划场景（构造状态、场景快照）
        config: 轨迹库配置
        sink: 遥测输出

    Example:
        >>> builder = LibraryBuilder(trajectory_planner, planning_scene, config)
        >>> report = builder.build(pick_volume, place_volume)
        >>> report.success_count, report.theoretical_count
    """

    def __init__(
        self,
        trajectory_planner: TrajectoryPlanner,
        planning_scene: PlanningScene,
        config: Optional[LibraryConfig] = None,
        sink: Optional[TelemetrySink] = None,
        timer: Optional[Timer] = None,
    ) -> None:
        self.trajectory_planner = trajectory_planner
        self.planning_scene = planning_scene
        self.config = config or LibraryConfig()
        self.sink = sink or NullSink()
        self.timer = timer or Timer()
        self.state = BuilderState.AT_PLACE
        self.current_state: Optional[RobotState] = None

    @property
    def robot(self) -> Robot:
        return self.planning_scene.robot

    def _enter(self, state: BuilderState) -> None:
        logger.debug("%s → %s", self.state.value, state.value)
        self.state = state

    def _set_current(self, state: RobotState) -> None:
        self.current_state = state
        safe_publish_scene(self.sink, self.planning_scene.snapshot(state))

    def _joint_goal(self, q: np.ndarray):
        return build_joint_constraint(q, self.robot, self.config.group_name,
                                      tolerance=self.config.joint_tolerance)

    def build(self, pick_volume: TargetVolume, place_volume: TargetVolume) -> BuildReport:
        """构建轨迹库

        任一目标集合为空时记 ERROR 并返回空结果。
        """
        n_picks = pick_volume.target_count
        n_places = place_volume.target_count
        report = BuildReport(theoretical_count=n_picks * n_places)

        if n_picks == 0 or n_places == 0:
            logger.error("No pick or place targets defined. Cannot build library.")
            return report

        with self.timer.phase("build"):
            for n in range(n_places):
                self._build_place(n, pick_volume, place_volume, report)

        report.timing = self.timer.to_dict()
        logger.info("Generated %d trajectories out of a theoretical %d.",
                    report.success_count, report.theoretical_count)
        return report

    def _build_place(self, n: int, pick_volume: TargetVolume,
                     place_volume: TargetVolume, report: BuildReport) -> None:
        logger.info("Jumping to place pose %d", n)
        place_state = self.planning_scene.make_state(place_volume[n])
        self._enter(BuilderState.AT_PLACE)
        self._set_current(place_state)

        for m in range(pick_volume.target_count):
            # ── 抓取段: 当前状态 → pick m ──
            self._enter(BuilderState.PICK_IN_PROGRESS)
            pick_outcome = self.trajectory_planner.plan(
                self.current_state, self._joint_goal(pick_volume[m]))
            if not pick_outcome.success:
                logger.error("Planner failed to generate plan for pick target %d. Skipping.", m)
                report.failed_pairs.append((m, n, "pick"))
                self._enter(BuilderState.AT_PLACE)
                continue

            self._enter(BuilderState.AT_PICK)
            self._set_current(pick_outcome.plan.end_state)
            logger.info("Successfully planned pick trajectory.")

            # ── 放置段: pick m → place n ──
            self._enter(BuilderState.PLACE_IN_PROGRESS)
            place_outcome = self.trajectory_planner.plan(
                self.current_state, self._joint_goal(place_volume[n]))
            if not place_outcome.success:
                logger.error("Planner failed to generate plan for place target %d. Skipping.", m)
                report.failed_pairs.append((m, n, "place"))
                if self.config.restore_place_state_on_failure:
                    self._enter(BuilderState.AT_PLACE)
                    self._set_current(place_state)
                else:
                    self._enter(BuilderState.AT_PICK)
                continue

            pick_plan = pick_outcome.plan.tagged(pick_index=m, place_index=n)
            place_plan = place_outcome.plan.tagged(pick_index=m, place_index=n)
            safe_publish_trajectory(self.sink, pick_plan.start_state,
                                    [pick_plan.trajectory, place_plan.trajectory])

            report.pick_group.add(pick_plan)
            report.place_group.add(place_plan)

            self._enter(BuilderState.AT_PLACE)
            self._set_current(place_state)
            logger.info("Successfully planned place trajectory.")
            report.success_count += 1
            logger.info("Trajectory set %d saved.", report.success_count)
