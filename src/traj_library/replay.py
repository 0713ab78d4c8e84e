"""
traj_library/replay.py - 轨迹库回放演示

从随机放置点出发循环：
1. 随机选抓取点，直到库中存在 放置点 → 抓取点 的规划
2. 随机选放置点，直到库中存在 抓取点 → 放置点 的规划
3. 发布两段组合显示轨迹，记录相邻规划端点间的关节距离
4. 等待两段总时长

当前目标没有任何出发规划时，记 ERROR 并结束回放。
"""

import time
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Any, Optional

import numpy as np

from .models import MotionPlan, RobotState
from .plan_store import PlanLibrary
from .scene import PlanningScene
from .telemetry import (
    TelemetrySink, NullSink, safe_publish_scene, safe_publish_trajectory,
)

logger = logging.getLogger(__name__)


@dataclass
class ReplayCycle:
    """一次 放置 → 抓取 → 放置 循环"""
    place_from: int
    pick_index: int
    place_to: int
    duration: float
    pick_tries: int
    place_tries: int


class ReplaySession:
    """轨迹库回放

    Args:
        library: 已构建或已加载的轨迹库
        n_pick_targets / n_place_targets: 目标数量，默认由库中最大下标推断
        planning_scene: 用于生成场景快照（可选）
        sink: 遥测输出
        seed: 随机种子（默认 0，回放序列可复现）
        sleep: 等待函数，默认 time.sleep
    """

    def __init__(
        self,
        library: PlanLibrary,
        n_pick_targets: Optional[int] = None,
        n_place_targets: Optional[int] = None,
        planning_scene: Optional[PlanningScene] = None,
        sink: Optional[TelemetrySink] = None,
        seed: Optional[int] = 0,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self.library = library
        plans = library.pick_group.plans + library.place_group.plans
        self.n_pick_targets = (n_pick_targets if n_pick_targets is not None
                               else max((p.pick_index for p in plans), default=-1) + 1)
        self.n_place_targets = (n_place_targets if n_place_targets is not None
                                else max((p.place_index for p in plans), default=-1) + 1)
        self.planning_scene = planning_scene
        self.sink = sink or NullSink()
        self.sleep = sleep
        self.rng = rng if rng is not None else np.random.default_rng(seed)
        self.n_cycles = 0
        self.last_cycle: Optional[ReplayCycle] = None

    def _snapshot(self, state: RobotState) -> Dict[str, Any]:
        if self.planning_scene is not None:
            return self.planning_scene.snapshot(state)
        return {'joint_names': list(state.joint_names),
                'positions': state.positions.tolist()}

    def _has_pick_from(self, place_index: int) -> bool:
        return any(p.place_index == place_index and 0 <= p.pick_index < self.n_pick_targets
                   for p in self.library.pick_group.plans)

    def _has_place_from(self, pick_index: int) -> bool:
        return any(p.pick_index == pick_index and 0 <= p.place_index < self.n_place_targets
                   for p in self.library.place_group.plans)

    def _log_plan(self, plan: MotionPlan, previous_end: Optional[RobotState]) -> None:
        if previous_end is not None:
            logger.info("Start state is %f from previous end state.",
                        plan.start_state.distance(previous_end))
        logger.info("Trajectory has %d nodes and takes %f seconds.",
                    plan.num_waypoints, plan.duration)

    def run(self, max_cycles: Optional[int] = None,
            start_place: Optional[int] = None) -> int:
        """执行回放

        Args:
            max_cycles: 最大循环次数，None 表示不限
            start_place: 起始放置点，默认随机

        Returns:
            完成的循环次数
        """
        if self.n_pick_targets == 0 or self.n_place_targets == 0:
            logger.error("轨迹库为空，无法回放")
            return 0

        n = (int(start_place) if start_place is not None
             else int(self.rng.integers(self.n_place_targets)))
        end_state: Optional[RobotState] = None
        completed = 0

        while max_cycles is None or completed < max_cycles:
            if end_state is not None:
                safe_publish_scene(self.sink, self._snapshot(end_state))

            # ── 抓取段 ──
            if not self._has_pick_from(n):
                logger.error("No stored pick trajectory leaves place target %d. Stopping.", n)
                break
            pick_tries = 0
            while True:
                m = int(self.rng.integers(self.n_pick_targets))
                pick_tries += 1
                pick_plan = self.library.fetch_pick_plan(place_index=n, pick_index=m)
                if pick_plan is not None:
                    break
            logger.info("Found pick trajectory from place %d to pick %d after %d tries.",
                        n, m, pick_tries)
            safe_publish_scene(self.sink, self._snapshot(pick_plan.start_state))
            self._log_plan(pick_plan, end_state)
            end_state = pick_plan.end_state

            # ── 放置段 ──
            if not self._has_place_from(m):
                logger.error("No stored place trajectory leaves pick target %d. Stopping.", m)
                break
            place_from = n
            place_tries = 0
            while True:
                n = int(self.rng.integers(self.n_place_targets))
                place_tries += 1
                place_plan = self.library.fetch_place_plan(pick_index=m, place_index=n)
                if place_plan is not None:
                    break
            logger.info("Found place trajectory from pick %d to place %d after %d tries.",
                        m, n, place_tries)
            self._log_plan(place_plan, end_state)
            end_state = place_plan.end_state

            duration = pick_plan.duration + place_plan.duration
            safe_publish_trajectory(self.sink, pick_plan.start_state,
                                    [pick_plan.trajectory, place_plan.trajectory])
            safe_publish_scene(self.sink, self._snapshot(end_state))

            completed += 1
            self.n_cycles += 1
            self.last_cycle = ReplayCycle(place_from, m, n, duration,
                                          pick_tries, place_tries)
            self.sleep(duration)

        return completed
