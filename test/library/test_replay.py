"""test/library/test_replay.py - 轨迹库随机回放测试"""
import logging

from traj_library.models import (
    JointTrajectory, MotionPlan, PlanGroup, RobotState, TargetGroup,
)
from traj_library.plan_store import PlanLibrary
from traj_library.replay import ReplaySession
from traj_library.telemetry import RecordingSink

NAMES = ("j1", "j2")
PICK_Q = {0: (0.1, 0.0), 1: (0.2, 0.0)}
PLACE_Q = {0: (-0.1, 0.0), 1: (-0.2, 0.0)}


def _plan(q_from, q_to, pick, place, duration=1.0):
    traj = JointTrajectory(NAMES, [q_from, q_to], [0.0, duration])
    return MotionPlan(traj, RobotState(NAMES, q_from), RobotState(NAMES, q_to),
                      pick_index=pick, place_index=place)


def _full_library(n_picks=2, n_places=2):
    pick_group = PlanGroup(TargetGroup.PLACE, TargetGroup.PICK)
    place_group = PlanGroup(TargetGroup.PICK, TargetGroup.PLACE)
    for n in range(n_places):
        for m in range(n_picks):
            pick_group.add(_plan(PLACE_Q[n], PICK_Q[m], m, n, duration=1.0))
            place_group.add(_plan(PICK_Q[m], PLACE_Q[n], m, n, duration=2.0))
    return PlanLibrary(pick_group, place_group)


class TestReplaySession:

    def test_infers_target_counts(self):
        session = ReplaySession(_full_library(), sleep=lambda s: None)
        assert session.n_pick_targets == 2
        assert session.n_place_targets == 2

    def test_cycles_and_sleep(self):
        sleeps = []
        sink = RecordingSink()
        session = ReplaySession(_full_library(), sink=sink, sleep=sleeps.append)
        completed = session.run(max_cycles=3)
        assert completed == 3
        assert session.n_cycles == 3
        assert sleeps == [3.0, 3.0, 3.0]
        assert len(sink.trajectories) == 3

    def test_cycles_chain(self):
        session = ReplaySession(_full_library(), sleep=lambda s: None, seed=1)
        session.run(max_cycles=1, start_place=1)
        first = session.last_cycle
        assert first.place_from == 1
        session.run(max_cycles=1, start_place=first.place_to)
        assert session.last_cycle.place_from == first.place_to

    def test_reproducible_with_seed(self):
        def run(seed):
            session = ReplaySession(_full_library(), sleep=lambda s: None, seed=seed)
            cycles = []
            for _ in range(4):
                session.run(max_cycles=1)
                cycles.append(session.last_cycle)
            return cycles

        assert run(5) == run(5)

    def test_stops_when_no_pick_plan(self, caplog):
        lib = _full_library()
        lib.pick_group.plans = [p for p in lib.pick_group.plans if p.place_index != 1]
        sleeps = []
        session = ReplaySession(lib, n_pick_targets=2, n_place_targets=2,
                                sleep=sleeps.append, seed=0)
        with caplog.at_level(logging.ERROR, logger="traj_library.replay"):
            completed = session.run(max_cycles=10, start_place=1)
        assert completed == 0
        assert sleeps == []
        assert "No stored pick trajectory leaves place target 1" in caplog.text

    def test_stops_mid_run(self, caplog):
        # 只有 place 0 → pick 0 → place 1，之后 place 1 没有出发规划
        pick_group = PlanGroup(TargetGroup.PLACE, TargetGroup.PICK,
                               [_plan(PLACE_Q[0], PICK_Q[0], 0, 0)])
        place_group = PlanGroup(TargetGroup.PICK, TargetGroup.PLACE,
                                [_plan(PICK_Q[0], PLACE_Q[1], 0, 1)])
        session = ReplaySession(PlanLibrary(pick_group, place_group),
                                sleep=lambda s: None, seed=0)
        with caplog.at_level(logging.ERROR, logger="traj_library.replay"):
            completed = session.run(start_place=0)
        assert completed == 1
        assert session.last_cycle.place_to == 1
        assert "leaves place target 1" in caplog.text

    def test_empty_library(self, caplog):
        session = ReplaySession(PlanLibrary(), sleep=lambda s: None)
        with caplog.at_level(logging.ERROR, logger="traj_library.replay"):
            assert session.run(max_cycles=1) == 0

    def test_logs_endpoint_distance(self, caplog):
        session = ReplaySession(_full_library(), sleep=lambda s: None, seed=0)
        with caplog.at_level(logging.INFO, logger="traj_library.replay"):
            session.run(max_cycles=1)
        assert "Start state is 0.000000 from previous end state." in caplog.text
        assert "Trajectory has 2 nodes and takes 2.000000 seconds." in caplog.text
