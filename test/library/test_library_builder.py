"""test/library/test_library_builder.py - 轨迹库构建状态机测试"""
import logging

import numpy as np

from traj_library.library_builder import BuilderState
from traj_library.models import LibraryConfig, RectGrid, TargetGroup, TargetVolume
from traj_library.telemetry import TelemetrySink


def _near(a, b):
    return np.allclose(a, b, atol=1e-9)


def _first_request_to(planner, goal):
    for request in planner.requests:
        if _near(request.goal_constraints.goal_configuration(), goal):
            return request
    return None


class TestBuildAllSucceed:

    def test_counts_and_order(self, make_builder, pick_volume, place_volume):
        builder, _ = make_builder()
        report = builder.build(pick_volume, place_volume)

        assert report.success_count == 4
        assert report.theoretical_count == 4
        assert report.success_rate == 1.0
        assert report.failed_pairs == []
        pairs = [(p.pick_index, p.place_index) for p in report.pick_group.plans]
        assert pairs == [(0, 0), (1, 0), (0, 1), (1, 1)]
        assert [(p.pick_index, p.place_index) for p in report.place_group.plans] == pairs

    def test_group_directions(self, make_builder, pick_volume, place_volume):
        builder, _ = make_builder()
        report = builder.build(pick_volume, place_volume)
        assert report.pick_group.start_group == TargetGroup.PLACE
        assert report.pick_group.end_group == TargetGroup.PICK
        assert report.place_group.start_group == TargetGroup.PICK
        assert report.place_group.end_group == TargetGroup.PLACE

    def test_plans_connect_targets(self, make_builder, pick_volume, place_volume):
        builder, _ = make_builder()
        report = builder.build(pick_volume, place_volume)
        for pick_plan, place_plan in zip(report.pick_group.plans, report.place_group.plans):
            m, n = pick_plan.pick_index, pick_plan.place_index
            assert _near(pick_plan.start_state.positions, place_volume[n])
            assert _near(pick_plan.end_state.positions, pick_volume[m])
            assert _near(place_plan.start_state.positions, pick_volume[m])
            assert _near(place_plan.end_state.positions, place_volume[n])
            assert pick_plan.duration > 0.0

    def test_each_pick_starts_from_place(self, make_builder, pick_volume, place_volume):
        builder, planner = make_builder()
        builder.build(pick_volume, place_volume)
        # 请求顺序: pick(0,0) place(0,0) pick(1,0) place(1,0) ...
        pick_requests = planner.requests[0::2]
        expected = [place_volume[0], place_volume[0], place_volume[1], place_volume[1]]
        for request, place in zip(pick_requests, expected):
            assert _near(request.start_state.positions, place)

    def test_telemetry(self, make_builder, pick_volume, place_volume, recording_sink):
        builder, _ = make_builder()
        report = builder.build(pick_volume, place_volume)
        # 每个放置点 1 次 + 每对成功 2 次
        assert len(recording_sink.scenes) == 10
        assert len(recording_sink.trajectories) == 4
        start_state, trajectories = recording_sink.trajectories[0]
        assert len(trajectories) == 2
        assert trajectories[0] is report.pick_group.plans[0].trajectory
        assert trajectories[1] is report.place_group.plans[0].trajectory

    def test_final_state(self, make_builder, pick_volume, place_volume):
        builder, _ = make_builder()
        builder.build(pick_volume, place_volume)
        assert builder.state == BuilderState.AT_PLACE
        assert _near(builder.current_state.positions, place_volume[1])

    def test_summary_log(self, make_builder, pick_volume, place_volume, caplog):
        builder, _ = make_builder()
        with caplog.at_level(logging.INFO, logger="traj_library.library_builder"):
            builder.build(pick_volume, place_volume)
        assert "Generated 4 trajectories out of a theoretical 4." in caplog.text
        assert "Jumping to place pose 1" in caplog.text


class TestBuildFailures:

    def test_empty_targets(self, make_builder, pick_volume, caplog):
        builder, planner = make_builder()
        empty = TargetVolume(grid=RectGrid((0, 0, 1), (0, 0, 1), (0, 0, 1)))
        with caplog.at_level(logging.ERROR, logger="traj_library.library_builder"):
            report = builder.build(pick_volume, empty)
        assert report.success_count == 0
        assert report.theoretical_count == 0
        assert report.success_rate == 0.0
        assert planner.requests == []
        assert "No pick or place targets defined" in caplog.text

    def test_pick_failure_skips_target(self, make_builder, pick_volume, place_volume):
        builder, planner = make_builder(
            fail_when=lambda start, goal: _near(goal, pick_volume[1]))
        report = builder.build(pick_volume, place_volume)
        assert report.success_count == 2
        assert [(p.pick_index, p.place_index) for p in report.pick_group.plans] == [
            (0, 0), (0, 1)]
        assert (1, 0, "pick") in report.failed_pairs
        assert (1, 1, "pick") in report.failed_pairs

    def test_place_failure_keeps_pick_state(self, make_builder, pick_volume, place_volume):
        def fail(start, goal):
            return _near(start, pick_volume[0]) and _near(goal, place_volume[0])

        builder, planner = make_builder(fail_when=fail)
        report = builder.build(pick_volume, place_volume)

        assert (0, 0, "place") in report.failed_pairs
        assert report.success_count == 3
        # 放置段失败后，下一个抓取段从 pick 0 出发
        request = _first_request_to(planner, pick_volume[1])
        assert _near(request.start_state.positions, pick_volume[0])
        plan = report.pick_group.find(pick_index=1, place_index=0)
        assert _near(plan.start_state.positions, pick_volume[0])

    def test_place_failure_restores_when_configured(self, make_builder, pick_volume,
                                                    place_volume):
        def fail(start, goal):
            return _near(start, pick_volume[0]) and _near(goal, place_volume[0])

        cfg = LibraryConfig(group_name="arm", add_ground_plane=False,
                            restore_place_state_on_failure=True)
        builder, planner = make_builder(fail_when=fail, config=cfg)
        builder.build(pick_volume, place_volume)
        request = _first_request_to(planner, pick_volume[1])
        assert _near(request.start_state.positions, place_volume[0])

    def test_failing_sink_does_not_abort(self, make_builder, pick_volume, place_volume,
                                         caplog):
        class BrokenSink(TelemetrySink):
            def publish_scene(self, snapshot):
                raise RuntimeError("display offline")

        builder, _ = make_builder()
        builder.sink = BrokenSink()
        with caplog.at_level(logging.ERROR, logger="traj_library.telemetry"):
            report = builder.build(pick_volume, place_volume)
        assert report.success_count == 4
        assert "display offline" in caplog.text
