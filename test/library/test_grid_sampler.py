"""test/library/test_grid_sampler.py - 网格目标采样测试"""
import logging

import numpy as np
import pytest

from traj_library.grid_sampler import GridSampler, grid_linspace
from traj_library.models import RectGrid


def _ik_from_x(pose):
    """x 坐标 < 0 视为不可达"""
    x, y, _ = pose.position
    if x < 0.0:
        return None
    return [x, y, 0.0]


class TestGridLinspace:

    def test_all_reachable_in_order(self, fake_ik_cls):
        grid = RectGrid((0.0, 0.2, 3), (0.0, 0.1, 2), (0.0, 0.0, 1))
        ik = fake_ik_cls(_ik_from_x)
        configs = grid_linspace(grid, ik)
        assert len(configs) == 6
        np.testing.assert_allclose(configs[0], [0.0, 0.0, 0.0])
        np.testing.assert_allclose(configs[1], [0.0, 0.1, 0.0])
        np.testing.assert_allclose(configs[2], [0.1, 0.0, 0.0])
        assert len(ik.poses) == 6

    def test_configurations_read_only(self, fake_ik_cls):
        grid = RectGrid((0.1, 0.1, 1), (0.0, 0.0, 1), (0.0, 0.0, 1))
        configs = grid_linspace(grid, fake_ik_cls(_ik_from_x))
        with pytest.raises(ValueError):
            configs[0][0] = 1.0

    def test_unreachable_skipped_with_warning(self, fake_ik_cls, caplog):
        grid = RectGrid((-0.1, 0.1, 3), (0.0, 0.0, 1), (0.0, 0.0, 1))
        with caplog.at_level(logging.INFO, logger="traj_library.grid_sampler"):
            configs = grid_linspace(grid, fake_ik_cls(_ik_from_x))
        assert len(configs) == 2
        assert "Attempting to generate 3 targets." in caplog.text
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert [r.getMessage() for r in warnings] == [
            "Could not solve IK for pose 0: Skipping."]
        assert "Successfully generated joint values for pose 2." in caplog.text

    def test_validity_rejects(self, fake_ik_cls):
        grid = RectGrid((0.0, 0.3, 4), (0.0, 0.0, 1), (0.0, 0.0, 1))
        configs = grid_linspace(grid, fake_ik_cls(_ik_from_x),
                                validity=lambda q: q[0] < 0.15)
        assert len(configs) == 2

    def test_real_ik_planar(self, planar_robot):
        from arm_model.ik import PoseIKSolver

        solver = PoseIKSolver(planar_robot, orientation_weight=0.0, seed=0)
        grid = RectGrid((0.5, 0.7, 2), (0.2, 0.2, 1), (0.0, 0.0, 1))
        configs = grid_linspace(grid, solver, max_attempts=10, timeout=0.5)
        assert len(configs) == 2
        for q, x in zip(configs, (0.5, 0.7)):
            pos, _ = planar_robot.end_effector_pose(q)
            np.testing.assert_allclose(pos[:2], [x, 0.2], atol=1e-3)


class TestGridSampler:

    def test_generate_targets(self, fake_ik_cls, caplog):
        sampler = GridSampler(fake_ik_cls(_ik_from_x))
        pick_grid = RectGrid((0.0, 0.1, 2), (0.0, 0.0, 1), (0.0, 0.0, 1))
        place_grid = RectGrid((-0.1, 0.1, 3), (0.0, 0.0, 1), (0.0, 0.0, 1))
        with caplog.at_level(logging.INFO, logger="traj_library.grid_sampler"):
            picks, places = sampler.generate_targets(pick_grid, place_grid)
        assert picks.target_count == 2
        assert places.target_count == 2
        assert places.grid is place_grid
        assert "Generated 2 of 3 possible place targets." in caplog.text

    def test_passes_attempts(self, fake_ik_cls):
        calls = []

        class RecordingIK(fake_ik_cls):
            def solve(self, pose, max_attempts=10, timeout=0.1, validity=None,
                      seed_config=None):
                calls.append((max_attempts, timeout))
                return super().solve(pose, max_attempts, timeout, validity, seed_config)

        sampler = GridSampler(RecordingIK(_ik_from_x), max_attempts=4, timeout=0.2)
        sampler.generate(RectGrid((0.0, 0.0, 1), (0.0, 0.0, 1), (0.0, 0.0, 1)))
        assert calls == [(4, 0.2)]
