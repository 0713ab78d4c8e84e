"""test/library/test_motion_planner.py - RRT / RRT-Connect 规划器测试"""
import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from arm_model.models import Pose
from traj_library.constraints import build_joint_constraint, build_pose_constraint
from traj_library.models import WorkspaceBounds
from traj_library.motion_planner import (
    PLANNERS, MotionPlanRequest, PlanningResult, SamplingPlanner, create_planner,
)


def _request(scene, q_start, q_goal, timeout=5.0):
    return MotionPlanRequest(
        group_name=scene.group_name,
        start_state=scene.make_state(q_start),
        goal_constraints=build_joint_constraint(q_goal, scene.robot),
        allowed_planning_time=timeout,
    )


def _assert_path_valid(scene, path, resolution=0.05):
    for q0, q1 in zip(path[:-1], path[1:]):
        n = max(2, int(np.ceil(np.linalg.norm(q1 - q0) / resolution)) + 1)
        for t in np.linspace(0.0, 1.0, n):
            assert scene.is_state_valid(q0 + t * (q1 - q0))


class TestRegistry:

    def test_registered_planners(self):
        assert set(PLANNERS) == {"RRT", "RRTConnect"}

    def test_unknown_planner(self, planar_scene):
        with pytest.raises(ValueError, match="Unknown planner"):
            create_planner("PRM", planar_scene)

    def test_name(self, planar_scene):
        assert create_planner("RRT", planar_scene).name == "RRT"


class TestSamplingPlanner:

    def test_direct_connection(self, planar_scene):
        planner = create_planner("RRTConnect", planar_scene, seed=0)
        result = planner.plan(_request(planar_scene, [0.1, 0.1, 0.1], [0.5, -0.2, 0.3]))
        assert result.success
        assert result.n_waypoints == 2
        assert result.cost == pytest.approx(np.linalg.norm([0.4, -0.3, 0.2]))

    @pytest.mark.parametrize("algorithm", ["RRTConnect", "RRT"])
    def test_around_obstacle(self, blocked_scene, algorithm):
        planner = SamplingPlanner(algorithm, blocked_scene, seed=0, step_size=0.3)
        q_start = np.array([0.6, 0.0, 0.0])
        q_goal = np.array([-0.6, 0.0, 0.0])
        result = planner.plan(_request(blocked_scene, q_start, q_goal, timeout=20.0))

        assert result.success
        np.testing.assert_allclose(result.path[0], q_start)
        np.testing.assert_allclose(result.path[-1], q_goal)
        assert result.n_waypoints > 2
        assert result.collision_checks > 0
        _assert_path_valid(blocked_scene, result.path)

    def test_invalid_start(self, blocked_scene):
        planner = create_planner("RRTConnect", blocked_scene, seed=0)
        result = planner.plan(_request(blocked_scene, [0.0, 0.0, 0.0], [0.6, 0.0, 0.0]))
        assert not result.success
        assert result.path is None
        assert result.metadata["reason"] == "invalid_start"

    def test_invalid_goal(self, blocked_scene):
        planner = create_planner("RRTConnect", blocked_scene, seed=0)
        result = planner.plan(_request(blocked_scene, [0.6, 0.0, 0.0], [0.0, 0.0, 0.0]))
        assert not result.success
        assert result.metadata["reason"] == "invalid_goal"

    def test_unknown_group(self, planar_scene):
        planner = create_planner("RRTConnect", planar_scene, seed=0)
        request = _request(planar_scene, [0.1, 0.0, 0.0], [0.2, 0.0, 0.0])
        request.group_name = "manipulator"
        with pytest.raises(ValueError):
            planner.plan(request)

    def test_pose_goal_uses_ik(self, planar_scene, fake_ik_cls):
        q_goal = [0.4, 0.3, -0.2]
        ik = fake_ik_cls(lambda pose: q_goal)
        planner = create_planner("RRTConnect", planar_scene, ik, seed=0)
        pos, rot = planar_scene.robot.end_effector_pose(q_goal)
        request = MotionPlanRequest(
            group_name="arm",
            start_state=planar_scene.make_state([0.0, 0.2, 0.0]),
            goal_constraints=build_pose_constraint(
                Pose(pos, Rotation.from_matrix(rot).as_quat()), link_name="tool"),
        )
        result = planner.plan(request)
        assert result.success
        np.testing.assert_allclose(result.path[-1], q_goal)
        assert len(ik.poses) == 1

    def test_pose_goal_without_ik_fails(self, planar_scene):
        planner = create_planner("RRTConnect", planar_scene, seed=0)
        request = MotionPlanRequest(
            group_name="arm",
            start_state=planar_scene.make_state([0.0, 0.2, 0.0]),
            goal_constraints=build_pose_constraint(Pose([0.8, 0.2, 0.0])),
        )
        assert planner.plan(request).metadata["reason"] == "invalid_goal"

    def test_workspace_bounds_enforced(self, planar_scene):
        planner = create_planner("RRTConnect", planar_scene, seed=0,
                                 enforce_workspace_bounds=True)
        request = _request(planar_scene, [0.1, 0.0, 0.0], [0.2, 0.0, 0.0])
        request.workspace_bounds = WorkspaceBounds((-1, -1, 0.25), (1, 1, 0.7))
        # 平面臂末端 z = 0，不在工作空间内
        result = planner.plan(request)
        assert result.metadata["reason"] == "invalid_start"

    def test_timeout(self, planar_robot):
        from traj_library.scene import PlanningScene

        class SplitScene(PlanningScene):
            """q1 在 (-0.1, 0.1) 内无效：起点与目标不连通"""
            def is_state_valid(self, joint_values, group_name=None, verbose=False):
                return abs(joint_values[0]) >= 0.1

        ps = SplitScene(planar_robot)
        planner = SamplingPlanner("RRTConnect", ps, seed=0)
        result = planner.plan(_request(ps, [0.5, 0.0, 0.0], [-0.5, 0.0, 0.0], timeout=0.2))
        assert not result.success
        assert result.metadata["reason"] == "timeout"
        assert result.planning_time >= 0.2
        assert result.nodes_explored > 2


def test_failure_helper():
    r = PlanningResult.failure(0.5, 3, reason="timeout")
    assert not r.success
    assert r.cost == float("inf")
    assert r.n_waypoints == 0
    assert r.metadata == {"reason": "timeout"}
