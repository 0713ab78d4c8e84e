"""
test_robot.py - Unit tests for arm_model.robot (Robot class, config system).

Covers:
    - Robot construction & validation
    - DH transform correctness
    - Forward kinematics / link positions / end-effector pose
    - joint bounds helpers
    - zero_length_links detection
    - Config system (from_json, from_config, load_robot, list_configs)
"""

import math
import json

import numpy as np
import pytest

from arm_model.robot import Robot, load_robot, list_configs


class TestRobotConstruction:
    """Robot.__init__ and validation."""

    def test_basic_construction(self, simple_2dof_robot):
        assert simple_2dof_robot.n_joints == 2
        assert simple_2dof_robot.dof == 2

    def test_default_joint_names(self, simple_2dof_robot):
        assert simple_2dof_robot.joint_names == ("joint_1", "joint_2")

    def test_invalid_joint_type_raises(self):
        dh = [{"alpha": 0, "a": 1, "d": 0, "theta": 0, "type": "linear"}]
        with pytest.raises(ValueError, match="revolute.*prismatic"):
            Robot(dh)

    def test_joint_names_length_mismatch_raises(self):
        dh = [{"alpha": 0, "a": 1, "d": 0, "theta": 0}]
        with pytest.raises(ValueError):
            Robot(dh, joint_names=["a", "b"])

    def test_default_limits(self, simple_2dof_robot):
        assert simple_2dof_robot.joint_limits == [(-math.pi, math.pi)] * 2
        np.testing.assert_allclose(simple_2dof_robot.velocity_limits, [2.0, 2.0])
        np.testing.assert_allclose(simple_2dof_robot.acceleration_limits, [4.0, 4.0])


class TestDHTransform:
    """Robot.dh_transform - single joint transform matrix."""

    def test_identity_at_zero(self):
        T = Robot.dh_transform(0, 0, 0, 0)
        np.testing.assert_allclose(T, np.eye(4), atol=1e-14)

    def test_pure_translation_d(self):
        T = Robot.dh_transform(0, 0, 0.5, 0)
        np.testing.assert_allclose(T[:3, 3], [0, 0, 0.5], atol=1e-14)

    def test_pure_translation_a(self):
        T = Robot.dh_transform(0, 0.3, 0, 0)
        np.testing.assert_allclose(T[:3, 3], [0.3, 0, 0], atol=1e-14)


class TestForwardKinematics:

    def test_2dof_straight(self, simple_2dof_robot):
        pos, _ = simple_2dof_robot.end_effector_pose([0.0, 0.0])
        np.testing.assert_allclose(pos, [2.0, 0.0, 0.0], atol=1e-12)

    def test_2dof_arm_up(self, simple_2dof_robot):
        pos, _ = simple_2dof_robot.end_effector_pose([math.pi / 2, 0.0])
        np.testing.assert_allclose(pos, [1.0, 1.0, 0.0], atol=1e-12)

    def test_wrong_joint_count_raises(self, simple_2dof_robot):
        with pytest.raises(ValueError):
            simple_2dof_robot.forward_kinematics([0.0])

    def test_return_all_length(self, planar_robot):
        transforms = planar_robot.forward_kinematics([0.1, 0.2, 0.3], return_all=True)
        # base + 3 joints + tool
        assert len(transforms) == 5

    def test_planar_reach(self, planar_robot):
        positions = planar_robot.get_link_positions([0.0, 0.0, 0.0])
        np.testing.assert_allclose(positions[-1], [1.2, 0.0, 0.0], atol=1e-12)
        np.testing.assert_allclose(positions[2], [0.5, 0.0, 0.0], atol=1e-12)

    def test_planar_tool_orientation(self, planar_robot):
        q = [0.3, -0.2, 0.4]
        _, rot = planar_robot.end_effector_pose(q)
        angle = math.atan2(rot[1, 0], rot[0, 0])
        assert angle == pytest.approx(sum(q))

    def test_ur5_zero_config_height(self, ur5_robot):
        positions = ur5_robot.get_link_positions(np.zeros(6))
        assert positions[1][2] == pytest.approx(0.089159)


class TestBounds:

    def test_satisfies_bounds(self, planar_robot):
        assert planar_robot.satisfies_position_bounds([0.0, 1.0, -1.0])
        assert not planar_robot.satisfies_position_bounds([0.0, 4.0, 0.0])

    def test_wrong_length_fails_bounds(self, planar_robot):
        assert not planar_robot.satisfies_position_bounds([0.0, 0.0])

    def test_clamp(self, planar_robot):
        q = planar_robot.clamp([5.0, -5.0, 0.5])
        np.testing.assert_allclose(q, [math.pi, -math.pi, 0.5])

    def test_random_configuration_in_bounds(self, planar_robot, rng):
        for _ in range(20):
            assert planar_robot.satisfies_position_bounds(
                planar_robot.random_configuration(rng))

    def test_default_configuration(self, planar_robot):
        np.testing.assert_allclose(planar_robot.default_configuration(), np.zeros(3))


class TestZeroLengthLinks:

    def test_planar(self, planar_robot):
        assert planar_robot.zero_length_links == {1}

    def test_ur5(self, ur5_robot):
        # joint 2 (a=d=0) and the zero tool frame
        assert ur5_robot.zero_length_links == {2, 7}


class TestConfigSystem:

    def test_list_configs(self):
        configs = list_configs()
        assert "ur5" in configs
        assert "planar_3dof" in configs

    def test_load_robot_case_insensitive(self):
        robot = load_robot("UR5")
        assert robot.name == "UR5"
        assert robot.group_name == "manipulator"
        assert robot.tip_link == "ee_link"
        assert robot.joint_names[0] == "shoulder_pan_joint"

    def test_unknown_config_raises(self):
        with pytest.raises(FileNotFoundError):
            load_robot("no_such_robot")

    def test_from_json(self, tmp_path):
        data = {
            "name": "Tiny",
            "dh_params": [{"alpha": 0, "a": 0.5, "d": 0, "theta": 0}],
            "joint_names": ["j"],
            "joint_limits": [[-1.0, 1.0]],
        }
        path = tmp_path / "tiny.json"
        path.write_text(json.dumps(data), encoding="utf-8")
        robot = Robot.from_json(str(path))
        assert robot.name == "Tiny"
        assert robot.joint_limits == [(-1.0, 1.0)]

    def test_missing_dh_raises(self):
        with pytest.raises(ValueError, match="dh_params"):
            Robot.from_dict({"name": "x"})

    def test_fingerprint_stable(self):
        assert load_robot("ur5").fingerprint() == load_robot("ur5").fingerprint()
        assert load_robot("ur5").fingerprint() != load_robot("planar_3dof").fingerprint()
