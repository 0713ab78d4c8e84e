"""
traj_library/constraints.py - 规划目标约束

由笛卡尔位姿或关节配置构造规划请求使用的目标约束：

- build_pose_constraint: 末端连杆位置（球形容差）+ 姿态（逐轴绝对容差）
- build_joint_constraint: 规划组每个关节一个对称容差约束。
  关节值超出位置限制时只记 ERROR 日志，仍按给定值构造约束。
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np
from scipy.spatial.transform import Rotation

from arm_model.models import Pose, format_joint_values
from arm_model.robot import Robot

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 0.01


@dataclass
class JointConstraint:
    joint_name: str
    position: float
    tolerance_above: float = DEFAULT_TOLERANCE
    tolerance_below: float = DEFAULT_TOLERANCE
    weight: float = 1.0

    def is_satisfied_by(self, value: float) -> bool:
        return (self.position - self.tolerance_below - 1e-12
                <= float(value)
                <= self.position + self.tolerance_above + 1e-12)


@dataclass
class PositionConstraint:
    """末端连杆参考点位于以 target 为中心、半径 tolerance 的球内"""
    link_name: str
    frame_id: str
    target: np.ndarray
    tolerance: float = DEFAULT_TOLERANCE
    weight: float = 1.0


@dataclass
class OrientationConstraint:
    """末端连杆姿态误差的 x / y / z 轴绝对容差"""
    link_name: str
    frame_id: str
    orientation: tuple
    absolute_tolerance: tuple = (DEFAULT_TOLERANCE,) * 3
    weight: float = 1.0


@dataclass
class Constraints:
    """一组目标约束（关节约束，或位置 + 姿态约束）"""
    name: str = ""
    joint_constraints: List[JointConstraint] = field(default_factory=list)
    position_constraints: List[PositionConstraint] = field(default_factory=list)
    orientation_constraints: List[OrientationConstraint] = field(default_factory=list)

    @property
    def is_joint_goal(self) -> bool:
        return bool(self.joint_constraints)

    def goal_configuration(self) -> Optional[np.ndarray]:
        """关节目标配置；非关节目标返回 None"""
        if not self.joint_constraints:
            return None
        return np.array([jc.position for jc in self.joint_constraints], dtype=np.float64)

    def target_pose(self) -> Optional[Pose]:
        """位姿目标；无位置约束时返回 None"""
        if not self.position_constraints:
            return None
        orientation = (self.orientation_constraints[0].orientation
                       if self.orientation_constraints else (0.0, 0.0, 0.0, 1.0))
        return Pose(self.position_constraints[0].target, orientation)

    def is_satisfied_by(self, joint_values: Sequence[float], robot: Robot) -> bool:
        q = np.asarray(joint_values, dtype=np.float64)
        if self.joint_constraints:
            names = list(robot.joint_names)
            for jc in self.joint_constraints:
                if jc.joint_name not in names:
                    return False
                if not jc.is_satisfied_by(q[names.index(jc.joint_name)]):
                    return False
        if self.position_constraints or self.orientation_constraints:
            pos, rot = robot.end_effector_pose(q)
            for pc in self.position_constraints:
                if np.linalg.norm(pos - pc.target) > pc.tolerance + 1e-12:
                    return False
            for oc in self.orientation_constraints:
                target = Rotation.from_quat(oc.orientation)
                err = (target.inv() * Rotation.from_matrix(rot)).as_rotvec()
                if np.any(np.abs(err) > np.asarray(oc.absolute_tolerance) + 1e-12):
                    return False
        return True


def build_pose_constraint(
    pose: Pose,
    link_name: str = "ee_link",
    frame_id: str = "world",
    position_tolerance: float = DEFAULT_TOLERANCE,
    orientation_tolerance: float = DEFAULT_TOLERANCE,
) -> Constraints:
    """由末端位姿构造目标约束"""
    logger.debug("位姿约束 %s: %s", link_name, pose)
    return Constraints(
        name=f"pose_goal_{link_name}",
        position_constraints=[PositionConstraint(
            link_name=link_name,
            frame_id=frame_id,
            target=np.array(pose.position, dtype=np.float64),
            tolerance=position_tolerance,
        )],
        orientation_constraints=[OrientationConstraint(
            link_name=link_name,
            frame_id=frame_id,
            orientation=tuple(pose.orientation),
            absolute_tolerance=(orientation_tolerance,) * 3,
        )],
    )


def build_joint_constraint(
    joint_values: Sequence[float],
    robot: Robot,
    group_name: Optional[str] = None,
    tolerance: float = DEFAULT_TOLERANCE,
) -> Constraints:
    """由关节配置构造目标约束

    Raises:
        ValueError: 关节数与规划组不一致
    """
    q = np.asarray(joint_values, dtype=np.float64)
    if q.shape != (robot.dof,):
        raise ValueError(f'期望 {robot.dof} 个关节值，得到 {q.shape}')
    group = group_name or robot.group_name

    if not robot.satisfies_position_bounds(q):
        logger.error("Joint values do not satisfy the bounds of group '%s'. %s",
                     group, format_joint_values(q))

    return Constraints(
        name=f"joint_goal_{group}",
        joint_constraints=[
            JointConstraint(joint_name=name, position=float(v),
                            tolerance_above=tolerance, tolerance_below=tolerance)
            for name, v in zip(robot.joint_names, q)
        ],
    )
