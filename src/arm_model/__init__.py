"""
arm_model: 串联机械臂运动学模型

- Robot: 修正 DH 参数正运动学、关节限制
- Pose: 笛卡尔目标位姿
- PoseIKSolver: 多起点数值逆运动学
"""

from .robot import Robot, load_robot, list_configs
from .models import Pose, format_joint_values
from .ik import PoseIKSolver

__version__ = "0.1.0"

__all__ = [
    'Robot',
    'load_robot',
    'list_configs',
    'Pose',
    'format_joint_values',
    'PoseIKSolver',
]
