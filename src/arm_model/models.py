"""
models.py - 运动学数据模型

Pose: 笛卡尔空间目标位姿（位置 + 四元数姿态）。
四元数采用 (x, y, z, w) 顺序，与 geometry_msgs/Quaternion 一致。
"""

from dataclasses import dataclass, field
from typing import Tuple, Dict, Any

import numpy as np
from scipy.spatial.transform import Rotation


IDENTITY_QUAT = (0.0, 0.0, 0.0, 1.0)


@dataclass
class Pose:
    """末端目标位姿

    Attributes:
        position: [x, y, z] (m)
        orientation: 四元数 (x, y, z, w)
    """
    position: np.ndarray
    orientation: Tuple[float, float, float, float] = field(default=IDENTITY_QUAT)

    def __post_init__(self) -> None:
        self.position = np.asarray(self.position, dtype=np.float64).reshape(3)
        q = np.asarray(self.orientation, dtype=np.float64).reshape(4)
        norm = float(np.linalg.norm(q))
        if norm < 1e-12:
            raise ValueError("四元数范数为 0")
        self.orientation = tuple(float(v) for v in q / norm)

    @property
    def rotation_matrix(self) -> np.ndarray:
        return Rotation.from_quat(self.orientation).as_matrix()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'position': self.position.tolist(),
            'orientation': list(self.orientation),
        }

    def __str__(self) -> str:
        x, y, z = self.position
        qx, qy, qz, qw = self.orientation
        return (f"Position ({x:f}, {y:f}, {z:f}), "
                f"Orientation ({qw:f}, {qx:f}, {qy:f}, {qz:f})")


def format_joint_values(joint_values) -> str:
    """关节值格式化（日志用）"""
    return "Joint values: " + " ".join(f"{float(v):f}" for v in joint_values)
