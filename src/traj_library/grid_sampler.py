"""
traj_library/grid_sampler.py - 网格目标采样

把矩形网格展开为笛卡尔位姿（x 外层 → y → z 内层），
逐个求解 IK，得到有序的关节空间目标配置。IK 失败的采样点
记 WARNING 后跳过，不中断整体生成。
"""

import logging
from typing import Callable, List, Optional, Tuple

import numpy as np

from arm_model.ik import PoseIKSolver
from arm_model.models import format_joint_values
from .models import RectGrid, TargetVolume, as_joint_configuration

logger = logging.getLogger(__name__)

ValidityFn = Callable[[np.ndarray], bool]


def grid_linspace(
    grid: RectGrid,
    ik_solver: PoseIKSolver,
    validity: Optional[ValidityFn] = None,
    max_attempts: int = 10,
    timeout: float = 0.1,
) -> List[np.ndarray]:
    """展开网格并求解 IK

    Args:
        grid: 采样网格
        ik_solver: IK 求解器
        validity: 解的有效性回调（通常为 PlanningScene.is_state_valid）
        max_attempts: 每个位姿的 IK 尝试次数
        timeout: 每次尝试的时间预算 (s)

    Returns:
        IK 成功的关节配置（只读），保持生成顺序
    """
    logger.info("Attempting to generate %d targets.", grid.n_points)
    configurations: List[np.ndarray] = []

    for n, pose in enumerate(grid.points()):
        q = ik_solver.solve(pose, max_attempts=max_attempts, timeout=timeout,
                            validity=validity)
        if q is None:
            logger.warning("Could not solve IK for pose %d: Skipping.", n)
            logger.debug("%s", pose)
            continue
        configurations.append(as_joint_configuration(q))
        logger.info("Successfully generated joint values for pose %d.", n)
        logger.debug("%s", format_joint_values(q))

    return configurations


class GridSampler:
    """网格采样器

    Args:
        ik_solver: IK 求解器
        validity: 解的有效性回调
        max_attempts: 每个位姿的 IK 尝试次数
        timeout: 每次尝试的时间预算 (s)

    Example:
        >>> sampler = GridSampler(ik, scene.is_state_valid)
        >>> picks, places = sampler.generate_targets(pick_grid, place_grid)
    """

    def __init__(self, ik_solver: PoseIKSolver,
                 validity: Optional[ValidityFn] = None,
                 max_attempts: int = 10,
                 timeout: float = 0.1) -> None:
        self.ik_solver = ik_solver
        self.validity = validity
        self.max_attempts = max_attempts
        self.timeout = timeout

    def generate(self, grid: RectGrid) -> TargetVolume:
        configs = grid_linspace(grid, self.ik_solver, self.validity,
                                self.max_attempts, self.timeout)
        return TargetVolume(grid=grid, configurations=configs)

    def generate_targets(self, pick_grid: RectGrid,
                         place_grid: RectGrid) -> Tuple[TargetVolume, TargetVolume]:
        logger.info("Generating pick joint values.")
        picks = self.generate(pick_grid)
        logger.info("Generating place joint values.")
        places = self.generate(place_grid)

        logger.info("Generated %d of %d possible pick targets.",
                    picks.target_count, pick_grid.n_points)
        logger.info("Generated %d of %d possible place targets.",
                    places.target_count, place_grid.n_points)
        return picks, places
