"""
conftest.py - pytest fixtures shared across the test suite.

Provides the built-in robot models and a couple of hand-built DH chains
so that individual test modules stay short and focused.
"""

import os
import math

import pytest
import numpy as np

from arm_model.robot import Robot, load_robot

os.environ.setdefault("MPLBACKEND", "Agg")


# =========================================================================
# Robot fixtures
# =========================================================================

@pytest.fixture(scope="session")
def ur5_robot() -> Robot:
    """UR5 (6 DOF, modified DH)."""
    return load_robot("ur5")


@pytest.fixture(scope="session")
def planar_robot() -> Robot:
    """3-DOF planar arm (link lengths 0.5 / 0.4 + 0.3 tool)."""
    return load_robot("planar_3dof")


@pytest.fixture(scope="session")
def simple_2dof_robot() -> Robot:
    """Minimal 2-DOF planar robot for fast unit tests."""
    dh = [
        {"alpha": 0, "a": 1.0, "d": 0, "theta": 0, "type": "revolute"},
        {"alpha": 0, "a": 1.0, "d": 0, "theta": 0, "type": "revolute"},
    ]
    return Robot(dh)


@pytest.fixture(scope="session")
def simple_3dof_robot() -> Robot:
    """3-DOF spatial robot (non-zero alpha) for broader coverage."""
    dh = [
        {"alpha": 0,            "a": 0.0, "d": 0.5, "theta": 0, "type": "revolute"},
        {"alpha": -math.pi / 2, "a": 0.0, "d": 0.0, "theta": 0, "type": "revolute"},
        {"alpha": 0,            "a": 0.4, "d": 0.0, "theta": 0, "type": "revolute"},
    ]
    return Robot(dh)


@pytest.fixture()
def rng() -> np.random.Generator:
    return np.random.default_rng(0)
