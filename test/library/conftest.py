"""test/library/conftest.py - 轨迹库测试共享 fixtures 与假组件"""
import pytest
import numpy as np

from traj_library.models import LibraryConfig, TargetVolume, RectGrid
from traj_library.motion_planner import BasePlanner, PlanningResult
from traj_library.scene import Scene, PlanningScene
from traj_library.telemetry import RecordingSink
from traj_library.time_parameterization import TimeParameterizer
from traj_library.trajectory_optimizer import TrajectoryOptimizer
from traj_library.trajectory_planner import TrajectoryPlanner
from traj_library.library_builder import LibraryBuilder


# ==================== 假组件 ====================

class FakeIKSolver:
    """按位姿位置查表的 IK；返回 None 表示求解失败"""

    def __init__(self, fn):
        self.fn = fn
        self.poses = []

    def solve(self, pose, max_attempts=10, timeout=0.1, validity=None, seed_config=None):
        self.poses.append(pose)
        q = self.fn(pose)
        if q is None:
            return None
        q = np.asarray(q, dtype=np.float64)
        if validity is not None and not validity(q):
            return None
        return q


class FakePlanner(BasePlanner):
    """直线规划器：返回 [start, (mid), goal]

    fail_when(start, goal) 为 True 时返回失败结果。
    """

    def __init__(self, fail_when=None, with_midpoint=False):
        self.fail_when = fail_when
        self.with_midpoint = with_midpoint
        self.requests = []

    @property
    def name(self) -> str:
        return "Fake"

    def plan(self, request):
        self.requests.append(request)
        start = np.array(request.start_state.positions)
        goal = request.goal_constraints.goal_configuration()
        if self.fail_when is not None and self.fail_when(start, goal):
            return PlanningResult.failure(reason="scripted")
        points = [start, goal]
        if self.with_midpoint:
            points.insert(1, 0.5 * (start + goal))
        return PlanningResult(success=True, path=np.array(points), cost=0.0,
                              planning_time=0.0)


# ==================== 场景 fixtures ====================

PICKS = [np.array([0.3, 0.2, 0.1]), np.array([0.6, -0.2, 0.1])]
PLACES = [np.array([-1.0, 0.5, 0.2]), np.array([-1.5, 0.3, -0.2])]


@pytest.fixture
def library_config():
    return LibraryConfig(group_name="arm", add_ground_plane=False)


@pytest.fixture
def planar_scene(planar_robot):
    """平面臂 + 空场景（无地面）"""
    return PlanningScene(planar_robot, Scene())


@pytest.fixture
def blocked_scene(planar_robot):
    """平面臂直伸 (q1≈0) 时末端连杆被障碍物挡住"""
    scene = Scene()
    scene.add_obstacle([1.0, -0.1, -0.1], [1.3, 0.1, 0.1], name="post")
    return PlanningScene(planar_robot, scene)


@pytest.fixture
def optimizer(planar_robot, planar_scene, library_config):
    return TrajectoryOptimizer(
        TimeParameterizer(planar_robot), planar_scene.is_state_valid,
        collision_check_dt=library_config.collision_check_dt,
        slow_factor=library_config.slow_factor)


@pytest.fixture
def recording_sink():
    return RecordingSink()


@pytest.fixture
def make_builder(planar_scene, optimizer, library_config, recording_sink):
    """构造 (builder, fake_planner)"""
    def _make(fail_when=None, config=None):
        cfg = config or library_config
        planner = FakePlanner(fail_when=fail_when)
        tp = TrajectoryPlanner(planar_scene, planner, optimizer, cfg)
        return LibraryBuilder(tp, planar_scene, cfg, recording_sink), planner
    return _make


@pytest.fixture
def pick_volume():
    grid = RectGrid((0.0, 0.1, 2), (0.0, 0.0, 1), (0.0, 0.0, 1))
    return TargetVolume(grid=grid, configurations=[q.copy() for q in PICKS])


@pytest.fixture
def place_volume():
    grid = RectGrid((-0.5, -0.4, 2), (0.0, 0.0, 1), (0.0, 0.0, 1))
    return TargetVolume(grid=grid, configurations=[q.copy() for q in PLACES])


@pytest.fixture
def fake_planner_cls():
    return FakePlanner


@pytest.fixture
def fake_ik_cls():
    return FakeIKSolver
