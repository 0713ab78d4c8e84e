"""
traj_library/plan_store.py - 轨迹库二进制文件读写与查询

两种文件格式，读取时按文件头自动识别：

legacy（与原始轨迹库文件逐字节兼容，小端序）::

    int32                 count                规划条数
    每条规划:
      int32               n_waypoints
      每个路径点:
        float64[dof]      positions
        int32, int32      time_from_start      (sec, nsec)
      uint32              trajectory.seq
      uint32, uint32      trajectory.stamp     (sec, nsec)
      bytes + '\\n'        trajectory.frame_id
      (bytes + '\\n')[dof] joint_names
      start_state:
        uint32            seq
        uint32, uint32    stamp
        bytes + '\\n'      frame_id
        (bytes + '\\n', float64)[dof]   name, position
      end_state:          同 start_state
      uint32              pick_index
      uint32              place_index

v2（带版本头，字符串长度前缀，时间以 float64 保存）::

    bytes[8]  magic 'TRAJLIB2'
    uint32    version 2
    uint32    dof
    uint32    count
    每条规划:
      uint32  n_waypoints
      每个路径点: float64[dof] positions, float64 time_from_start
      header (uint32 seq, uint32 sec, uint32 nsec, str frame_id)
      str[dof] joint_names
      start_state: header + (str name, float64 position)[dof]
      end_state:   同上
      int32 pick_index, int32 place_index
    str = uint32 长度 + UTF-8 字节

legacy 的路径点时间在 float 秒与 (sec, nsec) 之间转换：
sec = floor(t)，nsec = round((t - sec) * 1e9)。
"""

import io
import math
import struct
import logging
from pathlib import Path
from typing import BinaryIO, List, Optional, Tuple

import numpy as np

from .models import (
    Header, JointTrajectory, MotionPlan, PlanGroup, RobotState, TargetGroup,
)

logger = logging.getLogger(__name__)

V2_MAGIC = b'TRAJLIB2'
V2_VERSION = 2
DEFAULT_DOF = 6

_I32 = struct.Struct('<i')
_U32 = struct.Struct('<I')
_F64 = struct.Struct('<d')
_DURATION = struct.Struct('<ii')
_HEADER = struct.Struct('<III')


class PlanFileError(ValueError):
    """轨迹库文件格式错误"""


# ─────────────────────────────────────────────
#  时间转换
# ─────────────────────────────────────────────

def seconds_to_duration(t: float) -> Tuple[int, int]:
    """float 秒 → (sec, nsec)，0 <= nsec < 1e9"""
    sec = math.floor(t)
    nsec = int(round((t - sec) * 1e9))
    if nsec >= 1_000_000_000:
        sec += 1
        nsec -= 1_000_000_000
    return int(sec), nsec


def duration_to_seconds(sec: int, nsec: int) -> float:
    return sec + nsec * 1e-9


# ─────────────────────────────────────────────
#  读取游标
# ─────────────────────────────────────────────

class _Cursor:
    """在内存字节串上顺序解析"""

    def __init__(self, data: bytes) -> None:
        self.data = data
        self.pos = 0

    @property
    def remaining(self) -> int:
        return len(self.data) - self.pos

    def unpack(self, st: struct.Struct) -> tuple:
        end = self.pos + st.size
        if end > len(self.data):
            raise PlanFileError(f"文件截断: 偏移 {self.pos} 处需要 {st.size} 字节")
        values = st.unpack_from(self.data, self.pos)
        self.pos = end
        return values

    def require(self, n_bytes: int, what: str) -> None:
        """剩余字节不足 n_bytes 时抛 PlanFileError（分配数组前检查）"""
        if n_bytes > self.remaining:
            raise PlanFileError(f"文件截断: {what} 需要 {n_bytes} 字节, "
                                f"偏移 {self.pos} 处仅剩 {self.remaining} 字节")

    def read_line(self) -> str:
        end = self.data.find(b'\n', self.pos)
        if end < 0:
            raise PlanFileError(f"文件截断: 偏移 {self.pos} 处缺少换行符")
        raw = self.data[self.pos:end]
        self.pos = end + 1
        return _decode(raw)

    def read_prefixed(self) -> str:
        (length,) = self.unpack(_U32)
        end = self.pos + length
        if end > len(self.data):
            raise PlanFileError(f"文件截断: 字符串长度 {length}")
        raw = self.data[self.pos:end]
        self.pos = end
        return _decode(raw)


def _decode(raw: bytes) -> str:
    try:
        return raw.decode('utf-8')
    except UnicodeDecodeError as e:
        raise PlanFileError(f"无效的 UTF-8 字符串: {raw!r}") from e


def _check_line(text: str) -> bytes:
    if '\n' in text:
        raise PlanFileError(f"legacy 格式字符串不能包含换行符: {text!r}")
    return text.encode('utf-8') + b'\n'


def _check_dof(plan: MotionPlan, dof: int) -> None:
    traj = plan.trajectory
    if (len(traj.joint_names) != dof or traj.positions.shape[1] != dof
            or len(plan.start_state.joint_names) != dof
            or len(plan.end_state.joint_names) != dof):
        raise PlanFileError(f"规划的关节数与文件 dof={dof} 不一致")


# ─────────────────────────────────────────────
#  legacy 格式
# ─────────────────────────────────────────────

def _write_legacy_header(out: BinaryIO, header: Header) -> None:
    out.write(_HEADER.pack(header.seq, header.stamp_sec, header.stamp_nsec))
    out.write(_check_line(header.frame_id))


def _write_legacy_state(out: BinaryIO, state: RobotState) -> None:
    _write_legacy_header(out, state.header)
    for name, value in zip(state.joint_names, state.positions):
        out.write(_check_line(name))
        out.write(_F64.pack(float(value)))


def _write_legacy(group: PlanGroup, out: BinaryIO, dof: int) -> None:
    out.write(_I32.pack(group.plan_count))
    for plan in group.plans:
        _check_dof(plan, dof)
        if plan.pick_index < 0 or plan.place_index < 0:
            raise PlanFileError("legacy 格式要求 pick_index / place_index >= 0")
        traj = plan.trajectory
        out.write(_I32.pack(traj.n_waypoints))
        for k in range(traj.n_waypoints):
            out.write(struct.pack(f'<{dof}d', *traj.positions[k]))
            out.write(_DURATION.pack(*seconds_to_duration(float(traj.time_from_start[k]))))
        _write_legacy_header(out, traj.header)
        for name in traj.joint_names:
            out.write(_check_line(name))
        _write_legacy_state(out, plan.start_state)
        _write_legacy_state(out, plan.end_state)
        out.write(_U32.pack(plan.pick_index))
        out.write(_U32.pack(plan.place_index))


def _read_legacy_header(cur: _Cursor) -> Header:
    seq, sec, nsec = cur.unpack(_HEADER)
    return Header(seq=seq, stamp_sec=sec, stamp_nsec=nsec, frame_id=cur.read_line())


def _read_legacy_state(cur: _Cursor, dof: int) -> RobotState:
    header = _read_legacy_header(cur)
    names: List[str] = []
    positions = np.empty(dof)
    for j in range(dof):
        names.append(cur.read_line())
        (positions[j],) = cur.unpack(_F64)
    return RobotState(joint_names=names, positions=positions, header=header)


def _read_legacy(cur: _Cursor, dof: int, group: PlanGroup) -> None:
    (count,) = cur.unpack(_I32)
    if count < 0:
        raise PlanFileError(f"无效的规划条数: {count}")
    point = struct.Struct(f'<{dof}d')

    for _ in range(count):
        (n_wp,) = cur.unpack(_I32)
        if n_wp < 0:
            raise PlanFileError(f"无效的路径点数: {n_wp}")
        cur.require(n_wp * point.size + n_wp * _DURATION.size, f"{n_wp} 个路径点")
        positions = np.empty((n_wp, dof))
        times = np.empty(n_wp)
        for k in range(n_wp):
            positions[k] = cur.unpack(point)
            times[k] = duration_to_seconds(*cur.unpack(_DURATION))
        header = _read_legacy_header(cur)
        names = [cur.read_line() for _ in range(dof)]
        start_state = _read_legacy_state(cur, dof)
        end_state = _read_legacy_state(cur, dof)
        (pick_index,) = cur.unpack(_U32)
        (place_index,) = cur.unpack(_U32)

        trajectory = JointTrajectory(joint_names=names, positions=positions,
                                     time_from_start=times, header=header)
        group.add(MotionPlan(trajectory, start_state, end_state,
                             pick_index=pick_index, place_index=place_index))


# ─────────────────────────────────────────────
#  v2 格式
# ─────────────────────────────────────────────

def _prefixed(text: str) -> bytes:
    raw = text.encode('utf-8')
    return _U32.pack(len(raw)) + raw


def _write_v2_header(out: BinaryIO, header: Header) -> None:
    out.write(_HEADER.pack(header.seq, header.stamp_sec, header.stamp_nsec))
    out.write(_prefixed(header.frame_id))


def _write_v2_state(out: BinaryIO, state: RobotState) -> None:
    _write_v2_header(out, state.header)
    for name, value in zip(state.joint_names, state.positions):
        out.write(_prefixed(name))
        out.write(_F64.pack(float(value)))


def _write_v2(group: PlanGroup, out: BinaryIO, dof: int) -> None:
    out.write(V2_MAGIC)
    out.write(struct.pack('<III', V2_VERSION, dof, group.plan_count))
    for plan in group.plans:
        _check_dof(plan, dof)
        traj = plan.trajectory
        out.write(_U32.pack(traj.n_waypoints))
        for k in range(traj.n_waypoints):
            out.write(struct.pack(f'<{dof}d', *traj.positions[k]))
            out.write(_F64.pack(float(traj.time_from_start[k])))
        _write_v2_header(out, traj.header)
        for name in traj.joint_names:
            out.write(_prefixed(name))
        _write_v2_state(out, plan.start_state)
        _write_v2_state(out, plan.end_state)
        out.write(struct.pack('<ii', plan.pick_index, plan.place_index))


def _read_v2_header(cur: _Cursor) -> Header:
    seq, sec, nsec = cur.unpack(_HEADER)
    return Header(seq=seq, stamp_sec=sec, stamp_nsec=nsec, frame_id=cur.read_prefixed())


def _read_v2_state(cur: _Cursor, dof: int) -> RobotState:
    header = _read_v2_header(cur)
    names: List[str] = []
    positions = np.empty(dof)
    for j in range(dof):
        names.append(cur.read_prefixed())
        (positions[j],) = cur.unpack(_F64)
    return RobotState(joint_names=names, positions=positions, header=header)


def _read_v2(cur: _Cursor, group: PlanGroup) -> int:
    cur.pos = len(V2_MAGIC)
    version, dof, count = cur.unpack(struct.Struct('<III'))
    if version != V2_VERSION:
        raise PlanFileError(f"不支持的版本: {version}, 期望 {V2_VERSION}")
    if dof == 0:
        raise PlanFileError("dof 必须 > 0")
    if count > 0:
        cur.require(dof * _F64.size, f"dof={dof}")
    point = struct.Struct(f'<{dof + 1}d')

    for _ in range(count):
        (n_wp,) = cur.unpack(_U32)
        cur.require(n_wp * point.size, f"{n_wp} 个路径点")
        positions = np.empty((n_wp, dof))
        times = np.empty(n_wp)
        for k in range(n_wp):
            values = cur.unpack(point)
            positions[k] = values[:dof]
            times[k] = values[dof]
        header = _read_v2_header(cur)
        names = [cur.read_prefixed() for _ in range(dof)]
        start_state = _read_v2_state(cur, dof)
        end_state = _read_v2_state(cur, dof)
        pick_index, place_index = cur.unpack(struct.Struct('<ii'))

        trajectory = JointTrajectory(joint_names=names, positions=positions,
                                     time_from_start=times, header=header)
        group.add(MotionPlan(trajectory, start_state, end_state,
                             pick_index=pick_index, place_index=place_index))
    return dof


# ─────────────────────────────────────────────
#  公共接口
# ─────────────────────────────────────────────

def write_plan_group(group: PlanGroup, out: BinaryIO,
                     dof: int = DEFAULT_DOF, fmt: str = 'legacy') -> None:
    """把 PlanGroup 写入二进制流

    Raises:
        PlanFileError: 规划与 dof 不一致，或字符串无法用 legacy 格式表示
        ValueError: 未知格式
    """
    if fmt == 'legacy':
        _write_legacy(group, out, dof)
    elif fmt == 'v2':
        _write_v2(group, out, dof)
    else:
        raise ValueError(f"未知文件格式: {fmt}")


def encode_plan_group(group: PlanGroup, dof: int = DEFAULT_DOF, fmt: str = 'legacy') -> bytes:
    buf = io.BytesIO()
    write_plan_group(group, buf, dof, fmt)
    return buf.getvalue()


def decode_plan_group(
    data: bytes,
    dof: int = DEFAULT_DOF,
    start_group: TargetGroup = TargetGroup.PLACE,
    end_group: TargetGroup = TargetGroup.PICK,
) -> PlanGroup:
    """解析字节串（自动识别 legacy / v2）

    v2 文件使用文件头中的 dof；legacy 文件使用参数 dof。

    Raises:
        PlanFileError: 格式错误或截断
    """
    group = PlanGroup(start_group=start_group, end_group=end_group)
    cur = _Cursor(data)
    if data[:len(V2_MAGIC)] == V2_MAGIC:
        _read_v2(cur, group)
    else:
        _read_legacy(cur, dof, group)
    if cur.remaining:
        logger.warning("文件末尾有 %d 字节未解析", cur.remaining)
    return group


def read_plan_group(src: BinaryIO, dof: int = DEFAULT_DOF,
                    start_group: TargetGroup = TargetGroup.PLACE,
                    end_group: TargetGroup = TargetGroup.PICK) -> PlanGroup:
    return decode_plan_group(src.read(), dof, start_group, end_group)


def save_plan_group(group: PlanGroup, path: str | Path,
                    dof: int = DEFAULT_DOF, fmt: str = 'legacy') -> bool:
    """保存到文件；I/O 或格式错误时记 ERROR 并返回 False"""
    try:
        data = encode_plan_group(group, dof, fmt)
        with open(path, 'wb') as f:
            f.write(data)
    except (OSError, PlanFileError) as e:
        logger.error("保存轨迹库 %s 失败: %s", path, e)
        return False
    logger.info("保存 %d 条规划到 %s (%s)", group.plan_count, path, fmt)
    return True


def load_plan_group(path: str | Path, dof: int = DEFAULT_DOF,
                    start_group: TargetGroup = TargetGroup.PLACE,
                    end_group: TargetGroup = TargetGroup.PICK) -> Optional[PlanGroup]:
    """从文件加载；文件不存在或格式错误时记 ERROR 并返回 None"""
    try:
        with open(path, 'rb') as f:
            group = read_plan_group(f, dof, start_group, end_group)
    except (OSError, PlanFileError) as e:
        logger.error("加载轨迹库 %s 失败: %s", path, e)
        return None
    logger.info("从 %s 加载 %d 条规划", path, group.plan_count)
    return group


class PlanLibrary:
    """抓取段 + 放置段规划集合

    Attributes:
        pick_group: 放置点 → 抓取点（start=PLACE, end=PICK）
        place_group: 抓取点 → 放置点（start=PICK, end=PLACE）
    """

    def __init__(self, pick_group: Optional[PlanGroup] = None,
                 place_group: Optional[PlanGroup] = None) -> None:
        self.pick_group = (pick_group if pick_group is not None
                           else PlanGroup(TargetGroup.PLACE, TargetGroup.PICK))
        self.place_group = (place_group if place_group is not None
                            else PlanGroup(TargetGroup.PICK, TargetGroup.PLACE))

    @property
    def plan_count(self) -> int:
        return self.pick_group.plan_count

    def fetch_pick_plan(self, place_index: int, pick_index: int) -> Optional[MotionPlan]:
        """从放置点 place_index 到抓取点 pick_index 的规划"""
        return self.pick_group.find(pick_index=pick_index, place_index=place_index)

    def fetch_place_plan(self, pick_index: int, place_index: int) -> Optional[MotionPlan]:
        """从抓取点 pick_index 到放置点 place_index 的规划"""
        return self.place_group.find(pick_index=pick_index, place_index=place_index)

    def fetch_plan(self, start_group: TargetGroup, start_index: int,
                   end_group: TargetGroup, end_index: int) -> Optional[MotionPlan]:
        """按 (起点组, 下标) → (终点组, 下标) 查询

        Raises:
            ValueError: 起点组与终点组相同
        """
        start_group = TargetGroup(start_group)
        end_group = TargetGroup(end_group)
        if start_group == end_group:
            raise ValueError(f"起点组与终点组相同: {start_group.name}")
        if start_group == TargetGroup.PLACE:
            return self.fetch_pick_plan(place_index=start_index, pick_index=end_index)
        return self.fetch_place_plan(pick_index=start_index, place_index=end_index)

    def export_to_dir(self, directory: str | Path, dof: int = DEFAULT_DOF,
                      fmt: str = 'legacy',
                      pick_file: str = 'pickplan.bin',
                      place_file: str = 'placeplan.bin') -> bool:
        directory = Path(directory)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error("无法创建目录 %s: %s", directory, e)
            return False
        ok_pick = save_plan_group(self.pick_group, directory / pick_file, dof, fmt)
        ok_place = save_plan_group(self.place_group, directory / place_file, dof, fmt)
        return ok_pick and ok_place

    @classmethod
    def import_from_dir(cls, directory: str | Path, dof: int = DEFAULT_DOF,
                        pick_file: str = 'pickplan.bin',
                        place_file: str = 'placeplan.bin') -> Optional['PlanLibrary']:
        directory = Path(directory)
        pick_group = load_plan_group(directory / pick_file, dof,
                                     TargetGroup.PLACE, TargetGroup.PICK)
        place_group = load_plan_group(directory / place_file, dof,
                                      TargetGroup.PICK, TargetGroup.PLACE)
        if pick_group is None or place_group is None:
            return None
        if pick_group.plan_count != place_group.plan_count:
            logger.warning("抓取段 (%d) 与放置段 (%d) 规划条数不一致",
                           pick_group.plan_count, place_group.plan_count)
        return cls(pick_group, place_group)
