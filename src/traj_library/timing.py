"""
traj_library/timing.py - 构建阶段计时

同名阶段可多次进入，耗时累加（例如每次规划调用）。
阶段可以嵌套（build 内部的 motion_plan / optimize），total 只累计最外层阶段。
"""

import time
import logging
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class Timer:
    """阶段计时器：累计各阶段耗时与进入次数."""

    def __init__(self):
        self.records: dict[str, float] = {}
        self.counts: dict[str, int] = {}
        self._depth = 0
        self._total = 0.0

    @contextmanager
    def phase(self, name: str):
        outermost = self._depth == 0
        self._depth += 1
        t0 = time.perf_counter()
        try:
            yield
        finally:
            dt = time.perf_counter() - t0
            self._depth -= 1
            self.records[name] = self.records.get(name, 0.0) + dt
            self.counts[name] = self.counts.get(name, 0) + 1
            if outermost:
                self._total += dt
            logger.debug("阶段 %s: %.1f ms", name, dt * 1000.0)

    @property
    def total(self) -> float:
        """最外层阶段的耗时之和（嵌套阶段已包含在外层中）"""
        return self._total

    def to_dict(self) -> dict:
        return {**self.records, "total": self.total}

    def summary(self) -> str:
        lines = [f"  {name:20s}: {sec:8.3f} s  (x{self.counts[name]})"
                 for name, sec in self.records.items()]
        lines.append(f"  {'TOTAL':20s}: {self.total:8.3f} s")
        return "\n".join(lines)
