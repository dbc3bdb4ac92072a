"""
Metric sampling.

Reads RAM, swap and load average from psutil. Sampling has no side effects
and is repeated after every remediation step to observe convergence.
"""

import os
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import psutil


@dataclass(frozen=True)
class MetricSnapshot:
    """Point-in-time memory pressure reading."""

    ram_used_pct: int
    swap_used_pct: int
    load_avg: float

    def __str__(self) -> str:
        return format_snapshot(self)


def usage_percent(used: float, total: float) -> int:
    """Return used/total as a whole percentage; an empty total reports 0."""
    if total <= 0:
        return 0
    return max(0, min(100, int(round(used / total * 100))))


def format_snapshot(snapshot: MetricSnapshot) -> str:
    return f"RAM={snapshot.ram_used_pct}% SWAP={snapshot.swap_used_pct}% LOAD={snapshot.load_avg:.2f}"


def get_load_average() -> Tuple[float, float, float]:
    """Retrieve system load average."""
    try:
        return os.getloadavg()
    except OSError:
        return (0.0, 0.0, 0.0)


class MetricSampler:
    """Produces MetricSnapshots from the OS statistics sources."""

    def __init__(
        self,
        virtual_memory: Optional[Callable[[], object]] = None,
        swap_memory: Optional[Callable[[], object]] = None,
        load_average: Optional[Callable[[], Tuple[float, float, float]]] = None,
    ) -> None:
        self._virtual_memory = virtual_memory or psutil.virtual_memory
        self._swap_memory = swap_memory or psutil.swap_memory
        self._load_average = load_average or get_load_average

    def sample(self) -> MetricSnapshot:
        mem = self._virtual_memory()
        swap = self._swap_memory()
        load = self._load_average()
        return MetricSnapshot(
            ram_used_pct=usage_percent(mem.used, mem.total),
            swap_used_pct=usage_percent(swap.used, swap.total),
            load_avg=round(float(load[0]), 2),
        )
