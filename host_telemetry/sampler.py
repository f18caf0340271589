"""Stateful CPU utilization sampler based on cumulative per-core counters."""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import psutil

from .normalize import round1

CoreTimes = Dict[str, float]
RawCpuSample = List[CoreTimes]

# Linux already accounts guest time inside user/nice.
_FOLDED_STATES = frozenset({"guest", "guest_nice"})


def _as_dict(stats_obj: Any) -> Dict[str, Any]:
    """Normalize psutil namedtuple output to plain dicts."""
    if hasattr(stats_obj, "_asdict"):
        return dict(stats_obj._asdict())
    return dict(stats_obj)


def read_cpu_times() -> RawCpuSample:
    return [_as_dict(core) for core in psutil.cpu_times(percpu=True)]


def _total(core: CoreTimes) -> float:
    return sum(value for state, value in core.items() if state not in _FOLDED_STATES)


def compute_utilization(previous: RawCpuSample, current: RawCpuSample) -> float:
    """Return the busy percentage between two samples, rounded to one decimal.

    Cores that only appear in ``current`` are skipped. When no time elapsed
    across the matched cores the result is ``0.0``.
    """
    idle_delta = 0.0
    total_delta = 0.0
    for index, core in enumerate(current):
        if index >= len(previous):
            continue
        last = previous[index]
        idle_delta += core.get("idle", 0.0) - last.get("idle", 0.0)
        total_delta += _total(core) - _total(last)

    if total_delta <= 0:
        return 0.0
    usage = 100 - (100 * idle_delta / total_delta)
    return round1(min(100.0, max(0.0, usage)))


@dataclass(frozen=True)
class SamplerState:
    sample: RawCpuSample
    taken_at: float


class CounterSampler:
    """Owns the previous CPU sample and computes utilization against it.

    Every call to :meth:`sample_utilization` consumes exactly one transition:
    the stored state is replaced with the fresh sample even when the delta is
    unusable. Calls are serialized so overlapping requests never compute a
    delta against a half-updated state.
    """

    def __init__(
        self,
        read_sample: Callable[[], RawCpuSample] = read_cpu_times,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._read_sample = read_sample
        self._clock = clock
        self._lock = threading.Lock()
        self._state: Optional[SamplerState] = None
        try:
            self._state = SamplerState(sample=read_sample(), taken_at=clock())
        except Exception:  # pylint: disable=broad-except
            # First request will then report 0 and seed the state.
            self._state = None

    @property
    def state(self) -> Optional[SamplerState]:
        with self._lock:
            return self._state

    def sample_utilization(self) -> float:
        with self._lock:
            current = self._read_sample()
            previous = self._state.sample if self._state else []
            self._state = SamplerState(sample=current, taken_at=self._clock())
        return compute_utilization(previous, current)
