# gamerecharge/infra/timings.py
from __future__ import annotations
import statistics
import time
from typing import Dict, List

from .log import get_logger

log = get_logger(__name__)

# ------------ hot path: append only ------------
# one list per kind; no locks, single-threaded event loop
_TIMINGS: Dict[str, List[float]] = {}
_MAX_SAMPLES = 10_000

slow_threshold = 0.5


def now_ts() -> float:
    # monotonic for durations
    return time.perf_counter()


def record_timing(kind: str, value: float) -> None:
    lst = _TIMINGS.get(kind)
    if lst is None:
        lst = []
        _TIMINGS[kind] = lst
    if len(lst) >= _MAX_SAMPLES:
        # keep the newest half
        del lst[: _MAX_SAMPLES // 2]
    lst.append(float(value))


class timeit:
    """async usage:
        async with timeit("db.create_order"):
            await fn()
    """
    __slots__ = ("_kind", "_t0")

    def __init__(self, kind: str):
        self._kind = kind
        self._t0 = 0.0

    async def __aenter__(self):
        self._t0 = now_ts()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        elapsed = now_ts() - self._t0
        record_timing(self._kind, elapsed)
        if elapsed > slow_threshold:
            log.warning("slow operation %s took %.3fs", self._kind, elapsed)


# ------------ stats only on demand ------------

def _stats(values: list[float]) -> Dict[str, float]:
    if not values:
        return {"n": 0, "mean": 0.0, "std": 0.0, "max": 0.0}
    return {
        "n": len(values),
        "mean": statistics.mean(values),
        "std": statistics.stdev(values) if len(values) > 1 else 0.0,
        "max": max(values),
    }


def snapshot() -> Dict[str, Dict[str, float]]:
    return {kind: _stats(vals) for kind, vals in sorted(_TIMINGS.items())}


def reset() -> None:
    _TIMINGS.clear()
