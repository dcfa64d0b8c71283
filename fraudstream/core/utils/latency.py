"""
Latency tracking for the scoring path.

Keeps a bounded rolling buffer of latency samples alongside a sorted copy
so percentiles are read without re-sorting, plus an incremental mean over
every sample ever recorded.
"""

import bisect
import math
import threading
import time
from collections import deque
from typing import List


def sorted_percentile(sorted_values: List[float], q: float) -> float:
    """Nearest-rank percentile: sorted_values[floor(q * (n - 1))]."""
    if not sorted_values:
        return 0.0
    idx = int(math.floor(q * (len(sorted_values) - 1)))
    return sorted_values[idx]


class LatencyTracker:
    """Thread-safe rolling latency statistics."""

    def __init__(self, cap: int = 5000, percentile: float = 0.99):
        self.cap = cap
        self.percentile = percentile
        self._window = deque()
        self._sorted: List[float] = []
        self._count = 0
        self._mean = 0.0
        self._last_updated = 0
        self._lock = threading.Lock()

    def record(self, latency_ms: float):
        """Add one latency sample."""
        with self._lock:
            self._window.append(latency_ms)
            bisect.insort(self._sorted, latency_ms)
            if len(self._window) > self.cap:
                evicted = self._window.popleft()
                del self._sorted[bisect.bisect_left(self._sorted, evicted)]

            self._count += 1
            self._mean += (latency_ms - self._mean) / self._count
            self._last_updated = int(time.time() * 1000)

    @property
    def count(self) -> int:
        return self._count

    @property
    def mean(self) -> float:
        return self._mean

    @property
    def last_updated(self) -> int:
        return self._last_updated

    def quantile(self, q: float = None) -> float:
        with self._lock:
            return sorted_percentile(self._sorted, self.percentile if q is None else q)

    def samples(self) -> List[float]:
        with self._lock:
            return list(self._window)
