"""
Windowing utilities for per-account history.

Implements a count-bounded FIFO history of (timestamp, amount) events
with trailing time-window queries.
"""

from collections import deque
from typing import List

# TODO: maintain running sums so amount stats don't rescan the deque on every extraction


class BoundedHistory:
    """FIFO history capped at a fixed number of events."""

    def __init__(self, cap: int):
        """
        Initialize bounded history.

        Args:
            cap: Maximum number of events retained
        """
        self.cap = cap
        self.events = deque(maxlen=cap)

    def add_event(self, timestamp: int, amount: float):
        """Append an event, evicting the oldest beyond the cap."""
        self.events.append((timestamp, amount))

    def amounts(self) -> List[float]:
        return [amount for _, amount in self.events]

    def timestamps(self) -> List[int]:
        return [timestamp for timestamp, _ in self.events]

    def count_in_window(self, now: int, window_ms: int) -> int:
        """Count events with 0 <= now - timestamp <= window_ms."""
        # Full scan: events may arrive out of order
        return sum(1 for timestamp, _ in self.events if 0 <= now - timestamp <= window_ms)

    def truncate(self, keep: int):
        """Keep only the newest `keep` events."""
        while len(self.events) > keep:
            self.events.popleft()

    def size(self) -> int:
        return len(self.events)
