"""Bounded sleep-poll helpers.

All waiting in the engine is either a bounded blocking read on the port
or one of these poll loops. The intervals are parameters so a caller can
trade latency for CPU without touching protocol code.
"""

import time
from typing import Callable, Optional, TypeVar

T = TypeVar("T")

# Granularity for byte-level waits (binary segments, backpressure)
BYTE_POLL_INTERVAL = 0.001
# Granularity for scans over the whole buffer (patterns, lines)
SCAN_POLL_INTERVAL = 0.01


class Deadline:
    """Monotonic deadline. A timeout of None never expires."""

    def __init__(self, timeout: Optional[float]):
        self.timeout = timeout
        self._start = time.monotonic()
        self._end = None if timeout is None else self._start + timeout

    @property
    def expired(self) -> bool:
        return self._end is not None and time.monotonic() >= self._end

    def remaining(self) -> Optional[float]:
        if self._end is None:
            return None
        return max(0.0, self._end - time.monotonic())

    def elapsed(self) -> float:
        return time.monotonic() - self._start


def poll(
    check: Callable[[], Optional[T]],
    timeout: Optional[float],
    interval: float = SCAN_POLL_INTERVAL,
) -> Optional[T]:
    """Call check until it returns something other than None.

    Args:
        check: Non-blocking test; returns a result or None.
        timeout: Ceiling in seconds (None polls forever).
        interval: Sleep between checks in seconds.

    Returns:
        The first non-None check result, or None on timeout. The check
        always runs at least once.
    """
    deadline = Deadline(timeout)
    while True:
        result = check()
        if result is not None:
            return result
        if deadline.expired:
            return None
        remaining = deadline.remaining()
        time.sleep(interval if remaining is None else min(interval, remaining))
