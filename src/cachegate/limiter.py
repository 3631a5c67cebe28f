"""Fixed-window rate limiter.

:class:`RateLimiter` admits at most ``capacity`` requests per window of
``window_ms`` milliseconds.  The window resets wholesale once it elapses,
so a burst of ``capacity`` requests at the end of one window can be
followed immediately by another ``capacity`` after the reset.  That
boundary burst is part of the contract.

Admission checks are atomic: :meth:`RateLimiter.try_request` holds a lock
while it reads and increments the counter, so concurrent callers on
several threads never push the count past ``capacity``.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from cachegate.models import RateLimiterState


def monotonic_ms() -> int:
    """Monotonic clock in milliseconds."""
    return int(time.monotonic() * 1000)


class RateLimiter:
    """Admission control shared by every caller of one remote service.

    Args:
        capacity: Requests admitted per window.
        window_ms: Window length in milliseconds.
        clock: Returns the current time in milliseconds.

    Example::

        limiter = RateLimiter(capacity=10, window_ms=60_000)
        if not limiter.try_request():
            wait_ms = limiter.get_time_until_reset()
    """

    def __init__(
        self,
        capacity: int = 10,
        window_ms: int = 60000,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if window_ms < 1:
            raise ValueError("window_ms must be at least 1")
        self._capacity = capacity
        self._window_ms = window_ms
        self._clock = clock or monotonic_ms
        self._lock = threading.Lock()
        self._window_start: Optional[int] = None
        self._count = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def window_ms(self) -> int:
        return self._window_ms

    def try_request(self) -> bool:
        """Admit one request if the current window has room.

        Returns:
            ``True`` if the request was admitted and counted.
        """
        with self._lock:
            now = self._clock()
            self._roll_window(now)
            if self._count < self._capacity:
                self._count += 1
                return True
            return False

    def get_time_until_reset(self) -> int:
        """Milliseconds until the current window ends, ``0`` if none is active."""
        with self._lock:
            if self._window_start is None:
                return 0
            return max(0, self._window_start + self._window_ms - self._clock())

    def get_remaining_requests(self) -> int:
        """Requests still admissible in the current window."""
        with self._lock:
            now = self._clock()
            if self._window_start is None or now - self._window_start >= self._window_ms:
                return self._capacity
            return max(0, self._capacity - self._count)

    def reset(self) -> None:
        """Forget the current window."""
        with self._lock:
            self._window_start = None
            self._count = 0

    def state(self) -> RateLimiterState:
        """Return a snapshot of the window."""
        with self._lock:
            return RateLimiterState(
                window_start=self._window_start,
                count=self._count,
                capacity=self._capacity,
                window_ms=self._window_ms,
            )

    def _roll_window(self, now: int) -> None:
        if self._window_start is None or now - self._window_start >= self._window_ms:
            self._window_start = now
            self._count = 0
