#!/usr/bin/env python3
"""
Rate Limit Budget for Upstream Market Data Calls

Implements a fixed-window limiter: at most `limit` operations are started per
`window_s` seconds. Every network call must acquire permission here first.

Features:
- Fixed window with explicit reset (window start + counter)
- Thread-safe blocking acquire on a Condition (timer + re-check loop)
- Non-blocking try_acquire and optional timeout
- Statistics tracking (throttled requests, wait times)

Fixed window, not sliding: a burst of `limit` starts at the end of one window
followed by `limit` starts at the beginning of the next is allowed, so up to
2 x limit operations can fall inside one window-length interval that straddles
a boundary.

Example:
    limiter = FixedWindowRateLimiter(limit=300, window_s=60.0)

    # Blocking acquire (waits until the window has room)
    limiter.acquire()
    pairs = client.fetch_pairs(["0xabc"])

    # Non-blocking acquire
    if limiter.try_acquire():
        pairs = client.fetch_pairs(["0xabc"])
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class RateLimitStats:
    """Rate limit statistics."""
    requests: int = 0            # Total acquire attempts
    acquired: int = 0            # Successful acquires
    throttled: int = 0           # Acquires that had to wait
    rejected: int = 0            # Non-blocking misses, timeouts, closed
    window_resets: int = 0
    total_wait_time_s: float = 0.0
    max_wait_time_s: float = 0.0

    @property
    def avg_wait_time_s(self) -> float:
        """Average wait time per throttled request."""
        if self.throttled > 0:
            return self.total_wait_time_s / self.throttled
        return 0.0

    @property
    def throttle_rate(self) -> float:
        """Fraction of requests that were throttled."""
        if self.requests > 0:
            return self.throttled / self.requests
        return 0.0


class FixedWindowRateLimiter:
    """
    Thread-safe fixed-window rate limiter.

    Attributes:
        limit: Maximum operations started per window
        window_s: Window length in seconds
    """

    def __init__(
        self,
        limit: int = 300,
        window_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize limiter.

        Args:
            limit: Maximum operations per window (must be >= 1)
            window_s: Window length in seconds (must be > 0)
            clock: Monotonic time source in seconds
        """
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        if window_s <= 0:
            raise ValueError(f"window_s must be > 0, got {window_s}")

        self.limit = int(limit)
        self.window_s = float(window_s)
        self._clock = clock
        self._window_start = clock()
        self._count = 0
        self._closed = False
        self._cond = threading.Condition(threading.Lock())
        self._stats = RateLimitStats()

    def _roll_window(self, now: float) -> None:
        """Reset the window once it has elapsed. Must be called with the lock held."""
        if now - self._window_start >= self.window_s:
            self._window_start = now
            self._count = 0
            self._stats.window_resets += 1

    def acquire(self, blocking: bool = True, timeout: Optional[float] = None) -> bool:
        """
        Wait until an operation may start, then record it.

        Args:
            blocking: If False, return immediately when the window is full
            timeout: Maximum wait in seconds (None = wait as long as needed)

        Returns:
            True if the operation was recorded, False on non-blocking miss,
            timeout, or when the limiter was closed while waiting
        """
        start = self._clock()
        deadline = None if timeout is None else start + timeout
        waited = False

        with self._cond:
            self._stats.requests += 1
            while True:
                if self._closed:
                    self._stats.rejected += 1
                    return False

                now = self._clock()
                self._roll_window(now)

                if self._count < self.limit:
                    self._count += 1
                    self._stats.acquired += 1
                    if waited:
                        wait_time = now - start
                        self._stats.throttled += 1
                        self._stats.total_wait_time_s += wait_time
                        self._stats.max_wait_time_s = max(self._stats.max_wait_time_s, wait_time)
                    return True

                if not blocking:
                    self._stats.rejected += 1
                    return False

                remaining = self.window_s - (now - self._window_start)
                if deadline is not None:
                    if now >= deadline:
                        self._stats.rejected += 1
                        return False
                    remaining = min(remaining, deadline - now)

                if not waited:
                    logger.debug("RATE_LIMIT_WAIT", extra={
                        'event_type': 'RATE_LIMIT_WAIT',
                        'wait_s': round(remaining, 3),
                        'limit': self.limit,
                    })
                waited = True
                # Time passes while suspended, so the loop re-evaluates the window
                self._cond.wait(timeout=max(remaining, 0.0))

    def try_acquire(self) -> bool:
        """Record an operation only if the current window has room."""
        return self.acquire(blocking=False)

    def available(self) -> int:
        """Operations still permitted in the current window."""
        with self._cond:
            self._roll_window(self._clock())
            return self.limit - self._count

    def close(self) -> None:
        """Wake every waiter; pending and future acquires return False."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        return self._closed

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get limiter statistics.

        Returns:
            Dict with request counters, throttle rate, wait times and the
            current window usage
        """
        with self._cond:
            self._roll_window(self._clock())
            return {
                "requests": self._stats.requests,
                "acquired": self._stats.acquired,
                "throttled": self._stats.throttled,
                "rejected": self._stats.rejected,
                "window_resets": self._stats.window_resets,
                "throttle_rate": self._stats.throttle_rate,
                "avg_wait_time_s": self._stats.avg_wait_time_s,
                "max_wait_time_s": self._stats.max_wait_time_s,
                "window_count": self._count,
                "limit": self.limit,
                "window_s": self.window_s,
            }

    def reset_statistics(self) -> None:
        """Reset all statistics counters."""
        with self._cond:
            self._stats = RateLimitStats()
