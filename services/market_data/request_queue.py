#!/usr/bin/env python3
"""
Request Queue for Market Data Fetches

FIFO of zero-argument tasks drained by a single worker thread. Each task waits
for the rate limiter before it runs, so submission order is preserved and no
two fetches overlap.

- Exactly one drain thread at a time; enqueue during a drain only appends
- A failing task is logged and the drain moves on
- Unbounded: producers get no backpressure signal
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Optional

from services.market_data.rate_limit import FixedWindowRateLimiter

logger = logging.getLogger(__name__)


@dataclass
class QueuedTask:
    """A pending task and the label used in logs."""
    fn: Callable[[], object]
    name: str


class RequestQueue:
    """
    Rate-limited FIFO task queue with a single on-demand drain thread.

    The drain thread is started by enqueue() when none is active and exits
    once it observes an empty queue; both decisions are taken under the same
    lock, so a task appended concurrently is never stranded.
    """

    def __init__(self, rate_limiter: FixedWindowRateLimiter, name: str = "RequestQueue"):
        self.rate_limiter = rate_limiter
        self.name = name
        self._tasks: Deque[QueuedTask] = deque()
        self._cond = threading.Condition(threading.RLock())
        self._draining = False
        self._drain_thread: Optional[threading.Thread] = None
        self._closed = False
        self._stats = {
            "enqueued": 0,
            "completed": 0,
            "failed": 0,
            "dropped": 0,
            "drains_started": 0,
        }

    def enqueue(self, task: Callable[[], object], name: Optional[str] = None) -> bool:
        """
        Append a task and make sure a drain is running.

        Args:
            task: Zero-argument callable
            name: Label for logs (defaults to the callable's name)

        Returns:
            False if the queue is closed and the task was not accepted
        """
        label = name or getattr(task, "__name__", "task")
        with self._cond:
            if self._closed:
                self._stats["dropped"] += 1
                logger.debug("REQUEST_QUEUE_CLOSED", extra={
                    'event_type': 'REQUEST_QUEUE_CLOSED',
                    'task': label,
                })
                return False

            self._tasks.append(QueuedTask(fn=task, name=label))
            self._stats["enqueued"] += 1

            if not self._draining:
                self._draining = True
                self._stats["drains_started"] += 1
                self._drain_thread = threading.Thread(
                    target=self._drain,
                    daemon=True,
                    name=f"{self.name}-drain"
                )
                self._drain_thread.start()
        return True

    def _next_task(self) -> Optional[QueuedTask]:
        with self._cond:
            if self._closed or not self._tasks:
                self._draining = False
                self._cond.notify_all()
                return None
            return self._tasks.popleft()

    def _drain(self) -> None:
        while True:
            item = self._next_task()
            if item is None:
                return

            if not self.rate_limiter.acquire():
                # Limiter closed during shutdown
                with self._cond:
                    self._stats["dropped"] += 1
                continue

            try:
                item.fn()
            except Exception as e:
                with self._cond:
                    self._stats["failed"] += 1
                logger.error(f"Queued request {item.name} failed: {e}", exc_info=True, extra={
                    'event_type': 'REQUEST_TASK_FAILED',
                    'task': item.name,
                    'error': str(e),
                })
            else:
                with self._cond:
                    self._stats["completed"] += 1

    def pending(self) -> int:
        """Number of tasks waiting to run."""
        with self._cond:
            return len(self._tasks)

    @property
    def is_draining(self) -> bool:
        with self._cond:
            return self._draining

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the queue is empty and no drain is active.

        Returns:
            True if idle, False on timeout
        """
        with self._cond:
            return self._cond.wait_for(lambda: not self._draining and not self._tasks, timeout=timeout)

    def close(self, timeout: Optional[float] = 5.0) -> None:
        """
        Stop accepting tasks, drop pending ones and join the drain thread.

        A task that is already running finishes; one blocked on the rate
        limiter is released only if the limiter is closed as well.
        """
        with self._cond:
            self._closed = True
            dropped = len(self._tasks)
            self._tasks.clear()
            self._stats["dropped"] += dropped
            thread = self._drain_thread

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

        logger.info("REQUEST_QUEUE_CLOSED", extra={
            'event_type': 'REQUEST_QUEUE_CLOSED',
            'dropped': dropped,
        })

    def get_statistics(self) -> dict:
        with self._cond:
            stats = self._stats.copy()
            stats["pending"] = len(self._tasks)
            stats["draining"] = self._draining
            return stats
