#!/usr/bin/env python3
"""
Update Scheduler - periodic batched refresh of subscribed tokens

Every refresh interval the ticker thread collects stale tokens, splits them
into batches of at most batch_size and enqueues one upstream call per batch.
The scheduler never fetches outside its tick; the subscribe-time fetch is
owned by MarketDataService.
"""

from __future__ import annotations

import logging
import threading
from functools import partial
from typing import Iterable, List, Optional, Sequence

from core.exceptions import TransientNetworkFailure
from services.market_data.dexscreener import DexScreenerClient
from services.market_data.registry import SubscriptionRegistry
from services.market_data.request_queue import RequestQueue

logger = logging.getLogger(__name__)


def chunked(items: Sequence[str], size: int) -> List[List[str]]:
    """Split items into ordered chunks of at most size elements."""
    if size < 1:
        raise ValueError(f"chunk size must be >= 1, got {size}")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class UpdateScheduler:
    """
    Owns the refresh ticker. start()/stop() are the explicit lifecycle handle.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        queue: RequestQueue,
        client: DexScreenerClient,
        refresh_interval_s: float = 3.0,
        batch_size: int = 10
    ):
        if refresh_interval_s <= 0:
            raise ValueError(f"refresh_interval_s must be > 0, got {refresh_interval_s}")
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")

        self.registry = registry
        self.queue = queue
        self.client = client
        self.refresh_interval_s = float(refresh_interval_s)
        self.batch_size = int(batch_size)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self.ticks = 0

    @property
    def running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def start(self) -> None:
        """Start the ticker thread. No-op if already running."""
        with self._lock:
            if self.running:
                return
            self._stop.clear()
            self._thread = threading.Thread(target=self._run, daemon=True, name="UpdateScheduler")
            self._thread.start()

        logger.info("SCHEDULER_STARTED", extra={
            'event_type': 'SCHEDULER_STARTED',
            'refresh_interval_s': self.refresh_interval_s,
            'batch_size': self.batch_size,
        })

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Cancel the ticker and wait for the thread to exit."""
        with self._lock:
            self._stop.set()
            thread = self._thread
            self._thread = None

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            logger.info("SCHEDULER_STOPPED", extra={'event_type': 'SCHEDULER_STOPPED', 'ticks': self.ticks})

    def _run(self) -> None:
        # Event.wait returns True once stop() is called
        while not self._stop.wait(self.refresh_interval_s):
            try:
                self.tick()
            except Exception as e:
                logger.exception("Scheduler tick failed: %s", e, extra={'event_type': 'SCHEDULER_TICK_FAILED'})

    def tick(self, now: Optional[float] = None) -> List[List[str]]:
        """
        Enqueue one batch refresh per chunk of stale tokens.

        Returns:
            The chunks that were enqueued
        """
        self.ticks += 1
        stale = self.registry.stale_tokens(self.refresh_interval_s, now=now)
        batches = chunked(stale, self.batch_size)
        for batch in batches:
            self.queue.enqueue(partial(self.refresh_batch, batch), name=f"refresh_batch[{len(batch)}]")

        if batches:
            logger.debug("SCHEDULER_TICK", extra={
                'event_type': 'SCHEDULER_TICK',
                'stale': len(stale),
                'batches': len(batches),
            })
        return batches

    def refresh_batch(self, token_ids: Iterable[str]) -> List[str]:
        """
        One upstream call for the whole batch; record every resolved token
        that still has subscribers. Tokens missing from the response keep
        their previous snapshot and update time.

        Returns:
            Token ids that were recorded
        """
        batch = list(token_ids)
        if not batch:
            return []

        try:
            snapshots = self.client.fetch_snapshots(batch, ts=self.registry.clock())
        except TransientNetworkFailure as e:
            logger.warning(f"Batch refresh failed: {e}", extra={
                'event_type': 'BATCH_REFRESH_FAILED',
                'tokens': batch,
                'status_code': e.status_code,
            })
            return []

        recorded = []
        for token_id, snapshot in snapshots.items():
            if not self.registry.has_subscribers(token_id):
                # Unsubscribed while the request was in flight
                continue
            self.registry.record_snapshot(token_id, snapshot)
            recorded.append(token_id)

        missing = len(batch) - len([t for t in batch if t in snapshots])
        logger.debug("BATCH_REFRESHED", extra={
            'event_type': 'BATCH_REFRESHED',
            'requested': len(batch),
            'recorded': len(recorded),
            'missing': missing,
        })
        return recorded
