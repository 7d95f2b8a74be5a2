#!/usr/bin/env python3
"""
Market Data Service

Composition root of the acquisition engine: rate limiter, request queue,
subscription registry, snapshot store, refresh scheduler and upstream client.
One instance is owned by the application and handed to consumers; open() and
close() (or a with-block) bound the lifetime of the background threads.

Example:
    with MarketDataService(MarketDataConfig.from_config()) as md:
        sub = md.subscribe("So11111111111111111111111111111111111111112", on_update)
        ...
        sub.cancel()
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from core.exceptions import TransientNetworkFailure
from services.market_data.dexscreener import DEFAULT_BASE_URL, DexScreenerClient
from services.market_data.models import MarketSnapshot, canonical_token_id
from services.market_data.rate_limit import FixedWindowRateLimiter
from services.market_data.registry import Listener, MarketDataStore, Subscription, SubscriptionRegistry
from services.market_data.request_queue import RequestQueue
from services.market_data.scheduler import UpdateScheduler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MarketDataConfig:
    """Engine constants, all overridable per instance."""
    base_url: str = DEFAULT_BASE_URL
    refresh_interval_s: float = 3.0
    rate_limit: int = 300
    rate_window_s: float = 60.0
    batch_size: int = 10
    http_timeout_s: float = 10.0

    @classmethod
    def from_config(cls) -> "MarketDataConfig":
        """Build from config.py (runtime overrides included)."""
        from config import get_config

        return cls(
            base_url=get_config("DEXSCREENER_BASE_URL", DEFAULT_BASE_URL),
            refresh_interval_s=float(get_config("REFRESH_INTERVAL_S", 3.0)),
            rate_limit=int(get_config("RATE_LIMIT_PER_MINUTE", 300)),
            rate_window_s=float(get_config("RATE_LIMIT_WINDOW_S", 60.0)),
            batch_size=int(get_config("BATCH_SIZE", 10)),
            http_timeout_s=float(get_config("HTTP_TIMEOUT_S", 10.0)),
        )


class MarketDataService:
    """
    Consumer-facing API: subscribe / unsubscribe / get_cached_snapshot / fetch_token.
    """

    def __init__(
        self,
        config: Optional[MarketDataConfig] = None,
        client: Optional[DexScreenerClient] = None,
        clock: Callable[[], float] = time.time
    ):
        self.config = config or MarketDataConfig()
        self._owns_client = client is None
        self.client = client or DexScreenerClient(
            base_url=self.config.base_url,
            timeout_s=self.config.http_timeout_s
        )
        self.rate_limiter = FixedWindowRateLimiter(
            limit=self.config.rate_limit,
            window_s=self.config.rate_window_s
        )
        self.queue = RequestQueue(self.rate_limiter)
        self.store = MarketDataStore()
        self.registry = SubscriptionRegistry(self.store, clock=clock)
        self.scheduler = UpdateScheduler(
            self.registry,
            self.queue,
            self.client,
            refresh_interval_s=self.config.refresh_interval_s,
            batch_size=self.config.batch_size
        )
        self._state_lock = threading.Lock()
        self._opened = False
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> "MarketDataService":
        """Start periodic refresh. Idempotent."""
        with self._state_lock:
            self._ensure_not_closed()
            if self._opened:
                return self
            self._opened = True
        self.scheduler.start()
        logger.info("MARKET_DATA_OPEN", extra={
            'event_type': 'MARKET_DATA_OPEN',
            'refresh_interval_s': self.config.refresh_interval_s,
            'rate_limit': self.config.rate_limit,
            'batch_size': self.config.batch_size,
        })
        return self

    def close(self) -> None:
        """Stop the ticker, release rate-limit waiters, drain thread and session."""
        with self._state_lock:
            if self._closed:
                return
            self._closed = True

        self.scheduler.stop()
        self.rate_limiter.close()
        self.queue.close()
        self.registry.clear()
        if self._owns_client:
            self.client.close()
        logger.info("MARKET_DATA_CLOSED", extra={'event_type': 'MARKET_DATA_CLOSED'})

    def _ensure_not_closed(self) -> None:
        if self._closed:
            raise RuntimeError("MarketDataService is closed")

    @property
    def is_open(self) -> bool:
        return self._opened and not self._closed

    def __enter__(self) -> "MarketDataService":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Consumer API
    # ------------------------------------------------------------------

    def subscribe(self, identifier: str, on_update: Listener) -> Subscription:
        """
        Register interest and enqueue an immediate fetch so the new
        subscriber does not wait for the next tick.

        Returns:
            Subscription handle; call .cancel() to unsubscribe

        Raises:
            RuntimeError: if the service has been closed
        """
        token_id = canonical_token_id(identifier)
        with self._state_lock:
            # close() flips _closed under this lock before clearing the registry
            self._ensure_not_closed()
            subscription = self.registry.subscribe(token_id, on_update)
        self.queue.enqueue(lambda: self._fetch_and_notify(token_id), name=f"initial_fetch[{token_id}]")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        return self.registry.unsubscribe(subscription)

    def get_cached_snapshot(self, identifier: str) -> Optional[MarketSnapshot]:
        """Last known snapshot or None. Never blocks, never fetches."""
        return self.registry.get_snapshot(identifier)

    def fetch_token(self, identifier: str, timeout: Optional[float] = None) -> Optional[MarketSnapshot]:
        """
        Explicit single-token fetch on the caller's thread, through the rate limiter.

        Returns:
            The canonical snapshot, or None if the upstream knows no pair for it

        Raises:
            TransientNetworkFailure: on transport/HTTP failure or when no
                rate-limit slot could be acquired within timeout
            RuntimeError: if the service has been closed
        """
        token_id = canonical_token_id(identifier)
        self._ensure_not_closed()
        if not self.rate_limiter.acquire(timeout=timeout):
            raise TransientNetworkFailure("Rate limit slot not acquired", identifiers=[token_id])

        snapshot = self.client.fetch_snapshots([token_id], ts=self.registry.clock()).get(token_id)
        if snapshot is None:
            logger.info("TOKEN_NOT_FOUND", extra={'event_type': 'TOKEN_NOT_FOUND', 'token_id': token_id})
            return None

        self.registry.record_snapshot(token_id, snapshot)
        return snapshot

    def _fetch_and_notify(self, token_id: str) -> None:
        if not self.registry.has_subscribers(token_id):
            return
        try:
            snapshot = self.client.fetch_snapshots([token_id], ts=self.registry.clock()).get(token_id)
        except TransientNetworkFailure as e:
            logger.warning(f"Initial fetch for {token_id} failed: {e}", extra={
                'event_type': 'INITIAL_FETCH_FAILED',
                'token_id': token_id,
                'status_code': e.status_code,
            })
            return

        if snapshot is None or not self.registry.has_subscribers(token_id):
            return
        self.registry.record_snapshot(token_id, snapshot)

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "rate_limiter": self.rate_limiter.get_statistics(),
            "queue": self.queue.get_statistics(),
            "active_tokens": len(self.registry.active_tokens()),
            "cached_snapshots": len(self.store),
            "scheduler_ticks": self.scheduler.ticks,
        }
