#!/usr/bin/env python3
"""
Subscription Registry & Market Data Store

MarketDataStore holds the last snapshot and last-update time per token and is
written only by completed fetches. SubscriptionRegistry maps each token to an
ordered set of Subscription handles and decides which tokens are active.

All mutations happen under one lock and never block, so ticks and drains
never see a half-applied update. Listeners are called after the lock is
released; a listener that raises is logged and the others still run.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from services.market_data.models import MarketSnapshot, canonical_token_id

logger = logging.getLogger(__name__)

Listener = Callable[[MarketSnapshot], None]


class Subscription:
    """
    Opaque subscriber handle. Equality and hashing are by identity.

    cancel() is the unsubscribe function handed back to the consumer.
    """

    __slots__ = ("token_id", "listener", "_registry", "_cancelled")

    def __init__(self, registry: "SubscriptionRegistry", token_id: str, listener: Listener):
        self.token_id = token_id
        self.listener = listener
        self._registry = registry
        self._cancelled = False

    @property
    def active(self) -> bool:
        return not self._cancelled

    def cancel(self) -> bool:
        """Unsubscribe. Safe to call more than once."""
        return self._registry.unsubscribe(self)

    def __call__(self) -> bool:
        return self.cancel()

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "active"
        return f"<Subscription {self.token_id} {state} at {id(self):#x}>"


class MarketDataStore:
    """Thread-safe last-known snapshot per token."""

    def __init__(self) -> None:
        self._snapshots: Dict[str, MarketSnapshot] = {}
        self._last_update: Dict[str, float] = {}
        self._lock = threading.RLock()

    def get(self, token_id: str) -> Optional[MarketSnapshot]:
        with self._lock:
            return self._snapshots.get(canonical_token_id(token_id))

    def last_updated(self, token_id: str) -> Optional[float]:
        with self._lock:
            return self._last_update.get(canonical_token_id(token_id))

    def put(self, token_id: str, snapshot: MarketSnapshot, ts: float) -> None:
        key = canonical_token_id(token_id)
        with self._lock:
            self._snapshots[key] = snapshot
            self._last_update[key] = ts

    def evict(self, token_id: str) -> bool:
        key = canonical_token_id(token_id)
        with self._lock:
            self._last_update.pop(key, None)
            return self._snapshots.pop(key, None) is not None

    def snapshot_all(self) -> Dict[str, MarketSnapshot]:
        with self._lock:
            return dict(self._snapshots)

    def __contains__(self, token_id: str) -> bool:
        with self._lock:
            return canonical_token_id(token_id) in self._snapshots

    def __len__(self) -> int:
        with self._lock:
            return len(self._snapshots)


class SubscriptionRegistry:
    """
    token id -> ordered set of Subscription handles.

    Registration order of tokens is kept (dict insertion order) and is the
    order in which stale tokens are batched.
    """

    def __init__(self, store: Optional[MarketDataStore] = None, clock: Callable[[], float] = time.time):
        self.store = store if store is not None else MarketDataStore()
        self._clock = clock
        self._subscribers: Dict[str, Dict[Subscription, None]] = {}
        self._lock = threading.RLock()

    @property
    def clock(self) -> Callable[[], float]:
        """Time source for update stamps."""
        return self._clock

    def subscribe(self, token_id: str, listener: Listener) -> Subscription:
        """Register interest in a token. Multiple handles per token are allowed."""
        if not callable(listener):
            raise TypeError("listener must be callable")
        key = canonical_token_id(token_id)
        with self._lock:
            subscription = Subscription(self, key, listener)
            self._subscribers.setdefault(key, {})[subscription] = None
            count = len(self._subscribers[key])

        logger.debug("SUBSCRIBED", extra={
            'event_type': 'SUBSCRIBED',
            'token_id': key,
            'subscribers': count,
        })
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """
        Remove a handle. When the last handle for a token goes, the token is
        forgotten and its snapshot and last-update time are evicted.

        Returns:
            True if the handle was registered
        """
        key = subscription.token_id
        with self._lock:
            handles = self._subscribers.get(key)
            if handles is None or subscription not in handles:
                return False

            del handles[subscription]
            subscription._cancelled = True
            evicted = False
            if not handles:
                del self._subscribers[key]
                self.store.evict(key)
                evicted = True

        logger.debug("UNSUBSCRIBED", extra={
            'event_type': 'UNSUBSCRIBED',
            'token_id': key,
            'evicted': evicted,
        })
        return True

    def has_subscribers(self, token_id: str) -> bool:
        with self._lock:
            return bool(self._subscribers.get(canonical_token_id(token_id)))

    def subscriber_count(self, token_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(canonical_token_id(token_id), ()))

    def active_tokens(self) -> List[str]:
        """Subscribed tokens in registration order."""
        with self._lock:
            return list(self._subscribers.keys())

    def stale_tokens(self, refresh_interval_s: float, now: Optional[float] = None) -> List[str]:
        """
        Subscribed tokens whose last update is missing or at least
        refresh_interval_s old, in registration order.
        """
        now = self._clock() if now is None else now
        with self._lock:
            stale = []
            for key in self._subscribers:
                last = self.store.last_updated(key)
                if last is None or now - last >= refresh_interval_s:
                    stale.append(key)
            return stale

    def get_snapshot(self, token_id: str) -> Optional[MarketSnapshot]:
        """Last cached snapshot or None. Never blocks, never fetches."""
        return self.store.get(token_id)

    def record_snapshot(self, token_id: str, snapshot: MarketSnapshot) -> int:
        """
        Overwrite the cached snapshot, stamp the update time and notify every
        handle currently registered for the token.

        Returns:
            Number of listeners notified
        """
        key = canonical_token_id(token_id)
        with self._lock:
            self.store.put(key, snapshot, self._clock())
            handles = list(self._subscribers.get(key, ()))

        for subscription in handles:
            try:
                subscription.listener(snapshot)
            except Exception as e:
                logger.error(f"Listener for {key} failed: {e}", exc_info=True, extra={
                    'event_type': 'LISTENER_FAILED',
                    'token_id': key,
                    'error': str(e),
                })
        return len(handles)

    def clear(self) -> None:
        """Drop every subscription and cached snapshot."""
        with self._lock:
            for handles in self._subscribers.values():
                for subscription in handles:
                    subscription._cancelled = True
            for key in list(self._subscribers):
                self.store.evict(key)
            self._subscribers.clear()
