#!/usr/bin/env python3
"""
Price Cache - Bounded Price History per Token

Keeps the most recent (timestamp, price) observations for each tracked token.
Provides O(1) last-price lookup and a copy-on-read historical view.
"""

import threading
from collections import deque
from typing import Deque, Dict, Optional, Tuple


class PriceHistory:
    """
    Ringbuffer of price observations per token.

    Only price changes are appended; repeating the last price is a no-op.
    """

    def __init__(self, max_points: int = 50) -> None:
        """
        Args:
            max_points: Observations kept per token
        """
        if max_points < 1:
            raise ValueError(f"max_points must be >= 1, got {max_points}")
        self.max_points = max_points
        self.buffers: Dict[str, Deque[Tuple[float, float]]] = {}
        self._lock = threading.Lock()

    def note_price(self, token_id: str, price: float, ts: float) -> bool:
        """
        Record an observation.

        Returns:
            True if appended, False if the price equals the last one
        """
        with self._lock:
            buf = self.buffers.setdefault(token_id, deque(maxlen=self.max_points))
            if buf and buf[-1][1] == price:
                return False
            buf.append((ts, price))
            return True

    def view(self, token_id: str) -> Tuple[Tuple[float, float], ...]:
        """Observations oldest first."""
        with self._lock:
            return tuple(self.buffers.get(token_id, ()))

    def last_price(self, token_id: str) -> Optional[float]:
        with self._lock:
            buf = self.buffers.get(token_id)
            return buf[-1][1] if buf else None

    def drop(self, token_id: str) -> None:
        with self._lock:
            self.buffers.pop(token_id, None)

    def clear(self) -> None:
        with self._lock:
            self.buffers.clear()
