"""
Test doubles: fake upstream client and pair factory.
"""

import threading
from typing import Dict, List
from unittest.mock import MagicMock

from core.exceptions import TransientNetworkFailure
from services.market_data import DexScreenerClient


def make_pair(address, price, liquidity=1000.0, symbol=None, pair_address=None, change_24h=0.0, volume=0.0):
    """Minimal DexScreener pair dict."""
    return {
        "chainId": "solana",
        "dexId": "raydium",
        "pairAddress": pair_address or f"pair-{address}-{liquidity}",
        "baseToken": {"address": address, "symbol": symbol or address[:4].upper(), "name": f"Token {address}"},
        "priceUsd": str(price),
        "priceChange": {"h24": change_24h},
        "volume": {"h24": volume},
        "liquidity": {"usd": liquidity},
        "marketCap": 1_000_000,
        "fdv": 2_000_000,
    }


class FakeClient(DexScreenerClient):
    """
    DexScreenerClient with fetch_pairs served from an in-memory pair table.

    Attributes:
        pairs: token id -> list of pair dicts returned for it
        calls: identifiers of every fetch_pairs call, in order
        fail: when set, fetch_pairs raises TransientNetworkFailure
    """

    def __init__(self, pairs: Dict[str, List[dict]] = None):
        super().__init__(base_url="http://dexscreener.test", session=MagicMock())
        self.pairs = {k.lower(): v for k, v in (pairs or {}).items()}
        self.calls: List[List[str]] = []
        self.fail = False
        self.fetched = threading.Event()
        self._lock = threading.Lock()

    def set_price(self, token_id, price, liquidity=1000.0):
        self.pairs[token_id.lower()] = [make_pair(token_id.lower(), price, liquidity)]

    def fetch_pairs(self, identifiers):
        ids = [i.lower() for i in identifiers]
        with self._lock:
            self.calls.append(ids)
        self.fetched.set()
        if self.fail:
            raise TransientNetworkFailure("connection refused", identifiers=ids)
        result = []
        for token_id in ids:
            result.extend(self.pairs.get(token_id, []))
        return result

