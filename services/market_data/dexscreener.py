#!/usr/bin/env python3
"""
DexScreener REST client.

One GET per batch of token identifiers:
    GET {base}/tokens/{id1,id2,...}  ->  {"pairs": [ {...}, ... ]}

Missing or empty `pairs` means "no data" and is not an error. Transport
failures, non-2xx answers and undecodable bodies raise TransientNetworkFailure.
No retries here; the rate limiter in front of every call is the only wait.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Iterable, List, Optional

import requests
from requests.adapters import HTTPAdapter

from core.exceptions import TransientNetworkFailure
from services.market_data.models import MarketSnapshot, canonical_token_id, pair_liquidity_usd

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.dexscreener.com/latest/dex"


def select_canonical_pairs(pairs: Iterable[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """
    Pick one pair per base token: the one with the highest liquidity.usd.

    Comparison is strict, so on equal liquidity the pair seen first wins.
    Pairs without a baseToken.address are skipped.

    Returns:
        Dict mapping canonical token id -> pair, in first-seen order
    """
    best: Dict[str, Dict[str, Any]] = {}
    for pair in pairs:
        base = pair.get("baseToken") or {}
        address = base.get("address")
        if not address:
            continue
        token_id = canonical_token_id(address)
        current = best.get(token_id)
        if current is None or pair_liquidity_usd(pair) > pair_liquidity_usd(current):
            best[token_id] = pair
    return best


class DexScreenerClient:
    """
    Thin synchronous client on a pooled requests.Session.

    Example:
        client = DexScreenerClient()
        snapshots = client.fetch_snapshots(["So11111111111111111111111111111111111111112"])
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout_s: float = 10.0,
        session: Optional[requests.Session] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = float(timeout_s)
        self._owns_session = session is None

        if session is None:
            session = requests.Session()
            # Calls are serialized by the request queue; one pooled connection is enough
            adapter = HTTPAdapter(pool_connections=1, pool_maxsize=2, max_retries=0)
            session.mount("https://", adapter)
            session.mount("http://", adapter)
            session.headers.update({"Accept": "application/json"})
        self.session = session

    def tokens_url(self, identifiers: Iterable[str]) -> str:
        return f"{self.base_url}/tokens/{','.join(identifiers)}"

    def fetch_pairs(self, identifiers: Iterable[str]) -> List[Dict[str, Any]]:
        """
        Fetch all pairs for the given identifiers in a single request.

        Returns:
            The upstream `pairs` list, or [] when the response has none

        Raises:
            TransientNetworkFailure: transport error, HTTP error or invalid JSON
        """
        ids = [canonical_token_id(i) for i in identifiers]
        if not ids:
            return []

        url = self.tokens_url(ids)
        start = time.monotonic()
        try:
            response = self.session.get(url, timeout=self.timeout_s)
        except requests.RequestException as e:
            raise TransientNetworkFailure(f"Request failed for {len(ids)} token(s): {e}", identifiers=ids) from e

        if not response.ok:
            raise TransientNetworkFailure(
                f"Upstream returned HTTP {response.status_code}",
                identifiers=ids,
                status_code=response.status_code
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise TransientNetworkFailure(f"Invalid JSON from upstream: {e}", identifiers=ids) from e

        pairs = payload.get("pairs") if isinstance(payload, dict) else None
        if not pairs:
            pairs = []

        logger.debug("UPSTREAM_FETCH", extra={
            'event_type': 'UPSTREAM_FETCH',
            'tokens': len(ids),
            'pairs': len(pairs),
            'latency_ms': int((time.monotonic() - start) * 1000),
        })
        return list(pairs)

    def fetch_snapshots(self, identifiers: Iterable[str], ts: Optional[float] = None) -> Dict[str, MarketSnapshot]:
        """
        Fetch and resolve one canonical snapshot per returned base token.

        Tokens the upstream does not know are simply absent from the result.
        """
        pairs = self.fetch_pairs(identifiers)
        now = time.time() if ts is None else ts
        return {
            token_id: MarketSnapshot.from_pair(pair, now)
            for token_id, pair in select_canonical_pairs(pairs).items()
        }

    def close(self) -> None:
        if self._owns_session:
            self.session.close()
