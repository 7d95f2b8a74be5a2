"""
Market data models: token identifiers and immutable snapshots.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional


def canonical_token_id(identifier: str) -> str:
    """Lower-case, trimmed key; identifiers differing only in case are the same token."""
    if identifier is None:
        raise ValueError("token identifier must not be None")
    token_id = str(identifier).strip().lower()
    if not token_id:
        raise ValueError("token identifier must not be empty")
    return token_id


def _as_float(value: Any) -> float:
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _nested(pair: Dict[str, Any], key: str, sub: str) -> Any:
    block = pair.get(key) or {}
    if not isinstance(block, dict):
        return None
    return block.get(sub)


def pair_liquidity_usd(pair: Dict[str, Any]) -> float:
    """liquidity.usd of an upstream pair, 0 when absent."""
    return _as_float(_nested(pair, "liquidity", "usd"))


@dataclass(frozen=True)
class MarketSnapshot:
    """Last known market data for one token. Replaced wholesale on every fetch."""
    token_id: str
    symbol: str
    name: str
    price_usd: float
    price_change_24h: float
    volume_24h: float
    liquidity_usd: float
    market_cap: float
    last_updated: float
    pair_address: Optional[str] = None
    chain_id: Optional[str] = None
    dex_id: Optional[str] = None
    fdv: float = 0.0

    @property
    def has_valid_price(self) -> bool:
        return self.price_usd > 0

    @classmethod
    def from_pair(cls, pair: Dict[str, Any], ts: Optional[float] = None) -> "MarketSnapshot":
        """
        Build a snapshot from one upstream pair.

        Args:
            pair: Pair dict as returned by the upstream `pairs` list
            ts: Fetch timestamp (epoch seconds), defaults to now

        Raises:
            ValueError: If the pair has no baseToken.address
        """
        base = pair.get("baseToken") or {}
        address = base.get("address")
        if not address:
            raise ValueError("pair has no baseToken.address")

        return cls(
            token_id=canonical_token_id(address),
            symbol=str(base.get("symbol") or ""),
            name=str(base.get("name") or ""),
            price_usd=_as_float(pair.get("priceUsd")),
            price_change_24h=_as_float(_nested(pair, "priceChange", "h24")),
            volume_24h=_as_float(_nested(pair, "volume", "h24")),
            liquidity_usd=pair_liquidity_usd(pair),
            market_cap=_as_float(pair.get("marketCap")),
            last_updated=time.time() if ts is None else ts,
            pair_address=pair.get("pairAddress"),
            chain_id=pair.get("chainId"),
            dex_id=pair.get("dexId"),
            fdv=_as_float(pair.get("fdv")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token_id": self.token_id,
            "symbol": self.symbol,
            "name": self.name,
            "price_usd": self.price_usd,
            "price_change_24h": self.price_change_24h,
            "volume_24h": self.volume_24h,
            "liquidity_usd": self.liquidity_usd,
            "market_cap": self.market_cap,
            "last_updated": self.last_updated,
            "pair_address": self.pair_address,
            "chain_id": self.chain_id,
            "dex_id": self.dex_id,
            "fdv": self.fdv,
        }
