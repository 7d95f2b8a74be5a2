"""
PnL Service - Single Source of Truth für alle PnL-Berechnungen
Average-cost position accounting, replayed from the full trade log on every call.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Sequence

from core.exceptions import InvariantViolation


class TradeSide(str, Enum):
    BUY = "buy"
    SELL = "sell"

    @classmethod
    def parse(cls, value) -> "TradeSide":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"side must be 'buy' or 'sell', got {value!r}") from None


@dataclass(frozen=True)
class Trade:
    """Einzelner Paper-Trade. Append-only, never mutated after creation."""
    id: str
    token_id: str
    symbol: str
    side: TradeSide
    token_amount: float
    execution_price: float
    notional_value: float
    timestamp: float
    realized_pnl: Optional[float] = None          # Nur bei SELL
    realized_pnl_percent: Optional[float] = None  # Nur bei SELL

    @property
    def is_buy(self) -> bool:
        return self.side is TradeSide.BUY

    @classmethod
    def create(
        cls,
        token_id: str,
        symbol: str,
        side,
        token_amount: float,
        execution_price: float,
        notional_value: float,
        timestamp: Optional[float] = None,
        realized_pnl: Optional[float] = None,
        realized_pnl_percent: Optional[float] = None
    ) -> "Trade":
        return cls(
            id=uuid.uuid4().hex[:12],
            token_id=token_id,
            symbol=symbol,
            side=TradeSide.parse(side),
            token_amount=float(token_amount),
            execution_price=float(execution_price),
            notional_value=float(notional_value),
            timestamp=time.time() if timestamp is None else timestamp,
            realized_pnl=realized_pnl,
            realized_pnl_percent=realized_pnl_percent,
        )


@dataclass(frozen=True)
class PositionPnL:
    """Derived position state; never stored, always recomputed."""
    realized_pnl: float = 0.0
    unrealized_pnl: float = 0.0
    token_holdings: float = 0.0
    total_cost_basis: float = 0.0

    @property
    def total_pnl(self) -> float:
        """Total PnL (realized + unrealized)"""
        return self.realized_pnl + self.unrealized_pnl

    @property
    def average_cost(self) -> float:
        if self.token_holdings > 0:
            return self.total_cost_basis / self.token_holdings
        return 0.0


def compute_position(trades: Sequence[Trade], current_price: float) -> PositionPnL:
    """
    Replay the complete trade log in order and value what is left at current_price.

    Buy:  cost += notional, holdings += amount
    Sell: realized += amount * price - amount * (cost / holdings);
          cost shrinks by (holdings - amount) / holdings; holdings -= amount

    Proportional cost reduction, not FIFO/LIFO lots. Not incremental: the
    average cost shifts with every sell, so the full history is required.

    Raises:
        InvariantViolation: a sell is replayed while holdings are zero
    """
    total_cost = 0.0
    holdings = 0.0
    realized = 0.0

    for trade in trades:
        if trade.side is TradeSide.BUY:
            total_cost += trade.notional_value
            holdings += trade.token_amount
            continue

        if holdings == 0:
            raise InvariantViolation(
                f"sell of {trade.token_amount} {trade.symbol or trade.token_id} replayed against zero holdings"
            )

        avg_cost = total_cost / holdings
        sale_value = trade.token_amount * trade.execution_price
        cost_basis = trade.token_amount * avg_cost
        realized += sale_value - cost_basis

        remaining_ratio = (holdings - trade.token_amount) / holdings
        total_cost *= remaining_ratio
        holdings -= trade.token_amount

    unrealized = holdings * current_price - total_cost if holdings > 0 else 0.0

    return PositionPnL(
        realized_pnl=realized,
        unrealized_pnl=unrealized,
        token_holdings=holdings,
        total_cost_basis=total_cost,
    )


def realized_pnl_percent(realized_pnl: float, notional_value: float) -> float:
    """Realized PnL relative to the sale proceeds (not the cost basis)."""
    if notional_value == 0:
        return 0.0
    return realized_pnl / notional_value * 100


def balance_from_trades(initial_balance: float, trades: Iterable[Trade]) -> float:
    """initial - Σ buy notional + Σ sell notional."""
    balance = initial_balance
    for trade in trades:
        if trade.side is TradeSide.BUY:
            balance -= trade.notional_value
        else:
            balance += trade.notional_value
    return balance


def fmt_pnl_usd(amount: float, precision: int = 2) -> str:
    """Formatiert PnL-Betrag als USD-String."""
    sign = "+" if amount >= 0 else ""
    return f"{sign}{amount:.{precision}f} USD"


def aggregate_pnl(positions: Iterable[PositionPnL]) -> PositionPnL:
    """Sum realized/unrealized PnL and cost basis over several positions."""
    realized = unrealized = cost = 0.0
    for p in positions:
        realized += p.realized_pnl
        unrealized += p.unrealized_pnl
        cost += p.total_cost_basis
    # Holdings of different tokens are not additive
    return PositionPnL(realized_pnl=realized, unrealized_pnl=unrealized, total_cost_basis=cost)
