# risk_guards.py
# Stop-Loss / Take-Profit Levels relativ zum Einstandspreis

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ExitReason(Enum):
    """Exit-Gründe für klare Telemetrie"""
    STOP_LOSS_HIT = "EXIT_STOP_LOSS_HIT"
    TAKE_PROFIT_HIT = "EXIT_TAKE_PROFIT_HIT"


def stop_loss_price(entry_price: float, percent: float) -> float:
    """entry * (1 - percent/100)"""
    return entry_price * (1 - percent / 100)


def take_profit_price(entry_price: float, percent: float) -> float:
    """entry * (1 + percent/100)"""
    return entry_price * (1 + percent / 100)


@dataclass(frozen=True)
class ProtectiveLevels:
    """Price levels derived from an entry price; either side may be unset."""
    entry_price: float
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None

    @classmethod
    def from_percent(
        cls,
        entry_price: float,
        stop_loss_pct: Optional[float] = None,
        take_profit_pct: Optional[float] = None
    ) -> "ProtectiveLevels":
        if entry_price <= 0:
            raise ValueError(f"entry_price must be > 0, got {entry_price}")
        for name, pct in (("stop_loss_pct", stop_loss_pct), ("take_profit_pct", take_profit_pct)):
            if pct is not None and pct < 0:
                raise ValueError(f"{name} must be >= 0, got {pct}")
        return cls(
            entry_price=entry_price,
            stop_loss=stop_loss_price(entry_price, stop_loss_pct) if stop_loss_pct is not None else None,
            take_profit=take_profit_price(entry_price, take_profit_pct) if take_profit_pct is not None else None,
        )

    def check(self, current_price: float) -> Optional[ExitReason]:
        """Which level (if any) the current price has crossed. Stop loss wins."""
        if self.stop_loss is not None and current_price <= self.stop_loss:
            return ExitReason.STOP_LOSS_HIT
        if self.take_profit is not None and current_price >= self.take_profit:
            return ExitReason.TAKE_PROFIT_HIT
        return None
