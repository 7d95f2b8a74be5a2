"""Paper Trading Portfolio & Protective Levels"""

from .portfolio import PaperPortfolio, TokenPosition
from .risk_guards import ExitReason, ProtectiveLevels, stop_loss_price, take_profit_price

__all__ = [
    'PaperPortfolio',
    'TokenPosition',
    'ExitReason',
    'ProtectiveLevels',
    'stop_loss_price',
    'take_profit_price',
]
