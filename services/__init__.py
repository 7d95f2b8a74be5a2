# Services package (market data, pnl)

from .market_data import MarketDataConfig, MarketDataService, MarketSnapshot, Subscription
from .pnl import PositionPnL, Trade, TradeSide, aggregate_pnl, compute_position

__all__ = [
    # Market data engine
    'MarketDataConfig',
    'MarketDataService',
    'MarketSnapshot',
    'Subscription',

    # Position accounting
    'PositionPnL',
    'Trade',
    'TradeSide',
    'aggregate_pnl',
    'compute_position',
]
