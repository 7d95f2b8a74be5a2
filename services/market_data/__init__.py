"""Market data acquisition: rate limiting, request queue, subscriptions, batched refresh."""

from .dexscreener import DexScreenerClient, select_canonical_pairs
from .models import MarketSnapshot, canonical_token_id
from .rate_limit import FixedWindowRateLimiter, RateLimitStats
from .registry import MarketDataStore, Subscription, SubscriptionRegistry
from .request_queue import RequestQueue
from .scheduler import UpdateScheduler, chunked
from .service import MarketDataConfig, MarketDataService

__all__ = [
    'DexScreenerClient',
    'select_canonical_pairs',
    'MarketSnapshot',
    'canonical_token_id',
    'FixedWindowRateLimiter',
    'RateLimitStats',
    'MarketDataStore',
    'Subscription',
    'SubscriptionRegistry',
    'RequestQueue',
    'UpdateScheduler',
    'chunked',
    'MarketDataConfig',
    'MarketDataService',
]
