#!/usr/bin/env python3
"""
Token Watch Exceptions

Market data failures, trade rejections and contract violations.
"""

from typing import Iterable, Optional, Tuple


class MarketDataError(Exception):
    """Base class for market data acquisition errors."""
    pass


class TransientNetworkFailure(MarketDataError):
    """
    Raised when an upstream fetch fails (transport error, HTTP error, bad JSON).

    Never retried here; the next scheduled tick retries stale tokens naturally.

    Attributes:
        identifiers: Token identifiers the failed request covered
        status_code: HTTP status code if the server answered
    """

    def __init__(
        self,
        message: str,
        identifiers: Optional[Iterable[str]] = None,
        status_code: Optional[int] = None
    ):
        self.identifiers: Tuple[str, ...] = tuple(identifiers or ())
        self.status_code = status_code
        super().__init__(message)


class TradeRejected(Exception):
    """
    Local precondition failure, reported synchronously before any state changes.

    Attributes:
        reason: Human-readable reason for the rejection
        token_id: Token the request referred to (if any)
    """

    def __init__(self, reason: str, token_id: Optional[str] = None):
        self.reason = reason
        self.token_id = token_id
        super().__init__(reason)


class InsufficientBalance(TradeRejected):
    pass


class InsufficientHoldings(TradeRejected):
    pass


class TokenLimitReached(TradeRejected):
    pass


class DuplicateToken(TradeRejected):
    pass


class UnknownToken(TradeRejected):
    """Upstream returned no pairs for the identifier."""
    pass


class TokenNotTracked(TradeRejected):
    pass


class PriceUnavailable(TradeRejected):
    """No cached snapshot, or the cached price is not usable."""
    pass


class InvalidTradeAmount(TradeRejected):
    pass


class InvariantViolation(RuntimeError):
    """
    Programming-contract failure (e.g. a sell replayed against zero holdings).

    Callers validate before invoking; this should never surface in normal operation.
    """
    pass
