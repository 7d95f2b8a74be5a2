# portfolio.py - Paper-Trading Portfolio auf Basis des Market-Data-Streams
import functools
import logging
import math
import threading
import time
from dataclasses import dataclass, replace
from functools import partial
from typing import Callable, Dict, List, Optional, Tuple

from core.exceptions import (
    DuplicateToken,
    InsufficientBalance,
    InsufficientHoldings,
    InvalidTradeAmount,
    InvariantViolation,
    PriceUnavailable,
    TokenLimitReached,
    TokenNotTracked,
    UnknownToken,
)
from core.portfolio.risk_guards import ExitReason, ProtectiveLevels
from core.price_cache import PriceHistory
from services.market_data import MarketDataService, MarketSnapshot, Subscription, canonical_token_id
from services.pnl import (
    PositionPnL,
    Trade,
    TradeSide,
    aggregate_pnl,
    balance_from_trades,
    compute_position,
    realized_pnl_percent,
)

logger = logging.getLogger(__name__)

# =================================================================================
# Position Data Model
# =================================================================================

@dataclass
class TokenPosition:
    """
    Per-token paper trading state. Every numeric field is derived from
    `trades` (and the current price) by compute_position().

    Attributes:
        token_id: Canonical token identifier
        symbol: Base token symbol from the first snapshot
        holdings: Tokens held after replaying all trades
        trades: Trade log in execution order
        pnl: Realized + unrealized PnL at current_price
        average_cost: Cost basis per held token (0 when flat)
        current_price: Last price seen for the token
        levels: Optional stop-loss / take-profit levels
    """
    token_id: str
    symbol: str
    holdings: float = 0.0
    trades: Tuple[Trade, ...] = ()
    pnl: float = 0.0
    realized_pnl: float = 0.0
    unrealized_pnl: float = 0.0
    average_cost: float = 0.0
    current_price: float = 0.0
    levels: Optional[ProtectiveLevels] = None


# =================================================================================
# Thread Safety Decorator
# =================================================================================
def synchronized(lock_attr='_lock'):
    """Decorator for thread-safe method execution"""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(self, *args, **kwargs):
            lock = getattr(self, lock_attr)
            with lock:
                return func(self, *args, **kwargs)
        return wrapper
    return decorator


class PaperPortfolio:
    """
    Simulated USD balance trading the tokens watched through MarketDataService.

    All precondition checks (token limit, duplicates, balance, holdings, price
    availability) run before any state changes and raise a TradeRejected
    subclass. Price updates arrive on the request queue's drain thread, so
    every state access goes through one RLock.
    """

    def __init__(
        self,
        market_data: MarketDataService,
        initial_balance: float = 1000.0,
        max_tokens: int = 6,
        price_history_points: int = 50,
        clock: Callable[[], float] = time.time
    ):
        if initial_balance < 0:
            raise ValueError(f"initial_balance must be >= 0, got {initial_balance}")
        if max_tokens < 1:
            raise ValueError(f"max_tokens must be >= 1, got {max_tokens}")

        self.market_data = market_data
        self.initial_balance = float(initial_balance)
        self.max_tokens = int(max_tokens)
        self.price_history = PriceHistory(max_points=price_history_points)
        self._clock = clock
        self._lock = threading.RLock()
        self._balance = float(initial_balance)
        self._tokens: Dict[str, TokenPosition] = {}
        self._subscriptions: Dict[str, Subscription] = {}
        self._history: List[Trade] = []  # newest first

    @classmethod
    def from_config(cls, market_data: MarketDataService) -> "PaperPortfolio":
        from config import get_config

        return cls(
            market_data,
            initial_balance=float(get_config("INITIAL_BALANCE_USD", 1000.0)),
            max_tokens=int(get_config("MAX_TRACKED_TOKENS", 6)),
            price_history_points=int(get_config("PRICE_HISTORY_POINTS", 50)),
        )

    # ------------------------------------------------------------------
    # Token management
    # ------------------------------------------------------------------

    def _check_can_add(self, token_id: str) -> None:
        if token_id in self._tokens:
            raise DuplicateToken("Token already added", token_id)
        if len(self._tokens) >= self.max_tokens:
            raise TokenLimitReached(f"Maximum {self.max_tokens} tokens allowed", token_id)

    def add_token(self, identifier: str) -> TokenPosition:
        """
        Validate the token upstream and start watching it.

        Raises:
            DuplicateToken, TokenLimitReached: local preconditions
            UnknownToken: upstream has no pairs for the identifier
            TransientNetworkFailure: the validation fetch failed
        """
        token_id = canonical_token_id(identifier)
        with self._lock:
            self._check_can_add(token_id)

        snapshot = self.market_data.fetch_token(token_id)
        if snapshot is None:
            raise UnknownToken("Invalid token address", token_id)

        with self._lock:
            # Another caller may have added tokens while we were fetching
            self._check_can_add(token_id)
            position = TokenPosition(
                token_id=token_id,
                symbol=snapshot.symbol,
                current_price=snapshot.price_usd,
            )
            self._tokens[token_id] = position
            if snapshot.price_usd > 0:
                self.price_history.note_price(token_id, snapshot.price_usd, snapshot.last_updated)

        subscription = self.market_data.subscribe(token_id, partial(self._on_snapshot, token_id))
        with self._lock:
            self._subscriptions[token_id] = subscription

        logger.info(f"Tracking {snapshot.symbol or token_id}", extra={
            'event_type': 'TOKEN_ADDED',
            'token_id': token_id,
            'symbol': snapshot.symbol,
            'price_usd': snapshot.price_usd,
        })
        return replace(position)

    def remove_token(self, identifier: str) -> bool:
        """Stop watching a token. Its trades stay in the global history."""
        token_id = canonical_token_id(identifier)
        with self._lock:
            position = self._tokens.pop(token_id, None)
            subscription = self._subscriptions.pop(token_id, None)
            self.price_history.drop(token_id)

        if subscription is not None:
            subscription.cancel()
        if position is None:
            return False

        logger.info(f"Stopped tracking {position.symbol or token_id}", extra={
            'event_type': 'TOKEN_REMOVED',
            'token_id': token_id,
            'holdings': position.holdings,
        })
        return True

    # ------------------------------------------------------------------
    # Trading
    # ------------------------------------------------------------------

    def record_trade(self, identifier: str, side, usd_amount: float) -> Trade:
        """
        Execute a paper trade of usd_amount at the cached price.

        Returns:
            The recorded Trade

        Raises:
            TradeRejected subclass when a precondition fails; nothing is
            mutated in that case
        """
        trade_side = TradeSide.parse(side)
        token_id = canonical_token_id(identifier)

        try:
            amount = float(usd_amount)
        except (TypeError, ValueError):
            raise InvalidTradeAmount(f"Invalid amount: {usd_amount!r}", token_id) from None
        if math.isnan(amount) or math.isinf(amount) or amount <= 0:
            raise InvalidTradeAmount(f"Invalid amount: {usd_amount!r}", token_id)

        with self._lock:
            position = self._tokens.get(token_id)
            if position is None:
                raise TokenNotTracked("Token not tracked", token_id)

            snapshot = self.market_data.get_cached_snapshot(token_id)
            if snapshot is None:
                raise PriceUnavailable("Token data not available", token_id)

            price = snapshot.price_usd
            if math.isnan(price) or price <= 0:
                raise PriceUnavailable("Invalid price data", token_id)

            token_amount = amount / price
            symbol = snapshot.symbol or position.symbol
            now = self._clock()

            if trade_side is TradeSide.BUY:
                if amount > self._balance:
                    raise InsufficientBalance("Insufficient balance", token_id)
                trade = Trade.create(token_id, symbol, TradeSide.BUY, token_amount, price, amount, timestamp=now)
                trades = position.trades + (trade,)
                result = compute_position(trades, price)
                self._balance -= amount
            else:
                if token_amount > position.holdings:
                    raise InsufficientHoldings("Insufficient tokens", token_id)
                pending = Trade.create(token_id, symbol, TradeSide.SELL, token_amount, price, amount, timestamp=now)
                result = compute_position(position.trades + (pending,), price)
                trade = replace(
                    pending,
                    realized_pnl=result.realized_pnl,
                    realized_pnl_percent=realized_pnl_percent(result.realized_pnl, amount),
                )
                trades = position.trades + (trade,)
                self._balance += amount

            self._apply(position, trades, result, price)
            self._history.insert(0, trade)

        logger.info(f"{trade_side.value.upper()} {token_amount:.6f} {symbol} @ {price}", extra={
            'event_type': 'TRADE_RECORDED',
            'token_id': token_id,
            'side': trade_side.value,
            'usd_amount': amount,
            'token_amount': token_amount,
            'price_usd': price,
            'realized_pnl': trade.realized_pnl,
        })
        return trade

    def _apply(self, position: TokenPosition, trades: Tuple[Trade, ...], result, price: float) -> None:
        """Copy a compute_position() result into the position. Lock held."""
        position.trades = trades
        position.holdings = result.token_holdings
        position.average_cost = result.average_cost
        position.realized_pnl = result.realized_pnl
        position.unrealized_pnl = result.unrealized_pnl
        position.pnl = result.total_pnl
        position.current_price = price

    def _on_snapshot(self, token_id: str, snapshot: MarketSnapshot) -> None:
        """Subscription listener: re-value the position when the price moves."""
        price = snapshot.price_usd
        if math.isnan(price) or price <= 0:
            return

        with self._lock:
            position = self._tokens.get(token_id)
            if position is None or position.current_price == price:
                return
            result = compute_position(position.trades, price)
            position.current_price = price
            position.realized_pnl = result.realized_pnl
            position.unrealized_pnl = result.unrealized_pnl
            position.pnl = result.total_pnl
            self.price_history.note_price(token_id, price, snapshot.last_updated)
            levels = position.levels
            hit = levels.check(price) if levels and position.holdings > 0 else None

        if hit is not None:
            level = levels.stop_loss if hit is ExitReason.STOP_LOSS_HIT else levels.take_profit
            logger.warning(f"{position.symbol or token_id} crossed {hit.value} at {price}", extra={
                'event_type': hit.value,
                'token_id': token_id,
                'price_usd': price,
                'level': level,
            })

    def set_protective_levels(
        self,
        identifier: str,
        stop_loss_pct: Optional[float] = None,
        take_profit_pct: Optional[float] = None
    ) -> ProtectiveLevels:
        """Derive stop-loss / take-profit prices from the position's average cost."""
        token_id = canonical_token_id(identifier)
        with self._lock:
            position = self._tokens.get(token_id)
            if position is None:
                raise TokenNotTracked("Token not tracked", token_id)
            if position.holdings <= 0:
                raise InsufficientHoldings("No open position", token_id)
            levels = ProtectiveLevels.from_percent(position.average_cost, stop_loss_pct, take_profit_pct)
            position.levels = levels
            return levels

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    @synchronized()
    def balance(self) -> float:
        return self._balance

    @synchronized()
    def get_position(self, identifier: str) -> Optional[TokenPosition]:
        position = self._tokens.get(canonical_token_id(identifier))
        return replace(position) if position is not None else None

    @synchronized()
    def positions(self) -> List[TokenPosition]:
        """Tracked positions in the order they were added."""
        return [replace(p) for p in self._tokens.values()]

    @synchronized()
    def trade_history(self) -> List[Trade]:
        """All trades, newest first."""
        return list(self._history)

    @synchronized()
    def pnl_breakdown(self) -> PositionPnL:
        """Realized / unrealized PnL summed over tracked tokens."""
        return aggregate_pnl(
            PositionPnL(p.realized_pnl, p.unrealized_pnl, p.holdings, p.average_cost * p.holdings)
            for p in self._tokens.values()
        )

    def overall_pnl(self) -> float:
        return self.pnl_breakdown().total_pnl

    def overall_pnl_percent(self) -> float:
        if self.initial_balance == 0:
            return 0.0
        return self.overall_pnl() / self.initial_balance * 100

    @synchronized()
    def verify_balance(self, tolerance: float = 1e-6) -> float:
        """
        Check initial - Σbuys + Σsells == balance.

        Raises:
            InvariantViolation: if the books do not balance
        """
        expected = balance_from_trades(self.initial_balance, reversed(self._history))
        if abs(expected - self._balance) > tolerance:
            raise InvariantViolation(f"balance {self._balance} != replayed balance {expected}")
        return expected

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Cancel every price subscription."""
        with self._lock:
            subscriptions = list(self._subscriptions.values())
            self._subscriptions.clear()
        for subscription in subscriptions:
            subscription.cancel()

    def __enter__(self) -> "PaperPortfolio":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
