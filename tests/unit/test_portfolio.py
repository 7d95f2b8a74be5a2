#!/usr/bin/env python3
"""
Unit Tests for PaperPortfolio - Paper Trading on Live Snapshots

Tests:
- Token management guards (limit, duplicates, unknown tokens)
- Buy / sell guards run before any mutation
- Realized PnL on sells, unrealized PnL on price updates
- Balance invariant and newest-first trade history
- Protective levels derived from the average cost
"""

import logging
from unittest.mock import patch

import pytest

from core.exceptions import (
    DuplicateToken,
    InsufficientBalance,
    InsufficientHoldings,
    InvalidTradeAmount,
    PriceUnavailable,
    TokenLimitReached,
    TokenNotTracked,
    TransientNetworkFailure,
    UnknownToken,
)
from core.portfolio import PaperPortfolio
from services.pnl import TradeSide, compute_position

TOKEN = "0xAbC0000000000000000000000000000000000001"
TOKEN_ID = TOKEN.lower()


@pytest.fixture
def portfolio(service, fake_client):
    fake_client.set_price(TOKEN_ID, 10.0)
    pf = PaperPortfolio(service, initial_balance=1000.0, max_tokens=2)
    yield pf
    pf.close()


@pytest.fixture
def tracked(portfolio, service):
    portfolio.add_token(TOKEN)
    assert service.queue.wait_idle(timeout=5.0)
    return portfolio


def move_price(service, fake_client, price, token_id=TOKEN_ID):
    """Push a new upstream price through the service (notifies the portfolio)."""
    fake_client.set_price(token_id, price)
    service.fetch_token(token_id)


class TestTokenManagement:
    """add_token / remove_token"""

    def test_add_token(self, portfolio, service):
        """Test a known token is tracked and subscribed"""
        position = portfolio.add_token(TOKEN)

        assert position.token_id == TOKEN_ID
        assert position.current_price == 10.0
        assert position.holdings == 0.0
        assert service.registry.has_subscribers(TOKEN_ID)
        assert [p.token_id for p in portfolio.positions()] == [TOKEN_ID]

    def test_duplicate_is_case_insensitive(self, tracked):
        """Test the same address in another case is rejected"""
        with pytest.raises(DuplicateToken) as exc_info:
            tracked.add_token(TOKEN.upper())
        assert exc_info.value.reason == "Token already added"

    def test_token_limit(self, tracked, service, fake_client):
        """Test max_tokens is enforced before any network call"""
        fake_client.set_price("0xb", 1.0)
        tracked.add_token("0xb")
        assert service.queue.wait_idle(timeout=5.0)
        calls = len(fake_client.calls)

        with pytest.raises(TokenLimitReached) as exc_info:
            tracked.add_token("0xc")

        assert exc_info.value.reason == "Maximum 2 tokens allowed"
        assert len(fake_client.calls) == calls

    def test_unknown_token(self, portfolio, service):
        """Test a token without pairs is rejected and not tracked"""
        with pytest.raises(UnknownToken) as exc_info:
            portfolio.add_token("0xdoesnotexist")

        assert exc_info.value.reason == "Invalid token address"
        assert portfolio.positions() == []
        assert not service.registry.has_subscribers("0xdoesnotexist")

    def test_network_failure_propagates(self, portfolio, fake_client):
        fake_client.fail = True
        with pytest.raises(TransientNetworkFailure):
            portfolio.add_token(TOKEN)
        assert portfolio.positions() == []

    def test_remove_token(self, tracked, service):
        """Test removal unsubscribes and evicts the cache entry"""
        tracked.record_trade(TOKEN, "buy", 100)

        assert tracked.remove_token(TOKEN) is True
        assert tracked.positions() == []
        assert not service.registry.has_subscribers(TOKEN_ID)
        assert service.get_cached_snapshot(TOKEN_ID) is None
        assert len(tracked.trade_history()) == 1
        assert tracked.remove_token(TOKEN) is False


class TestTradeGuards:
    """Rejections happen before any state change"""

    def test_buy_exceeding_balance(self, tracked):
        with pytest.raises(InsufficientBalance) as exc_info:
            tracked.record_trade(TOKEN, "buy", 1000.01)

        assert exc_info.value.reason == "Insufficient balance"
        assert tracked.balance == 1000.0
        assert tracked.trade_history() == []

    def test_oversell_rejected_by_guard_not_accountant(self, tracked):
        """Test the caller-side guard raises before compute_position runs"""
        tracked.record_trade(TOKEN, "buy", 100)  # 10 tokens

        with patch("core.portfolio.portfolio.compute_position", wraps=compute_position) as accountant:
            with pytest.raises(InsufficientHoldings) as exc_info:
                tracked.record_trade(TOKEN, "sell", 100.01)
            accountant.assert_not_called()

        assert exc_info.value.reason == "Insufficient tokens"
        assert tracked.get_position(TOKEN).holdings == pytest.approx(10.0)
        assert len(tracked.trade_history()) == 1

    def test_sell_without_position(self, tracked):
        with pytest.raises(InsufficientHoldings):
            tracked.record_trade(TOKEN, "sell", 1)

    @pytest.mark.parametrize("amount", [0, -5, "abc", float("nan"), float("inf"), None])
    def test_invalid_amount(self, tracked, amount):
        with pytest.raises(InvalidTradeAmount):
            tracked.record_trade(TOKEN, "buy", amount)
        assert tracked.balance == 1000.0

    def test_untracked_token(self, tracked):
        with pytest.raises(TokenNotTracked):
            tracked.record_trade("0xother", "buy", 10)

    def test_no_cached_snapshot(self, tracked, service):
        service.store.evict(TOKEN_ID)
        with pytest.raises(PriceUnavailable) as exc_info:
            tracked.record_trade(TOKEN, "buy", 10)
        assert exc_info.value.reason == "Token data not available"

    def test_zero_price(self, tracked, service, fake_client):
        move_price(service, fake_client, 0.0)
        with pytest.raises(PriceUnavailable) as exc_info:
            tracked.record_trade(TOKEN, "buy", 10)
        assert exc_info.value.reason == "Invalid price data"

    def test_invalid_side(self, tracked):
        with pytest.raises(ValueError):
            tracked.record_trade(TOKEN, "hold", 10)


class TestTrading:
    """Executed trades"""

    def test_buy(self, tracked):
        """Test token amount = usd / price and the balance debit"""
        trade = tracked.record_trade(TOKEN, "buy", 250)

        assert trade.side is TradeSide.BUY
        assert trade.token_amount == pytest.approx(25.0)
        assert trade.execution_price == 10.0
        assert trade.notional_value == 250.0
        assert trade.realized_pnl is None
        assert tracked.balance == pytest.approx(750.0)

        position = tracked.get_position(TOKEN)
        assert position.holdings == pytest.approx(25.0)
        assert position.average_cost == pytest.approx(10.0)
        assert position.pnl == pytest.approx(0.0)

    def test_sell_records_realized_pnl(self, tracked, service, fake_client):
        """Test buy 10 @ $10, sell 5 @ $12: realized $10, percent on proceeds"""
        tracked.record_trade(TOKEN, "buy", 100)
        move_price(service, fake_client, 12.0)

        trade = tracked.record_trade(TOKEN, "sell", 60)

        assert trade.token_amount == pytest.approx(5.0)
        assert trade.realized_pnl == pytest.approx(10.0)
        assert trade.realized_pnl_percent == pytest.approx(10.0 / 60.0 * 100)
        assert tracked.balance == pytest.approx(960.0)

        position = tracked.get_position(TOKEN)
        assert position.holdings == pytest.approx(5.0)
        assert position.average_cost == pytest.approx(10.0)
        assert position.unrealized_pnl == pytest.approx(5 * 12.0 - 50.0)
        assert position.pnl == pytest.approx(20.0)

    def test_price_update_revalues_position(self, tracked, service, fake_client):
        """Test a new snapshot recomputes PnL and extends the price history"""
        tracked.record_trade(TOKEN, "buy", 100)

        move_price(service, fake_client, 15.0)

        position = tracked.get_position(TOKEN)
        assert position.current_price == 15.0
        assert position.pnl == pytest.approx(50.0)
        assert [price for _, price in tracked.price_history.view(TOKEN_ID)] == [10.0, 15.0]
        assert tracked.overall_pnl() == pytest.approx(50.0)
        assert tracked.overall_pnl_percent() == pytest.approx(5.0)

    def test_history_newest_first(self, tracked):
        first = tracked.record_trade(TOKEN, "buy", 10)
        second = tracked.record_trade(TOKEN, "buy", 20)
        third = tracked.record_trade(TOKEN, "sell", 5)

        assert [t.id for t in tracked.trade_history()] == [third.id, second.id, first.id]
        assert [t.id for t in tracked.get_position(TOKEN).trades] == [first.id, second.id, third.id]

    def test_balance_invariant(self, tracked, service, fake_client):
        """Test initial - buys + sells == balance after a mixed sequence"""
        tracked.record_trade(TOKEN, "buy", 300)
        move_price(service, fake_client, 8.0)
        tracked.record_trade(TOKEN, "sell", 40)
        tracked.record_trade(TOKEN, "buy", 120)
        move_price(service, fake_client, 11.0)
        tracked.record_trade(TOKEN, "sell", 200)

        assert tracked.verify_balance() == pytest.approx(tracked.balance)
        assert tracked.balance == pytest.approx(1000 - 300 + 40 - 120 + 200)

    def test_returned_positions_are_copies(self, tracked):
        tracked.get_position(TOKEN).holdings = 999
        assert tracked.get_position(TOKEN).holdings == 0.0


class TestProtectiveLevels:
    """Stop-loss / take-profit around the average cost"""

    def test_levels_from_average_cost(self, tracked):
        tracked.record_trade(TOKEN, "buy", 100)

        levels = tracked.set_protective_levels(TOKEN, stop_loss_pct=5, take_profit_pct=10)

        assert levels.entry_price == pytest.approx(10.0)
        assert levels.stop_loss == pytest.approx(9.5)
        assert levels.take_profit == pytest.approx(11.0)

    def test_requires_open_position(self, tracked):
        with pytest.raises(InsufficientHoldings):
            tracked.set_protective_levels(TOKEN, stop_loss_pct=5)

    def test_crossing_stop_loss_is_logged(self, tracked, service, fake_client, caplog):
        tracked.record_trade(TOKEN, "buy", 100)
        tracked.set_protective_levels(TOKEN, stop_loss_pct=5)

        with caplog.at_level(logging.WARNING, logger="core.portfolio.portfolio"):
            move_price(service, fake_client, 9.0)

        assert any(getattr(r, "event_type", None) == "EXIT_STOP_LOSS_HIT" for r in caplog.records)


class TestLifecycle:
    def test_close_cancels_subscriptions(self, tracked, service):
        tracked.close()
        assert not service.registry.has_subscribers(TOKEN_ID)

    def test_from_config(self, service):
        import config

        config.set_config_override("INITIAL_BALANCE_USD", 250.0)
        config.set_config_override("MAX_TRACKED_TOKENS", 3)

        pf = PaperPortfolio.from_config(service)
        assert pf.balance == 250.0
        assert pf.max_tokens == 3

    def test_invalid_construction(self, service):
        with pytest.raises(ValueError):
            PaperPortfolio(service, initial_balance=-1)
        with pytest.raises(ValueError):
            PaperPortfolio(service, max_tokens=0)
