#!/usr/bin/env python3
"""
Integration tests for MarketDataService: subscribe/fetch/notify through the
real limiter, queue, registry and scheduler with a fake upstream.
"""

import threading
import time

import pytest

from core.exceptions import TransientNetworkFailure
from services.market_data import MarketDataConfig, MarketDataService
from tests.fakes import make_pair


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class TestSubscribe:
    """Consumer API"""

    def test_subscribe_triggers_immediate_fetch(self, service, fake_client):
        """Test a new subscriber gets data without waiting for a tick"""
        fake_client.set_price("0xabc", 1.5)
        got = []

        service.subscribe("0xABC", got.append)

        assert wait_for(lambda: got)
        assert got[0].price_usd == 1.5
        assert service.get_cached_snapshot("0xabc").price_usd == 1.5

    def test_subscribe_unsubscribe_leaves_no_cache_entry(self, service, fake_client):
        """Test immediate unsubscribe: no residual snapshot for the token"""
        fake_client.set_price("0xabc", 1.5)
        gate = threading.Event()
        service.queue.enqueue(gate.wait)  # hold the drain

        sub = service.subscribe("0xabc", lambda s: None)
        service.unsubscribe(sub)
        gate.set()

        assert service.queue.wait_idle(timeout=5.0)
        assert service.get_cached_snapshot("0xabc") is None
        assert len(service.store) == 0
        assert fake_client.calls == []

    def test_multiple_consumers_share_one_entry(self, service, fake_client):
        """Test two subscribers, one cache entry, both notified"""
        fake_client.set_price("0xabc", 2.0)
        a, b = [], []
        sub_a = service.subscribe("0xabc", a.append)
        service.subscribe("0xabc", b.append)

        assert wait_for(lambda: a and b)
        sub_a.cancel()
        assert service.get_cached_snapshot("0xabc") is not None

    def test_unknown_token_not_cached(self, service, fake_client):
        """Test no pairs: nothing cached, nobody notified"""
        got = []
        service.subscribe("0xnothing", got.append)

        assert service.queue.wait_idle(timeout=5.0)
        assert got == []
        assert service.get_cached_snapshot("0xnothing") is None

    def test_initial_fetch_failure_is_logged(self, service, fake_client):
        """Test a failed initial fetch does not break the queue"""
        fake_client.fail = True
        service.subscribe("0xabc", lambda s: None)
        assert service.queue.wait_idle(timeout=5.0)

        fake_client.fail = False
        fake_client.set_price("0xdef", 1.0)
        got = []
        service.subscribe("0xdef", got.append)
        assert wait_for(lambda: got)


class TestFetchToken:
    """Explicit single-token fetch"""

    def test_returns_and_caches_snapshot(self, service, fake_client):
        fake_client.set_price("0xabc", 9.0)

        snap = service.fetch_token("0xAbC")

        assert snap.price_usd == 9.0
        assert service.get_cached_snapshot("0xabc") is snap

    def test_no_data_returns_none(self, service):
        assert service.fetch_token("0xmissing") is None

    def test_quote_token_only_is_not_resolved(self, service, fake_client):
        """Test pairs where the token is not the base token do not count"""
        other = make_pair("0xother", 5.0)
        other["quoteToken"] = {"address": "0xquote", "symbol": "QT"}
        fake_client.pairs["0xquote"] = [other]

        assert service.fetch_token("0xquote") is None
        assert service.get_cached_snapshot("0xquote") is None
        assert service.get_cached_snapshot("0xother") is None

    def test_network_failure_raises(self, service, fake_client):
        fake_client.fail = True
        with pytest.raises(TransientNetworkFailure):
            service.fetch_token("0xabc")

    def test_rate_limit_timeout_raises(self, fake_client):
        """Test an exhausted budget surfaces as TransientNetworkFailure"""
        svc = MarketDataService(MarketDataConfig(rate_limit=1, rate_window_s=60.0), client=fake_client)
        try:
            fake_client.set_price("0xabc", 1.0)
            svc.fetch_token("0xabc")
            with pytest.raises(TransientNetworkFailure):
                svc.fetch_token("0xabc", timeout=0.05)
        finally:
            svc.close()


class TestLifecycle:
    """open() / close() / context manager"""

    def test_periodic_refresh(self, fake_client):
        """Test the ticker refreshes stale tokens and notifies again"""
        fake_client.set_price("0xabc", 1.0)
        got = []
        md_config = MarketDataConfig(refresh_interval_s=0.05, rate_limit=1000, batch_size=10)

        with MarketDataService(md_config, client=fake_client) as svc:
            assert svc.is_open
            svc.subscribe("0xabc", got.append)
            assert wait_for(lambda: len(got) >= 1)
            fake_client.set_price("0xabc", 2.0)
            assert wait_for(lambda: any(s.price_usd == 2.0 for s in got))

        assert not svc.is_open
        assert not svc.scheduler.running

    def test_close_is_idempotent_and_final(self, fake_client):
        svc = MarketDataService(MarketDataConfig(), client=fake_client)
        svc.open()
        svc.close()
        svc.close()

        with pytest.raises(RuntimeError):
            svc.open()
        assert svc.queue.enqueue(lambda: None) is False

    def test_from_config_uses_overrides(self):
        import config

        config.set_config_override("BATCH_SIZE", 4)
        config.set_config_override("REFRESH_INTERVAL_S", 1.5)

        md_config = MarketDataConfig.from_config()
        assert md_config.batch_size == 4
        assert md_config.refresh_interval_s == 1.5
        assert md_config.rate_limit == config.RATE_LIMIT_PER_MINUTE

    def test_statistics(self, service, fake_client):
        fake_client.set_price("0xabc", 1.0)
        service.fetch_token("0xabc")

        stats = service.get_statistics()
        assert stats["rate_limiter"]["acquired"] == 1
        assert stats["cached_snapshots"] == 1
        assert stats["queue"]["pending"] == 0

    def test_closed_service_rejects_subscribe(self, fake_client):
        """Test subscribe after close raises and registers nothing"""
        fake_client.set_price("0xabc", 1.0)
        svc = MarketDataService(MarketDataConfig(), client=fake_client)
        svc.open()
        svc.close()

        got = []
        with pytest.raises(RuntimeError, match="closed"):
            svc.subscribe("0xabc", got.append)

        assert not svc.registry.has_subscribers("0xabc")
        assert svc.registry.active_tokens() == []
        assert fake_client.calls == []
        assert got == []

    def test_closed_service_rejects_fetch_token(self, fake_client):
        """Test fetch_token after close raises RuntimeError, not a network failure"""
        fake_client.set_price("0xabc", 1.0)
        svc = MarketDataService(MarketDataConfig(), client=fake_client)
        svc.close()

        with pytest.raises(RuntimeError, match="closed"):
            svc.fetch_token("0xabc")
        assert fake_client.calls == []

    def test_snapshots_stamped_with_injected_clock(self, md_config, fake_client):
        """Test snapshot.last_updated and the store stamp share the service clock"""
        fake_client.set_price("0xabc", 1.0)
        svc = MarketDataService(md_config, client=fake_client, clock=lambda: 4242.0)
        try:
            snap = svc.fetch_token("0xabc")
            assert svc.store.last_updated("0xabc") == 4242.0
        finally:
            svc.close()

        assert snap.last_updated == 4242.0
