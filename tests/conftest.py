"""
Shared fixtures: fake upstream client, engine config, config isolation.
"""

import pytest

import config
from services.market_data import MarketDataConfig, MarketDataService
from tests.fakes import FakeClient


@pytest.fixture(autouse=True)
def _clean_config_overrides():
    yield
    config.clear_config_overrides()


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def md_config():
    # Long interval: tests drive ticks explicitly
    return MarketDataConfig(refresh_interval_s=60.0, rate_limit=300, rate_window_s=60.0, batch_size=10)


@pytest.fixture
def service(md_config, fake_client):
    svc = MarketDataService(md_config, client=fake_client)
    yield svc
    svc.close()
