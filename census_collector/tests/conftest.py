"""Fixtures shared by the census_collector test modules."""
from __future__ import annotations

import os
import pytest

# Tests never sleep between pages or batches; set before the package reads env
QUIET_ENV = {"SEARCH_PAGE_DELAY_SECONDS": "0", "BATCH_DELAY_SECONDS": "0"}
for _name, _value in QUIET_ENV.items():
    os.environ.setdefault(_name, _value)
os.environ.setdefault("USER_IS_PAYING", "false")

from census_collector.config import Settings, get_settings
from census_collector.services.http_pool import HTTPClientPool
from census_collector.services.rate_limiter import reset_global_rate_limiter
from census_collector.tests.utils import MockCensusServer


def quiet_settings(**overrides) -> Settings:
    values = {"search_page_delay_seconds": 0, "batch_delay_seconds": 0}
    values.update(overrides)
    return Settings(**values)


@pytest.fixture(autouse=True)
def test_environment():
    """Restore os.environ and drop cached settings around every test."""
    saved = dict(os.environ)
    os.environ.update(QUIET_ENV)
    get_settings.cache_clear()
    yield
    os.environ.clear()
    os.environ.update(saved)
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def reset_singletons():
    """Fresh rate limiter registry and no pooled client for each test."""
    reset_global_rate_limiter()
    yield
    reset_global_rate_limiter()
    HTTPClientPool._client = None
    HTTPClientPool._instance = None


@pytest.fixture
def settings() -> Settings:
    """Paid plan, no delays."""
    return quiet_settings(user_is_paying=True)


@pytest.fixture
def free_settings() -> Settings:
    return quiet_settings(user_is_paying=False)


@pytest.fixture
def census_server() -> MockCensusServer:
    """Routed fake of data.census.gov and Census Reporter."""
    return MockCensusServer()
