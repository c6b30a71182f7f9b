"""Request spacing per upstream.

Each upstream gets a minimum gap between consecutive requests and, where
the service publishes one, a rolling 60-second request ceiling. Census
Reporter and the data.census.gov search are spaced by
``SEARCH_PAGE_DELAY_SECONDS`` between result pages. Table metadata and data
fetches are unspaced here because the collection scheduler already paces
them batch by batch.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional

from ..config import Settings, get_settings

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0

# Census Reporter asks API clients to stay around one request per second
CENSUS_REPORTER_PER_MINUTE = 60


@dataclass(frozen=True)
class RateLimiterConfig:
    """Spacing rules for one upstream."""

    name: str
    min_delay_seconds: float = 0.0
    max_requests_per_minute: Optional[int] = None


def configs_from_settings(settings: Settings) -> Dict[str, RateLimiterConfig]:
    page_delay = settings.search_page_delay_seconds
    configs = [
        RateLimiterConfig("CENSUS"),
        RateLimiterConfig("CENSUS_SEARCH", min_delay_seconds=page_delay),
        RateLimiterConfig(
            "CENSUS_REPORTER",
            min_delay_seconds=page_delay,
            max_requests_per_minute=CENSUS_REPORTER_PER_MINUTE,
        ),
    ]
    return {config.name: config for config in configs}


class ProviderRateLimiter:
    """Request history and spacing for a single upstream."""

    def __init__(self, config: RateLimiterConfig):
        self.config = config
        self.last_request_time: Optional[float] = None
        self._recent: Deque[float] = deque()

    def _forget_before(self, cutoff: float) -> None:
        while self._recent and self._recent[0] <= cutoff:
            self._recent.popleft()

    def get_delay_until_ready(self) -> float:
        """Seconds until the next request is allowed, 0 when it can go now."""
        now = time.monotonic()
        gap_wait = 0.0
        if self.last_request_time is not None:
            gap_wait = self.last_request_time + self.config.min_delay_seconds - now

        window_wait = 0.0
        ceiling = self.config.max_requests_per_minute
        if ceiling is not None:
            self._forget_before(now - WINDOW_SECONDS)
            if len(self._recent) >= ceiling:
                window_wait = self._recent[0] + WINDOW_SECONDS - now

        return max(gap_wait, window_wait, 0.0)

    async def wait_until_ready(self) -> float:
        delay = self.get_delay_until_ready()
        if delay > 0:
            logger.debug(f"Spacing {self.config.name} request by {delay:.2f}s")
            await asyncio.sleep(delay)
        return delay

    def record_request(self) -> None:
        now = time.monotonic()
        self.last_request_time = now
        if self.config.max_requests_per_minute is not None:
            self._recent.append(now)


class GlobalRateLimiter:
    """Registry of per-upstream limiters, keyed by upper-cased provider name."""

    def __init__(self, configs: Optional[Dict[str, RateLimiterConfig]] = None):
        if configs is None:
            configs = configs_from_settings(get_settings())
        self._limiters: Dict[str, ProviderRateLimiter] = {
            name.upper(): ProviderRateLimiter(config) for name, config in configs.items()
        }

    def get_limiter(self, provider: str) -> ProviderRateLimiter:
        key = provider.upper()
        limiter = self._limiters.get(key)
        if limiter is None:
            # Unknown upstreams are tracked but never delayed
            limiter = self._limiters[key] = ProviderRateLimiter(RateLimiterConfig(key))
        return limiter


_global_rate_limiter: Optional[GlobalRateLimiter] = None


def get_global_rate_limiter() -> GlobalRateLimiter:
    global _global_rate_limiter
    if _global_rate_limiter is None:
        _global_rate_limiter = GlobalRateLimiter()
    return _global_rate_limiter


def reset_global_rate_limiter() -> None:
    """Drop the registry so the next request re-reads settings."""
    global _global_rate_limiter
    _global_rate_limiter = None


async def wait_for_provider(provider: str) -> float:
    """Sleep until ``provider`` may be called again; returns the applied delay."""
    return await get_global_rate_limiter().get_limiter(provider).wait_until_ready()


def record_provider_request(provider: str) -> None:
    get_global_rate_limiter().get_limiter(provider).record_request()
