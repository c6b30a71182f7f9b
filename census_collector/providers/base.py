"""Shared plumbing for the data.census.gov and Census Reporter clients."""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any

import httpx

from ..config import Settings, get_settings
from ..exceptions import ProviderRateLimitError, UpstreamFetchError
from ..services.http_pool import get_http_client
from ..services.rate_limiter import record_provider_request, wait_for_provider

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (httpx.ConnectError, httpx.TimeoutException)


class BaseProvider(ABC):
    """Upstream client with request spacing and retries.

    Throttling (429), server errors (5xx) and connect/timeout failures are
    retried with exponential backoff. Any other status, or retries running
    out, surfaces as ``UpstreamFetchError`` so the caller can record it
    against the identifier being fetched.
    """

    MAX_RETRIES = 3
    RETRY_BACKOFF_FACTOR = 1.0

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
        backoff_factor: Optional[float] = None,
    ):
        self.settings = settings or get_settings()
        self.timeout = self.settings.request_timeout
        self._client = client
        if backoff_factor is not None:
            self.RETRY_BACKOFF_FACTOR = backoff_factor

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Key for log lines and the rate limiter registry."""

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client or get_http_client()

    @property
    def default_headers(self) -> Dict[str, str]:
        return {"Accept": "application/json", "User-Agent": self.settings.user_agent}

    def _backoff_seconds(self, attempt: int, floor: float = 0.0) -> float:
        return max(self.RETRY_BACKOFF_FACTOR * (2 ** attempt), floor)

    def _status_error(self, response: httpx.Response, attempts: int) -> UpstreamFetchError:
        status = response.status_code
        if status == 429:
            retry_after = response.headers.get("Retry-After", "")
            return ProviderRateLimitError(
                f"Still rate limited after {attempts} attempts",
                provider=self.provider_name,
                retry_after=int(retry_after) if retry_after.isdigit() else None,
            )
        if status >= 500:
            return UpstreamFetchError(
                f"Server error {status} after {attempts} attempts",
                provider=self.provider_name,
                status_code=status,
            )
        reason = response.reason_phrase or "Client error"
        return UpstreamFetchError(
            f"Request failed with status {status}: {reason}",
            provider=self.provider_name,
            status_code=status,
        )

    async def _get_with_retry(self, url: str, **kwargs) -> httpx.Response:
        """GET ``url`` and return the 2xx response.

        Raises:
            ProviderRateLimitError: Throttled on every attempt
            UpstreamFetchError: Any other failure
        """
        headers = {**self.default_headers, **kwargs.pop("headers", {})}

        for attempt in range(self.MAX_RETRIES):
            final = attempt == self.MAX_RETRIES - 1
            await wait_for_provider(self.provider_name)
            record_provider_request(self.provider_name)
            try:
                response = await self.client.get(url, headers=headers, timeout=self.timeout, **kwargs)
            except RETRYABLE_ERRORS as e:
                if final:
                    raise UpstreamFetchError(
                        f"Connection failed after {self.MAX_RETRIES} attempts: {e}",
                        provider=self.provider_name,
                    ) from e
                logger.warning(f"{self.provider_name} connection problem ({e!r}), attempt {attempt + 1}")
                await asyncio.sleep(self._backoff_seconds(attempt))
                continue
            except httpx.HTTPError as e:
                raise UpstreamFetchError(f"Request failed: {e}", provider=self.provider_name) from e

            if response.is_success:
                return response

            status = response.status_code
            if final or not (status == 429 or status >= 500):
                raise self._status_error(response, attempt + 1)

            retry_after = response.headers.get("Retry-After", "")
            floor = float(retry_after) if status == 429 and retry_after.isdigit() else 0.0
            logger.warning(f"{self.provider_name} answered {status} for {url}, retrying")
            await asyncio.sleep(self._backoff_seconds(attempt, floor))

        raise UpstreamFetchError(f"No attempt made for {url}", provider=self.provider_name)

    def _parse_json_safe(self, response: httpx.Response) -> Any:
        """Decode the JSON body, raising ``UpstreamFetchError`` when it is not JSON."""
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamFetchError(
                f"Malformed JSON from {self.provider_name}: {e}",
                provider=self.provider_name,
                status_code=response.status_code,
            ) from e
