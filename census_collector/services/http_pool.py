"""Process-wide ``httpx.AsyncClient`` shared by every upstream.

A batch issues a metadata and a data request per identifier at the same
time, so the connection limits are derived from ``BATCH_SIZE``. Callers that
bring their own client (tests, embedding applications) bypass the pool.
"""
from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..config import Settings, get_settings

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 10.0
KEEPALIVE_EXPIRY_SECONDS = 5.0


def build_client(settings: Settings) -> httpx.AsyncClient:
    """Create a client sized for one batch of concurrent table fetches."""
    in_flight = 2 * settings.batch_size
    limits = httpx.Limits(
        max_connections=max(in_flight, 10),
        max_keepalive_connections=settings.batch_size,
        keepalive_expiry=KEEPALIVE_EXPIRY_SECONDS,
    )
    return httpx.AsyncClient(
        limits=limits,
        timeout=httpx.Timeout(settings.request_timeout, connect=CONNECT_TIMEOUT_SECONDS),
        http2=True,
        follow_redirects=True,
    )


class HTTPClientPool:
    """Lazily created singleton holder for the shared client."""

    _instance: Optional[HTTPClientPool] = None
    _client: Optional[httpx.AsyncClient] = None

    def __new__(cls) -> HTTPClientPool:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @classmethod
    def get_client(cls) -> httpx.AsyncClient:
        if cls._client is None or cls._client.is_closed:
            settings = get_settings()
            cls._client = build_client(settings)
            logger.info(
                f"Opened shared HTTP client (batch_size={settings.batch_size}, "
                f"timeout={settings.request_timeout}s)"
            )
        return cls._client

    @classmethod
    async def close(cls) -> None:
        client, cls._client = cls._client, None
        if client is not None:
            await client.aclose()
            logger.info("Closed shared HTTP client")


def get_http_client() -> httpx.AsyncClient:
    return HTTPClientPool().get_client()


async def close_http_pool() -> None:
    """Release pooled connections once a run is over."""
    await HTTPClientPool.close()
