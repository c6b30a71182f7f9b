"""Errors raised by census_collector.

    CensusCollectorError
    ├── ConfigurationError
    ├── ValidationError            bad run input, ends the run
    ├── DataProviderError
    │   ├── UpstreamFetchError
    │   │   └── ProviderRateLimitError
    │   └── DataNotAvailableError
    └── InvalidRecordInputError    mapper called without an id, ends the run

Provider errors never leave the scheduler: they become error records for the
identifier that raised them.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


def _merge(details: Optional[Dict[str, Any]], **extra: Any) -> Dict[str, Any]:
    merged = dict(details or {})
    merged.update({key: value for key, value in extra.items() if value is not None})
    return merged


class CensusCollectorError(Exception):
    """Base class. ``code`` defaults to the class name."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or type(self).__name__
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class ConfigurationError(CensusCollectorError):
    """Settings that cannot be acted on, such as an unknown search backend."""


class ValidationError(CensusCollectorError):
    """Run input rejected before any request is made.

    ``field`` names the offending input key (``searchQuery``, ``tableId``,
    ``maxItems``...) and is copied into ``details``.
    """

    def __init__(self, message: str, *, field: Optional[str] = None, **kwargs: Any):
        self.field = field
        kwargs["details"] = _merge(kwargs.get("details"), field=field)
        super().__init__(message, **kwargs)


class DataProviderError(CensusCollectorError):
    """An upstream call for one identifier or search page went wrong."""

    def __init__(self, message: str, *, provider: Optional[str] = None, **kwargs: Any):
        self.provider = provider
        kwargs["details"] = _merge(kwargs.get("details"), provider=provider)
        super().__init__(message, **kwargs)


class UpstreamFetchError(DataProviderError):
    """Non-success status, transport failure, or an undecodable body.

    ``status_code`` is None when no HTTP response was received.
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None, **kwargs: Any):
        self.status_code = status_code
        kwargs["details"] = _merge(kwargs.get("details"), status_code=status_code)
        super().__init__(message, **kwargs)


class ProviderRateLimitError(UpstreamFetchError):
    """Still throttled (429) once retries are exhausted."""

    def __init__(self, message: str, *, retry_after: Optional[int] = None, **kwargs: Any):
        self.retry_after = retry_after
        kwargs["details"] = _merge(kwargs.get("details"), retry_after=retry_after)
        super().__init__(message, status_code=429, **kwargs)


class DataNotAvailableError(DataProviderError):
    """The response decoded but held nothing usable."""


class InvalidRecordInputError(CensusCollectorError):
    """A merged table reached the mapper without an id. Always a caller bug."""


def get_error_response(error: Exception) -> Dict[str, Any]:
    """Terminal error payload for any exception."""
    if isinstance(error, CensusCollectorError):
        return error.to_dict()
    return {"error": "InternalError", "message": str(error), "details": {}}
