"""Error hierarchy for the model service gateway."""
from __future__ import annotations

from typing import Any


class GatewayError(Exception):
    """Base error for all pilot_llm errors."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        provider: str = "",
        status_code: int | None = None,
        error_code: str | None = None,
        retry_after: float | None = None,
        raw: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.error_code = error_code
        self.retry_after = retry_after
        self.raw = raw
        self.cause = cause


# ---------------------------------------------------------------------------
# Transient errors (retryable)
# ---------------------------------------------------------------------------


class TransientServiceError(GatewayError):
    """The service is temporarily unable to answer; the same call may succeed later."""

    retryable = True


class RateLimitedError(TransientServiceError):
    """Rate limit exceeded."""


class OverloadedError(TransientServiceError):
    """The provider reported overload or unavailability."""


class NetworkError(TransientServiceError):
    """A network-level error occurred."""


class RequestTimeoutError(TransientServiceError):
    """A request timed out."""


# ---------------------------------------------------------------------------
# Fatal errors
# ---------------------------------------------------------------------------


class AuthError(GatewayError):
    """Authentication failed (e.g. invalid or missing API key)."""


class BadRequestError(GatewayError):
    """The request was malformed or rejected by the provider."""


class EmptyResponseError(GatewayError):
    """The provider answered without any text content."""


class ConfigurationError(GatewayError):
    """Invalid gateway configuration."""


# ---------------------------------------------------------------------------
# Helper
# ---------------------------------------------------------------------------

_OVERLOAD_MARKERS = ("overloaded", "unavailable", "try again later", "capacity")


def error_from_status_code(
    status_code: int,
    message: str,
    *,
    provider: str = "",
    error_code: str | None = None,
    raw: dict[str, Any] | None = None,
    retry_after: float | None = None,
) -> GatewayError:
    """Map an HTTP status code to the appropriate error type."""
    common: dict[str, Any] = dict(
        provider=provider,
        status_code=status_code,
        error_code=error_code,
        raw=raw,
        retry_after=retry_after,
    )

    if status_code in (401, 403):
        return AuthError(message, **common)
    if status_code == 408:
        return RequestTimeoutError(message, **common)
    if status_code == 429:
        return RateLimitedError(message, **common)
    if status_code in (500, 502, 503, 504, 529):
        return OverloadedError(message, **common)
    if 400 <= status_code < 500:
        # Some providers answer overload with a 4xx and an explanatory body
        lowered = message.lower()
        if any(marker in lowered for marker in _OVERLOAD_MARKERS):
            return OverloadedError(message, **common)
        return BadRequestError(message, **common)
    if 500 <= status_code <= 599:
        return OverloadedError(message, **common)
    return BadRequestError(message, **common)
