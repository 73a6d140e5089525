"""Tests for pilot_llm.errors."""
from __future__ import annotations

import pytest

from pilot_llm.errors import (
    AuthError,
    BadRequestError,
    GatewayError,
    OverloadedError,
    RateLimitedError,
    RequestTimeoutError,
    TransientServiceError,
    error_from_status_code,
)


class TestHierarchy:
    def test_transient_errors_are_retryable(self) -> None:
        for cls in (RateLimitedError, OverloadedError, RequestTimeoutError):
            assert issubclass(cls, TransientServiceError)
            assert cls("x").retryable is True

    def test_fatal_errors_are_not_retryable(self) -> None:
        assert AuthError("x").retryable is False
        assert BadRequestError("x").retryable is False

    def test_metadata_is_keyword_only(self) -> None:
        err = GatewayError("boom", provider="gemini", status_code=500, raw={"a": 1})
        assert str(err) == "boom"
        assert err.provider == "gemini"
        assert err.status_code == 500
        assert err.raw == {"a": 1}
        assert err.cause is None


class TestErrorFromStatusCode:
    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            (401, AuthError),
            (403, AuthError),
            (408, RequestTimeoutError),
            (429, RateLimitedError),
            (500, OverloadedError),
            (503, OverloadedError),
            (529, OverloadedError),
            (400, BadRequestError),
            (404, BadRequestError),
            (507, OverloadedError),
        ],
    )
    def test_mapping(self, status: int, expected: type) -> None:
        err = error_from_status_code(status, "message", provider="openai")
        assert type(err) is expected
        assert err.status_code == status
        assert err.provider == "openai"

    def test_overload_wording_in_4xx_body(self) -> None:
        err = error_from_status_code(400, "The model is overloaded. Try again later.")
        assert isinstance(err, OverloadedError)

    def test_retry_after_is_kept(self) -> None:
        err = error_from_status_code(429, "slow down", retry_after=3.0)
        assert err.retry_after == 3.0
