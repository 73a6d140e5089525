"""Retry policy for calls to the model service.

Failures are classified as retryable (transient service trouble) or fatal.
Retryable failures are attempted again after a fixed delay, up to a bound.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Generic, TypeVar

from pilot_llm.errors import AuthError, BadRequestError, TransientServiceError
from stylepilot.errors import DocumentApplyError, MalformedResponseError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRANSIENT_WORDING = (
    "overloaded",
    "rate limit",
    "too many requests",
    "resource exhausted",
    "429",
    "503",
    "529",
    "temporarily unavailable",
    "try again later",
)


class Classification(StrEnum):
    RETRYABLE = "retryable"
    FATAL = "fatal"


@dataclass(frozen=True)
class RetryResult(Generic[T]):
    value: T
    attempts: int

    @property
    def retry_count(self) -> int:
        return self.attempts - 1


@dataclass(frozen=True)
class RetryNotice:
    """Passed to ``on_retry`` before each wait."""

    attempt: int  # the attempt that just failed, 1-indexed
    max_attempts: int
    delay: float
    error: BaseException


def classify_error(exc: BaseException) -> Classification:
    """Decide whether *exc* is worth another attempt."""
    if isinstance(exc, (TransientServiceError, TimeoutError)):
        return Classification.RETRYABLE
    if isinstance(exc, (AuthError, BadRequestError, MalformedResponseError, DocumentApplyError)):
        return Classification.FATAL
    message = str(exc).lower()
    if any(marker in message for marker in _TRANSIENT_WORDING):
        return Classification.RETRYABLE
    return Classification.FATAL


async def with_retry(
    operation: Callable[[int], Awaitable[T]],
    classify: Callable[[BaseException], Classification] = classify_error,
    *,
    max_attempts: int = 3,
    delay: float = 2.0,
    on_retry: Callable[[RetryNotice], None] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RetryResult[T]:
    """Run *operation* until it succeeds, fails fatally, or attempts run out.

    *operation* receives the 1-indexed attempt number. On a fatal error or
    when attempts are exhausted the original exception is re-raised with a
    note recording the attempt count and classification.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 1
    while True:
        try:
            value = await operation(attempt)
        except Exception as exc:
            kind = classify(exc)
            if kind is Classification.FATAL or attempt >= max_attempts:
                exc.add_note(f"retry: gave up after {attempt} attempt(s) ({kind})")
                raise
            logger.info(
                "Retryable failure on attempt %d/%d: %s; retrying in %.1fs",
                attempt,
                max_attempts,
                exc,
                delay,
            )
            if on_retry is not None:
                on_retry(RetryNotice(attempt, max_attempts, delay, exc))
            await sleep(delay)
            attempt += 1
            continue
        return RetryResult(value, attempt)


@dataclass(frozen=True)
class RetryPolicy:
    """Bundles retry parameters; holds no state between invocations."""

    max_attempts: int = 3
    delay: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay < 0:
            raise ValueError("delay must not be negative")

    async def run(
        self,
        operation: Callable[[int], Awaitable[T]],
        classify: Callable[[BaseException], Classification] = classify_error,
        *,
        on_retry: Callable[[RetryNotice], None] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> RetryResult[T]:
        return await with_retry(
            operation,
            classify,
            max_attempts=self.max_attempts,
            delay=self.delay,
            on_retry=on_retry,
            sleep=sleep,
        )
