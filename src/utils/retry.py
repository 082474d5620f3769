"""Retry executor with exponential backoff and error classification.

Written as a plain loop with an explicit attempt counter.  Attempt ``n``
(1-based) that fails with a retryable error sleeps

    retry_delay_ms * backoff_multiplier ** (n - 1)

capped at ``max_delay_ms`` and jittered by +/-10%, unless the error is a
:class:`RateLimitError` carrying ``retry_after_ms``.  The optional
``on_retry(attempt, error, delay_ms)`` callback runs *before* the sleep so
callers can record retry counts and emit progress.
"""

from __future__ import annotations

import asyncio
import inspect
import random
import re
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, Field

from src.utils.errors import FolioError, RateLimitError
from src.utils.logging import get_logger

_T = TypeVar("_T")

_logger: structlog.BoundLogger = get_logger(__name__)

# Message fragments that mark transient failures when an error does not
# carry an explicit ``retryable`` flag.
_RETRYABLE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\b429\b"),
    re.compile(r"rate.?limit", re.IGNORECASE),
    re.compile(r"too many requests", re.IGNORECASE),
    re.compile(r"timeout|timed out|ETIMEDOUT", re.IGNORECASE),
    re.compile(r"ECONNRESET|connection reset|connection aborted", re.IGNORECASE),
    re.compile(r"\b(?:500|502|503|504)\b"),
    re.compile(r"service unavailable|bad gateway|overloaded", re.IGNORECASE),
)

RetryCallback = Callable[[int, BaseException, int], Any]


class RetryOptions(BaseModel):
    """Backoff parameters for :func:`with_retry`."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=3, ge=0)
    retry_delay_ms: int = Field(default=1000, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    max_delay_ms: int = Field(default=30_000, ge=0)
    jitter: float = Field(default=0.1, ge=0.0, le=1.0)


def is_retryable(error: BaseException) -> bool:
    """Classify ``error`` as transient (worth retrying) or terminal."""
    if isinstance(error, RateLimitError):
        return True
    if isinstance(error, FolioError) and error.retryable is not None:
        return error.retryable
    if isinstance(error, (asyncio.TimeoutError, ConnectionResetError)):
        return True
    text = f"{type(error).__name__}: {error}"
    return any(pattern.search(text) for pattern in _RETRYABLE_PATTERNS)


def compute_delay_ms(
    attempt: int,
    options: RetryOptions,
    error: BaseException | None = None,
    rand: Callable[[], float] = random.random,
) -> int:
    """Return the sleep (ms) after failed attempt number ``attempt``."""
    if isinstance(error, RateLimitError) and error.retry_after_ms:
        return error.retry_after_ms
    delay = options.retry_delay_ms * options.backoff_multiplier ** (attempt - 1)
    delay = min(delay, options.max_delay_ms)
    if options.jitter:
        delay *= 1 + options.jitter * (2 * rand() - 1)
    return max(0, round(delay))


async def with_retry(
    operation: Callable[[], Awaitable[_T]],
    options: RetryOptions,
    on_retry: RetryCallback | None = None,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> _T:
    """Run ``operation`` until it succeeds or retries are exhausted.

    Parameters
    ----------
    operation:
        Zero-argument coroutine factory; called once per attempt.
    options:
        Backoff configuration.
    on_retry:
        Optional sync or async callback ``(attempt, error, delay_ms)``.
    sleep:
        Injectable async sleep (seconds).

    Raises
    ------
    BaseException
        The first non-retryable error, or the last error once
        ``max_retries + 1`` attempts have failed.
    """
    max_attempts = options.max_retries + 1
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as exc:
            if not is_retryable(exc):
                _logger.debug("retry_not_retryable", attempt=attempt, error=str(exc))
                raise
            if attempt >= max_attempts:
                _logger.warning("retry_exhausted", attempts=attempt, error=str(exc))
                raise

            delay_ms = compute_delay_ms(attempt, options, exc)
            _logger.info(
                "retry_scheduled",
                attempt=attempt,
                max_attempts=max_attempts,
                delay_ms=delay_ms,
                error=str(exc),
            )
            if on_retry is not None:
                outcome = on_retry(attempt, exc, delay_ms)
                if inspect.isawaitable(outcome):
                    await outcome
            await sleep(delay_ms / 1000)
