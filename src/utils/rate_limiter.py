"""Adaptive token-bucket rate limiter shared by all outbound AI calls.

Capacity equals the configured requests-per-minute.  Tokens replenish
continuously at ``current_rpm / 60000`` per millisecond.  In adaptive mode
the replenishment rate drifts with observed feedback:

    10 consecutive successes  ->  rate x 1.1   (capped at 150% of base)
    one rate-limit error      ->  rate x 0.7   (floored at 20% of base)

Every mutation happens under one ``asyncio.Lock`` so batch workers may call
:meth:`acquire` and the ``report_*`` methods concurrently.
"""

from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog
from pydantic import BaseModel, ConfigDict

from src.utils.errors import RateLimitError
from src.utils.logging import get_logger

_T = TypeVar("_T")

_SUCCESS_STREAK_TO_INCREASE = 10
_INCREASE_FACTOR = 1.1
_DECREASE_FACTOR = 0.7
_MIN_FRACTION = 0.2
_MAX_FRACTION = 1.5


def _scaled(rpm: int, factor: float) -> int:
    # Round away float noise (e.g. 1.1 x 60) before flooring.
    return math.floor(round(rpm * factor, 6))


class RateLimiterStatus(BaseModel):
    """Snapshot exposed for observability."""

    model_config = ConfigDict(frozen=True)

    current_rpm: int
    available_tokens: int


class RateLimiter:
    """Token bucket whose refill rate adapts to provider feedback.

    Parameters
    ----------
    requests_per_minute:
        Base capacity and initial refill rate.
    adaptive:
        When ``False`` the ``report_*`` methods are no-ops.
    clock:
        Monotonic clock in seconds; injectable for tests.
    sleep:
        Async sleep function; injectable for tests.
    """

    def __init__(
        self,
        requests_per_minute: int = 60,
        adaptive: bool = True,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if requests_per_minute < 1:
            msg = f"requests_per_minute must be >= 1, got {requests_per_minute}"
            raise ValueError(msg)
        self._base_rpm = requests_per_minute
        self._min_rpm = max(1, math.floor(requests_per_minute * _MIN_FRACTION))
        self._max_rpm = math.floor(requests_per_minute * _MAX_FRACTION)
        self._current_rpm = requests_per_minute
        self._adaptive = adaptive
        self._tokens = float(requests_per_minute)
        self._clock = clock
        self._sleep = sleep
        self._last_refill = clock()
        self._success_streak = 0
        self._lock = asyncio.Lock()
        self._logger: structlog.BoundLogger = get_logger(__name__)

    @property
    def min_rpm(self) -> int:
        return self._min_rpm

    @property
    def max_rpm(self) -> int:
        return self._max_rpm

    # ------------------------------------------------------------------
    # Token bucket
    # ------------------------------------------------------------------

    async def acquire(self) -> None:
        """Wait until a token is available, then consume it.

        The lock is released while sleeping so ``report_*`` calls from other
        workers are never blocked behind a waiter.
        """
        while True:
            async with self._lock:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    return
                wait_ms = math.ceil((1 - self._tokens) / self._current_rpm * 60_000)

            self._logger.debug("rate_limiter_waiting", wait_ms=wait_ms)
            await self._sleep(wait_ms / 1000)

    def _refill(self) -> None:
        now = self._clock()
        elapsed_ms = (now - self._last_refill) * 1000
        if elapsed_ms > 0:
            self._tokens = min(
                float(self._current_rpm),
                self._tokens + elapsed_ms / 60_000 * self._current_rpm,
            )
        self._last_refill = now

    # ------------------------------------------------------------------
    # Adaptive feedback
    # ------------------------------------------------------------------

    async def report_success(self) -> None:
        if not self._adaptive:
            return
        async with self._lock:
            self._success_streak += 1
            if self._success_streak < _SUCCESS_STREAK_TO_INCREASE:
                return
            self._success_streak = 0
            previous = self._current_rpm
            self._current_rpm = min(
                self._max_rpm, _scaled(self._current_rpm, _INCREASE_FACTOR)
            )
        if self._current_rpm != previous:
            self._logger.info(
                "rate_limit_increased", previous_rpm=previous, current_rpm=self._current_rpm
            )

    async def report_rate_limit_error(self) -> None:
        if not self._adaptive:
            return
        async with self._lock:
            self._success_streak = 0
            previous = self._current_rpm
            self._current_rpm = max(
                self._min_rpm, _scaled(self._current_rpm, _DECREASE_FACTOR)
            )
            self._tokens = min(self._tokens, float(self._current_rpm))
        self._logger.warning(
            "rate_limit_decreased", previous_rpm=previous, current_rpm=self._current_rpm
        )

    def get_status(self) -> RateLimiterStatus:
        return RateLimiterStatus(
            current_rpm=self._current_rpm,
            available_tokens=math.floor(self._tokens),
        )

    # ------------------------------------------------------------------
    # Convenience wrapper
    # ------------------------------------------------------------------

    async def throttle(self, operation: Callable[[], Awaitable[_T]]) -> _T:
        """Acquire a token, run ``operation`` and feed the outcome back."""
        await self.acquire()
        try:
            result = await operation()
        except RateLimitError:
            await self.report_rate_limit_error()
            raise
        await self.report_success()
        return result
