"""Shared concurrency primitives for the ingestion pipeline.

Two patterns are exposed:

1. **throttled_gather** -- a drop-in replacement for ``asyncio.gather``
   that wraps each awaitable in a semaphore acquire/release.  Used by the
   LLM enrichment strategy to fan out per-chunk calls under a limit.

2. **run_in_waves** -- static backpressure for batch processing: launch up
   to ``wave_size`` tasks, wait for the whole wave, then start the next.
   There is no dynamic scheduling; a slow task holds its wave open.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

import structlog

from src.utils.logging import get_logger

_T = TypeVar("_T")
_R = TypeVar("_R")

_logger: structlog.BoundLogger = get_logger(__name__)


async def throttled_gather(
    coros: Sequence[Awaitable[_T]],
    semaphore: asyncio.Semaphore | None = None,
    limit: int = 5,
    return_exceptions: bool = True,
) -> list[_T | BaseException]:
    """Run awaitables concurrently with at most ``limit`` in flight.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    semaphore:
        Optional shared semaphore.  When omitted a fresh one of size
        ``limit`` is created for this call.
    limit:
        Concurrency limit used when no semaphore is supplied.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than being raised.  Mirrors ``asyncio.gather`` semantics.

    Returns
    -------
    list
        Results in the same order as the input coroutines.
    """
    if semaphore is None:
        semaphore = asyncio.Semaphore(max(1, limit))

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    return await asyncio.gather(
        *(_wrapped(c) for c in coros), return_exceptions=return_exceptions
    )


async def run_in_waves(
    items: Sequence[_T],
    worker: Callable[[_T], Awaitable[_R]],
    wave_size: int,
) -> list[_R]:
    """Process ``items`` in sequential waves of ``wave_size`` concurrent tasks.

    Results keep input order.  ``worker`` is expected to handle its own
    failures; an exception escaping a worker propagates after its wave
    settles.
    """
    wave_size = max(1, wave_size)
    results: list[_R] = []
    for start in range(0, len(items), wave_size):
        wave = items[start : start + wave_size]
        _logger.debug(
            "wave_started",
            wave=start // wave_size,
            size=len(wave),
        )
        results.extend(await asyncio.gather(*(worker(item) for item in wave)))
    return results
