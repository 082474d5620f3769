"""In-memory TTL store using cachetools.TTLCache.

Holds discovery sessions for single-process deployments.  Expired entries
are dropped lazily on access by ``TTLCache`` and eagerly by :meth:`sweep`.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

import structlog
from cachetools import TTLCache

from src.interfaces.cache_provider import ICacheProvider

logger = structlog.get_logger(logger_name=__name__)


class MemoryCacheProvider(ICacheProvider):
    """In-memory TTL cache backed by ``cachetools.TTLCache``.

    Parameters
    ----------
    max_size:
        Maximum number of entries before the least-recently-used entry
        is evicted.
    ttl:
        Time-to-live in seconds for every entry.
    timer:
        Clock used by the cache; injectable so tests can expire entries
        without sleeping.
    """

    def __init__(
        self,
        max_size: int = 1000,
        ttl: float = 24 * 60 * 60,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._cache: TTLCache[str, Any] = TTLCache(maxsize=max_size, ttl=ttl, timer=timer)

    async def get(self, key: str) -> Any | None:
        value = self._cache.get(key)
        logger.debug("cache_hit" if value is not None else "cache_miss", key=key)
        return value

    async def set(self, key: str, value: Any) -> None:
        self._cache[key] = value
        logger.debug("cache_set", key=key)

    async def delete(self, key: str) -> None:
        self._cache.pop(key, None)
        logger.debug("cache_delete", key=key)

    async def exists(self, key: str) -> bool:
        return key in self._cache

    async def sweep(self) -> int:
        evicted = len(self._cache.expire())
        if evicted:
            logger.info("cache_swept", evicted=evicted)
        return evicted

    def get_ttl_seconds(self) -> float:
        return self._ttl
