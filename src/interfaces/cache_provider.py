"""Abstract base class for TTL key-value stores.

Discovery sessions live in one of these between ``discover`` and
``approve_strategy``.  The store is created once by the composition root
and passed to :class:`~src.services.discovery_service.DiscoveryService`
explicitly; nothing in the codebase keeps module-level session state.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


# Concrete implementation: MemoryCacheProvider (src/providers/cache/)
class ICacheProvider(ABC):
    """Contract for a key-value store whose entries expire."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the value under *key*, or ``None`` if missing or expired."""

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store *value* under *key* with the store's time-to-live."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove *key* (no-op if absent)."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Return ``True`` if *key* is present and not expired."""

    @abstractmethod
    async def sweep(self) -> int:
        """Evict every expired entry now; return how many were removed."""

    @abstractmethod
    def get_ttl_seconds(self) -> float:
        """Return the time-to-live applied to new entries."""
