"""Cache providers.

MemoryCacheProvider holds discovery sessions between ``discover`` and
``approve_strategy``.  It is process-local; a multi-worker deployment would
swap in a shared store implementing ICacheProvider.
"""

from src.providers.cache.memory_cache import MemoryCacheProvider

__all__ = ["MemoryCacheProvider"]
