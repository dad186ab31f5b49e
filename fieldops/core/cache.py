"""
In-process TTL cache used in front of read paths.

Services keep their entries under a resource prefix (``claims:``,
``competitor:``, ``reports:``, ``geocode:`` ...) so a write can drop every
cached list of that resource with one ``delete_prefix`` call.

TTLs are expressed in milliseconds, matching the ``CACHE_TTL`` setting.

Usage:
    cache = get_cache()
    cached = await cache.get("competitor:analytics:1:None")
    if cached is None:
        cached = await compute()
        await cache.set("competitor:analytics:1:None", cached)
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from fieldops.core.config import get_settings

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class TTLCache:
    """
    Dictionary-backed cache with per-entry expiry.

    Expired entries are evicted lazily when read. The interface is async so
    call sites do not change if the store moves out of process.
    """

    def __init__(self, default_ttl_ms: int):
        self.default_ttl_ms = default_ttl_ms
        self._store: Dict[str, CacheEntry] = {}

    def _now(self) -> float:
        return time.monotonic()

    async def get(self, key: str) -> Optional[Any]:
        entry = self._store.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._now():
            del self._store[key]
            return None
        return entry.value

    async def set(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> None:
        ttl = self.default_ttl_ms if ttl_ms is None else ttl_ms
        self._store[key] = CacheEntry(value=value, expires_at=self._now() + ttl / 1000.0)

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)

    async def delete_prefix(self, prefix: str) -> int:
        """Remove every entry whose key starts with ``prefix``; returns the count."""
        return await self.delete_where(lambda key: key.startswith(prefix), prefix)

    async def delete_where(self, matches: Callable[[str], bool], label: str = "predicate") -> int:
        """Remove every entry whose key satisfies ``matches``; returns the count."""
        keys = [key for key in self._store if matches(key)]
        for key in keys:
            del self._store[key]
        if keys:
            logger.debug(f"Evicted {len(keys)} cache entries matching {label}")
        return len(keys)

    async def clear(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)


_cache: Optional[TTLCache] = None


def get_cache() -> TTLCache:
    """Return the process-wide cache, creating it from settings on first use."""
    global _cache

    if _cache is None:
        _cache = TTLCache(default_ttl_ms=get_settings().cache_ttl)

    return _cache


def reset_cache() -> None:
    """Drop the process-wide cache (used by tests)."""
    global _cache
    _cache = None
