"""In-memory view cache keyed by tuples, with prefix invalidation."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

CacheKey = Tuple[Hashable, ...]


def normalize_key(key: CacheKey) -> CacheKey:
    """Lowercase string parts so addresses match regardless of checksum case."""
    return tuple(part.lower() if isinstance(part, str) else part for part in key)


class ViewCache:
    """
    Last-value-wins cache of computed views.

    Keys are tuples such as ``("bridge", 56, "0xabc...", "withdraws")``.
    Values are replaced whole. ``invalidate(prefix)`` drops every key that
    starts with ``prefix``. ``get_or_load`` shares one in-flight load among
    concurrent readers of the same key.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._store: Dict[CacheKey, Tuple[Any, Optional[float]]] = {}  # key -> (value, expires_at)
        self._inflight: Dict[CacheKey, asyncio.Future] = {}
        self._generation: Dict[CacheKey, int] = {}

    def lookup(self, key: CacheKey) -> Tuple[bool, Any]:
        """``(True, value)`` for a live entry, including a stored None."""
        key = normalize_key(key)
        entry = self._store.get(key)
        if entry is None:
            return False, None
        value, expires_at = entry
        if expires_at is not None and self._clock() > expires_at:
            del self._store[key]
            return False, None
        return True, value

    def get(self, key: CacheKey) -> Optional[Any]:
        return self.lookup(key)[1]

    def set(self, key: CacheKey, value: Any, ttl: Optional[float] = None) -> None:
        key = normalize_key(key)
        expires_at = self._clock() + ttl if ttl else None
        self._store[key] = (value, expires_at)

    def delete(self, key: CacheKey) -> bool:
        key = normalize_key(key)
        return self._store.pop(key, None) is not None

    def invalidate(self, prefix: CacheKey) -> int:
        """Remove every entry whose key starts with ``prefix``; returns the count."""
        prefix = normalize_key(prefix)
        n = len(prefix)
        doomed = [k for k in self._store if k[:n] == prefix]
        for k in doomed:
            del self._store[k]
        # Loads already in flight for these keys must not repopulate them
        for k in list(self._inflight):
            if k[:n] == prefix:
                self._generation[k] = self._generation.get(k, 0) + 1
        if doomed:
            logger.debug(f"Invalidated {len(doomed)} cache entries under {prefix}")
        return len(doomed)

    def keys(self):
        return list(self._store)

    async def get_or_load(
        self,
        key: CacheKey,
        loader: Callable[[], Awaitable[T]],
        ttl: Optional[float] = None,
    ) -> T:
        """
        Cached value for ``key``, loading it when missing or expired.

        Concurrent callers for the same key await a single load. A None
        result is cached like any other value. A load that raises is not
        cached and the error reaches every waiter.
        """
        key = normalize_key(key)
        found, cached = self.lookup(key)
        if found:
            return cached

        inflight = self._inflight.get(key)
        if inflight is not None:
            return await asyncio.shield(inflight)

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        generation = self._generation.get(key, 0)
        try:
            value = await loader()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unobserved failure does not warn
            future.exception()
            raise
        else:
            if self._generation.get(key, 0) == generation:
                self.set(key, value, ttl)
            future.set_result(value)
            return value
        finally:
            self._inflight.pop(key, None)
