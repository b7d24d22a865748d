"""In-memory cache provider using cachetools.TLRUCache.

Fast cache suitable for single-process deployments.  Can be swapped for
Redis or another backend via the ICacheProvider interface.

Expiry
------
Each entry carries its own TTL: values are stored wrapped in
:class:`_Entry` and the cache's time-to-use function returns
``now + entry.ttl``.  An expired entry is logically absent from the
moment its deadline passes (``TLRUCache`` checks on read); the memory is
reclaimed by :meth:`MemoryCacheProvider.sweep`, which the background
sweeper task calls periodically.  The clock is injectable so tests can
advance time without sleeping.

Mutation-aware invalidation
---------------------------
:data:`MUTATION_INVALIDATION_TABLE` maps every entity kind to the cache
key prefixes a write to it makes stale.  A message mutation, for example,
also invalidates conversation lists because their ``last_message_at``
changes.
"""

from __future__ import annotations

import asyncio
import threading
import time
from enum import Enum
from typing import Any, Awaitable, Callable, NamedTuple

import structlog
from cachetools import TLRUCache

from bookresolver.interfaces.cache_provider import ICacheProvider

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_TTL = 300.0  # 5 minutes
DEFAULT_MAX_SIZE = 1000
DEFAULT_SWEEP_INTERVAL = 600.0  # 10 minutes


class MutationOperation(str, Enum):
    """Kind of write reported to :meth:`MemoryCacheProvider.invalidate_on_mutation`."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


# Entity kind -> key prefixes made stale by any write to it.
MUTATION_INVALIDATION_TABLE: dict[str, tuple[str, ...]] = {
    "conversations": ("conversations:",),
    "messages": ("messages:", "conversations:"),
    "file_attachments": ("file_attachments:", "messages:"),
    "persona_memories": ("persona_memory:",),
    "user_profiles": ("user_profile:",),
    "books": ("books:", "catalog_embeddings:", "recommendations:"),
    "book_embeddings": ("catalog_embeddings:", "recommendations:"),
}


class _Entry(NamedTuple):
    value: Any
    ttl: float


def _time_to_use(_key: str, entry: _Entry, now: float) -> float:
    return now + entry.ttl


class MemoryCacheProvider(ICacheProvider):
    """In-memory TTL cache backed by ``cachetools.TLRUCache``.

    Parameters
    ----------
    max_size:
        Maximum number of entries before the least-recently-used entry
        is evicted.
    ttl:
        Default time-to-live in seconds for cache entries.
    timer:
        Monotonic clock returning seconds.  Injected by tests.
    invalidation_table:
        Entity kind -> prefixes mapping; defaults to
        :data:`MUTATION_INVALIDATION_TABLE`.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        ttl: float = DEFAULT_TTL,
        timer: Callable[[], float] = time.monotonic,
        invalidation_table: dict[str, tuple[str, ...]] | None = None,
    ) -> None:
        self._default_ttl = ttl
        self._cache: TLRUCache[str, _Entry] = TLRUCache(
            maxsize=max_size, ttu=_time_to_use, timer=timer
        )
        self._table = invalidation_table or MUTATION_INVALIDATION_TABLE
        # Keys registered via get_or_fetch(track_mutation=True).
        self._mutation_keys: set[str] = set()
        # Guards every cache access; never held across an await.
        self._lock = threading.Lock()
        self._sweeper: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # ICacheProvider implementation
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Any | None:
        """Retrieve the cached value for *key*, or ``None`` if missing/expired."""
        with self._lock:
            entry = self._cache.get(key)
        if entry is None:
            logger.debug("cache_miss", key=key)
            return None
        logger.debug("cache_hit", key=key)
        return entry.value

    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store *value* under *key* for *ttl* seconds (default TTL when ``None``)."""
        effective_ttl = self._default_ttl if ttl is None else ttl
        with self._lock:
            self._cache[key] = _Entry(value, effective_ttl)
        logger.debug("cache_set", key=key, ttl=effective_ttl)

    async def delete(self, key: str) -> None:
        """Remove *key* from the cache (no-op if absent)."""
        with self._lock:
            self._cache.pop(key, None)
            self._mutation_keys.discard(key)
        logger.debug("cache_delete", key=key)

    async def exists(self, key: str) -> bool:
        """Return ``True`` if *key* is present and not expired."""
        with self._lock:
            return key in self._cache

    async def get_or_fetch(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[Any]],
        ttl: float | None = None,
        track_mutation: bool = False,
    ) -> Any:
        """Return the cached value or fetch, cache and return a fresh one.

        The lock is released while *fetcher* runs, so two concurrent misses
        on the same key may both fetch; the later write wins.  Fetcher
        exceptions propagate and nothing is cached.
        """
        cached = await self.get(key)
        if cached is not None:
            return cached

        value = await fetcher()
        if value is not None:
            await self.set(key, value, ttl)
            if track_mutation:
                with self._lock:
                    self._mutation_keys.add(key)
        return value

    async def invalidate(self, pattern: str | None = None) -> int:
        """Drop keys starting with *pattern*; everything when *pattern* is falsy."""
        with self._lock:
            if not pattern:
                removed = len(self._cache)
                self._cache.clear()
                self._mutation_keys.clear()
            else:
                doomed = [k for k in list(self._cache.keys()) if k.startswith(pattern)]
                for key in doomed:
                    self._cache.pop(key, None)
                    self._mutation_keys.discard(key)
                removed = len(doomed)
        logger.debug("cache_invalidate", pattern=pattern, removed=removed)
        return removed

    async def invalidate_on_mutation(
        self,
        entity_kind: str,
        operation: MutationOperation | str = MutationOperation.UPDATE,
    ) -> int:
        """Drop every prefix registered for *entity_kind* in the mutation table."""
        if not isinstance(operation, MutationOperation):
            operation = MutationOperation(operation.strip().upper())
        prefixes = self._table.get(entity_kind)
        if not prefixes:
            logger.debug("cache_mutation_unmapped", entity_kind=entity_kind)
            return 0

        removed = 0
        for prefix in prefixes:
            removed += await self.invalidate(prefix)
        logger.info(
            "cache_invalidated_on_mutation",
            entity_kind=entity_kind,
            operation=operation.value,
            prefixes=list(prefixes),
            removed=removed,
        )
        return removed

    async def clear(self) -> None:
        """Remove every entry."""
        await self.invalidate(None)

    def stats(self) -> dict[str, Any]:
        """Return live size and keys, plus the expired entries evicted to take the snapshot.

        ``TLRUCache`` expires lazily on size queries, so counting expired
        entries and evicting them are the same step.
        """
        expired = self.sweep()
        with self._lock:
            live_keys = list(self._cache.keys())
            tracked = len(self._mutation_keys)
        return {
            "size": len(live_keys),
            "keys": live_keys,
            "expired": expired,
            "tracked_for_mutation": tracked,
        }

    # ------------------------------------------------------------------
    # Expiry sweeping
    # ------------------------------------------------------------------

    def sweep(self) -> int:
        """Evict expired entries now. Returns the number removed."""
        with self._lock:
            expired = self._cache.expire()
            for key, _entry in expired:
                self._mutation_keys.discard(key)
        if expired:
            logger.debug("cache_swept", removed=len(expired))
        return len(expired)

    def start_sweeper(self, interval: float = DEFAULT_SWEEP_INTERVAL) -> None:
        """Start the periodic sweep task on the running event loop (idempotent)."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever(interval))
        logger.info("cache_sweeper_started", interval=interval)

    async def stop_sweeper(self) -> None:
        """Cancel the sweep task and wait for it to finish."""
        task, self._sweeper = self._sweeper, None
        if task is None:
            return
        task.cancel()
        # return_exceptions absorbs the sweeper's own CancelledError only.
        await asyncio.gather(task, return_exceptions=True)
        logger.info("cache_sweeper_stopped")

    async def _sweep_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.sweep()
