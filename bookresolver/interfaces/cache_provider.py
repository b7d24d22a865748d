"""Abstract base class for cache service providers.

Defines the contract for the TTL key-value cache used by the resolver
(result sets, the catalog embedding set) and by the surrounding CRUD layer
for catalog reads.  Besides plain get/set, the contract includes
prefix-based invalidation and mutation-driven invalidation through an
explicit entity-kind table.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable


class ICacheProvider(ABC):
    """Contract for key-value cache services.

    All operations are async to allow for network-backed stores without
    blocking the event loop.  Implementations must be safe under concurrent
    use and must never hold a lock across an ``await``.
    """

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the value under *key*, or ``None`` if absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store *value* under *key*.

        Parameters
        ----------
        key:
            The cache key.
        value:
            The value to store.
        ttl:
            Time-to-live in seconds.  ``None`` uses the provider's default TTL.
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove the entry stored under *key*; no-op if absent."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Return ``True`` if *key* is present in the cache and not expired."""

    @abstractmethod
    async def get_or_fetch(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[Any]],
        ttl: float | None = None,
    ) -> Any:
        """Return the cached value or await *fetcher*, cache and return its result.

        ``None`` results are not cached.
        """

    @abstractmethod
    async def invalidate(self, pattern: str | None = None) -> int:
        """Drop every key starting with *pattern* (everything when ``None``).

        Returns the number of entries removed.
        """

    @abstractmethod
    async def invalidate_on_mutation(self, entity_kind: str, operation: str) -> int:
        """Drop the key prefixes registered for *entity_kind*.

        Returns the number of entries removed.  An unknown entity kind is
        a no-op.
        """

    @abstractmethod
    async def clear(self) -> None:
        """Remove every entry."""

    @abstractmethod
    def stats(self) -> dict[str, Any]:
        """Return ``{"size", "keys", "expired"}`` for diagnostics."""
