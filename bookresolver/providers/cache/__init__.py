"""Cache providers.

MemoryCacheProvider is a TLRU cache with per-entry TTLs, prefix
invalidation and the entity-kind mutation table.  It is not shared across
processes; for multi-worker deployments, swap in a Redis adapter
implementing ICacheProvider without changing any business logic.
"""

from bookresolver.providers.cache.memory_cache import (
    MUTATION_INVALIDATION_TABLE,
    MemoryCacheProvider,
    MutationOperation,
)

__all__ = ["MUTATION_INVALIDATION_TABLE", "MemoryCacheProvider", "MutationOperation"]
