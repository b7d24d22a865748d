"""Catalog store adapters.

Three implementations of ICatalogStore:
    - SQLiteCatalogStore   — local aiosqlite database; client-side similarity only
    - SupabaseCatalogStore — PostgREST over httpx with the pgvector RPC
    - InMemoryCatalogStore — dicts; optional simulated native vector search

main.py picks one from ``settings.catalog_backend``.
"""

from bookresolver.providers.catalog.memory_catalog_store import InMemoryCatalogStore
from bookresolver.providers.catalog.sqlite_catalog_store import SQLiteCatalogStore
from bookresolver.providers.catalog.supabase_catalog_store import SupabaseCatalogStore

__all__ = ["InMemoryCatalogStore", "SQLiteCatalogStore", "SupabaseCatalogStore"]
