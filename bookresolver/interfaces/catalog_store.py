"""Abstract base class for the book catalog store.

The resolver reads books and their precomputed embeddings exclusively
through this contract.  Implementations: SQLite (local/offline), Supabase
PostgREST (production, with the ``search_similar_books`` pgvector RPC) and an
in-memory store for tests and demos.

Deletion semantics
------------------
Every read method excludes soft-deleted books unless the caller passes
``include_deleted=True``.  Adapters decide deletion only through
:attr:`CatalogItem.is_deleted`, which treats a ``NULL`` and an empty
``deleted_at`` identically as "not deleted".
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable

from bookresolver.models.catalog import CatalogItem, EmbeddingRecord
from bookresolver.models.recommendation import ScoredItem


# Concrete implementations:
#   SQLiteCatalogStore    — aiosqlite, no native vector search
#   SupabaseCatalogStore  — PostgREST over httpx, native search_similar_books RPC
#   InMemoryCatalogStore  — dict-backed, optional simulated native search
# Located in: bookresolver/providers/catalog/
class ICatalogStore(ABC):
    """Contract for catalog reads and embedding writes."""

    # -- Reads used by the resolver --------------------------------------

    @abstractmethod
    async def search_by_keyword(
        self,
        term: str,
        limit: int,
        include_deleted: bool = False,
        exclude_ids: Iterable[int] = (),
    ) -> list[CatalogItem]:
        """Case-insensitive substring match on ``title``.

        Returns at most *limit* items in no particular order; ranking is
        the caller's job.

        Raises
        ------
        bookresolver.utils.errors.CatalogStoreError
            If the store cannot be queried.
        """

    @abstractmethod
    async def fetch_all_embeddings(
        self,
        model_name: str,
        include_deleted: bool = False,
    ) -> list[EmbeddingRecord]:
        """Return every embedding stored for *model_name*, with titles.

        Read-only and safe to call repeatedly.
        """

    @abstractmethod
    async def get_by_id(self, item_id: int) -> CatalogItem | None:
        """Point lookup; ``None`` when the id does not exist.

        Deleted items are returned (with ``is_deleted=True``) so callers
        can tell "missing" from "deleted".
        """

    @abstractmethod
    async def popular_items(
        self,
        limit: int,
        include_deleted: bool = False,
        exclude_ids: Iterable[int] = (),
    ) -> list[CatalogItem]:
        """Deterministic default list: lowest ids first."""

    @abstractmethod
    def supports_vector_search(self) -> bool:
        """Return ``True`` if :meth:`vector_search` is backed by a native operation."""

    @abstractmethod
    async def vector_search(
        self,
        query_vector: list[float],
        model_name: str,
        threshold: float,
        limit: int,
        include_deleted: bool = False,
    ) -> list[ScoredItem]:
        """Native similarity search: pre-filtered at *threshold*, pre-sorted.

        Raises
        ------
        bookresolver.utils.errors.VectorSearchUnavailableError
            If the store has no native vector search.
        bookresolver.utils.errors.CatalogStoreError
            If the native operation fails.
        """

    # -- Backfill / statistics --------------------------------------------

    @abstractmethod
    async def items_missing_embeddings(
        self,
        model_name: str,
        limit: int | None = None,
    ) -> list[CatalogItem]:
        """Live items without an embedding for *model_name*, id ascending."""

    @abstractmethod
    async def upsert_embeddings(self, records: list[EmbeddingRecord]) -> int:
        """Insert or replace records (unique on item id + model). Returns the count."""

    @abstractmethod
    async def count_items(self, include_deleted: bool = False) -> int:
        """Number of catalog items."""

    @abstractmethod
    async def count_embeddings(self, model_name: str) -> int:
        """Number of embeddings stored for *model_name*."""

    # -- Metadata ---------------------------------------------------------

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier, e.g. ``"sqlite_catalog"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the store is configured."""
