"""Dict-backed catalog store for tests, demos and the ``memory`` backend.

With ``native_vector_search=True`` the store answers
:meth:`InMemoryCatalogStore.vector_search` itself (exact cosine over its
own embeddings, filtered and sorted like a server-side RPC), which lets
the resolver's native path run without a database.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

from bookresolver.interfaces.catalog_store import ICatalogStore
from bookresolver.models.catalog import CatalogItem, EmbeddingRecord
from bookresolver.models.recommendation import ScoredItem
from bookresolver.services.similarity_engine import cosine_similarity
from bookresolver.utils.errors import VectorSearchUnavailableError

_PROVIDER_NAME = "memory_catalog"


class InMemoryCatalogStore(ICatalogStore):
    """Catalog held in plain dicts keyed by item id."""

    def __init__(
        self,
        items: Iterable[CatalogItem] = (),
        embeddings: Iterable[EmbeddingRecord] = (),
        native_vector_search: bool = False,
    ) -> None:
        self._items: dict[int, CatalogItem] = {}
        # (item_id, model_name) -> vector
        self._embeddings: dict[tuple[int, str], list[float]] = {}
        self._native = native_vector_search
        self.add_items(items)
        for record in embeddings:
            self._embeddings[(record.item_id, record.model_name)] = list(record.vector)

    def add_items(self, items: Iterable[CatalogItem]) -> None:
        for item in items:
            self._items[item.id] = item

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def search_by_keyword(
        self,
        term: str,
        limit: int,
        include_deleted: bool = False,
        exclude_ids: Iterable[int] = (),
    ) -> list[CatalogItem]:
        needle = term.strip().casefold()
        if not needle or limit <= 0:
            return []
        excluded = set(exclude_ids)
        matches = [
            item
            for item in self._visible(include_deleted)
            if item.id not in excluded and needle in item.title.casefold()
        ]
        await asyncio.sleep(0)
        return matches[:limit]

    async def fetch_all_embeddings(
        self,
        model_name: str,
        include_deleted: bool = False,
    ) -> list[EmbeddingRecord]:
        records: list[EmbeddingRecord] = []
        for (item_id, model), vector in sorted(self._embeddings.items()):
            item = self._items.get(item_id)
            if model != model_name or item is None:
                continue
            if item.is_deleted and not include_deleted:
                continue
            records.append(
                EmbeddingRecord(
                    item_id=item_id,
                    model_name=model,
                    vector=list(vector),
                    title=item.title,
                    is_deleted=item.is_deleted,
                )
            )
        await asyncio.sleep(0)
        return records

    async def get_by_id(self, item_id: int) -> CatalogItem | None:
        return self._items.get(item_id)

    async def popular_items(
        self,
        limit: int,
        include_deleted: bool = False,
        exclude_ids: Iterable[int] = (),
    ) -> list[CatalogItem]:
        if limit <= 0:
            return []
        excluded = set(exclude_ids)
        return [item for item in self._visible(include_deleted) if item.id not in excluded][:limit]

    def supports_vector_search(self) -> bool:
        return self._native

    async def vector_search(
        self,
        query_vector: list[float],
        model_name: str,
        threshold: float,
        limit: int,
        include_deleted: bool = False,
    ) -> list[ScoredItem]:
        if not self._native:
            raise VectorSearchUnavailableError(
                message="In-memory store was built without native vector search",
                provider_name=_PROVIDER_NAME,
            )
        hits: list[ScoredItem] = []
        for record in await self.fetch_all_embeddings(model_name, include_deleted):
            score = cosine_similarity(query_vector, record.vector)
            if score >= threshold:
                hits.append(ScoredItem(item_id=record.item_id, title=record.title or "", score=score))
        hits.sort(key=lambda h: (-h.score, h.item_id))
        return hits[:limit]

    # ------------------------------------------------------------------
    # Backfill / statistics
    # ------------------------------------------------------------------

    async def items_missing_embeddings(
        self,
        model_name: str,
        limit: int | None = None,
    ) -> list[CatalogItem]:
        missing = [
            item
            for item in self._visible(include_deleted=False)
            if (item.id, model_name) not in self._embeddings
        ]
        return missing if limit is None else missing[:limit]

    async def upsert_embeddings(self, records: list[EmbeddingRecord]) -> int:
        for record in records:
            self._embeddings[(record.item_id, record.model_name)] = list(record.vector)
        return len(records)

    async def count_items(self, include_deleted: bool = False) -> int:
        return len(self._visible(include_deleted))

    async def count_embeddings(self, model_name: str) -> int:
        return sum(1 for (_, model) in self._embeddings if model == model_name)

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def get_provider_name(self) -> str:
        return _PROVIDER_NAME

    def is_available(self) -> bool:
        return True

    def _visible(self, include_deleted: bool) -> list[CatalogItem]:
        return [
            self._items[item_id]
            for item_id in sorted(self._items)
            if include_deleted or not self._items[item_id].is_deleted
        ]
