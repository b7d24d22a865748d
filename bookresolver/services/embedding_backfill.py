"""Embedding backfill job.

Finds active catalog books without an embedding for the configured model,
embeds their titles in batches and upserts the vectors.  A failed batch is
recorded and skipped; the run continues with the next one.  After every
stored batch the cache is told that ``book_embeddings`` changed, which
drops the cached embedding index and cached result sets.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

from bookresolver.interfaces.cache_provider import ICacheProvider
from bookresolver.interfaces.catalog_store import ICatalogStore
from bookresolver.models.catalog import CatalogItem, EmbeddingRecord
from bookresolver.models.recommendation import BackfillProgress, EmbeddingCoverage
from bookresolver.providers.cache.memory_cache import MutationOperation
from bookresolver.services.embedding_client import (
    DEFAULT_PRICE_PER_1K_TOKENS,
    EmbeddingClient,
    estimate_cost,
    prepare_embedding_text,
)
from bookresolver.utils.errors import BookResolverError
from bookresolver.utils.logging import get_logger

DEFAULT_BATCH_SIZE = 50
DEFAULT_SCAN_LIMIT = 1000
# Pause between batches, in seconds.
_BATCH_PAUSE = 0.1


class EmbeddingBackfillService:
    """Creates missing :class:`EmbeddingRecord` rows for the catalog."""

    def __init__(
        self,
        store: ICatalogStore,
        embedding_client: EmbeddingClient,
        cache: ICacheProvider | None = None,
        price_per_1k_tokens: float = DEFAULT_PRICE_PER_1K_TOKENS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._embedding = embedding_client
        self._cache = cache
        self._price = price_per_1k_tokens
        self._sleep = sleep
        self._logger = get_logger(__name__)

    @property
    def model_name(self) -> str:
        return self._embedding.model_name

    async def items_needing_embeddings(self, limit: int | None = DEFAULT_SCAN_LIMIT) -> list[CatalogItem]:
        """Active books without an embedding for the model, id ascending."""
        return await self._store.items_missing_embeddings(self.model_name, limit)

    async def run(self, batch_size: int = DEFAULT_BATCH_SIZE, limit: int | None = None) -> BackfillProgress:
        """Embed and store every missing item (at most *limit*)."""
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")

        started = time.perf_counter()
        items = await self.items_needing_embeddings(limit)
        total = len(items)
        if not total:
            self._logger.info("backfill_nothing_to_do", model=self.model_name)
            return BackfillProgress(total=0)

        batch_count = (total + batch_size - 1) // batch_size
        self._logger.info("backfill_start", model=self.model_name, total=total, batches=batch_count)

        processed = 0
        cost = 0.0
        errors: list[str] = []
        for number, offset in enumerate(range(0, total, batch_size), start=1):
            batch = items[offset : offset + batch_size]
            texts = [prepare_embedding_text(item.title, item.is_variant_spelling) for item in batch]
            try:
                vectors = await self._embedding.embed_batch(texts)
                await self._store.upsert_embeddings(
                    [
                        EmbeddingRecord(
                            item_id=item.id,
                            model_name=self.model_name,
                            vector=vector,
                            title=item.title,
                        )
                        for item, vector in zip(batch, vectors)
                    ]
                )
            except BookResolverError as exc:
                errors.append(f"batch {number}: {exc}")
                self._logger.error(
                    "backfill_batch_failed",
                    batch=number,
                    batches=batch_count,
                    items=len(batch),
                    error=str(exc),
                )
            else:
                processed += len(batch)
                cost += estimate_cost(texts, self._price)
                if self._cache is not None:
                    await self._cache.invalidate_on_mutation("book_embeddings", MutationOperation.INSERT)
                self._logger.info(
                    "backfill_batch_done",
                    batch=number,
                    batches=batch_count,
                    processed=processed,
                    total=total,
                )

            if offset + batch_size < total:
                await self._sleep(_BATCH_PAUSE)

        progress = BackfillProgress(
            processed=processed,
            total=total,
            errors=errors,
            estimated_cost=round(cost, 6),
            processing_time_ms=int((time.perf_counter() - started) * 1000),
        )
        self._logger.info(
            "backfill_complete",
            processed=processed,
            total=total,
            failed_batches=len(errors),
            estimated_cost=progress.estimated_cost,
        )
        return progress

    async def stats(self) -> EmbeddingCoverage:
        total = await self._store.count_items()
        embedded = await self._store.count_embeddings(self.model_name)
        coverage = (embedded / total) * 100 if total else 0.0
        return EmbeddingCoverage(
            model_name=self.model_name,
            total_items=total,
            embedded_items=embedded,
            coverage_percent=round(coverage, 2),
        )
