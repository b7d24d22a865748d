"""Cosine similarity and ranking over catalog embeddings.

Two paths produce similarity scores for a query vector:

* **Native** -- the catalog store's own vector search (the pgvector RPC
  on Supabase), which pre-filters by threshold and pre-sorts.  Results
  are tagged ``vector``.
* **Client-side** -- every embedding of the model is loaded once (and
  cached under ``catalog_embeddings:<model>:...``), stacked into a
  normalized numpy matrix, and scored with one matrix-vector product.
  Results are tagged ``vector_fallback_client``.

Both paths end in :func:`rank_scored`, so they share threshold semantics
(``score >= threshold``), clamping to [0, 1], exclusion handling and the
``(score desc, id asc)`` ordering.  Only the source of the raw scores
differs.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Iterable, Sequence

import numpy as np

from bookresolver.interfaces.cache_provider import ICacheProvider
from bookresolver.interfaces.catalog_store import ICatalogStore
from bookresolver.models.catalog import EmbeddingRecord
from bookresolver.models.recommendation import (
    MatchMethod,
    RecommendationResult,
    ScoredItem,
    SearchOptions,
)
from bookresolver.utils.concurrency import call_with_timeout
from bookresolver.utils.errors import (
    CatalogStoreError,
    DimensionMismatchError,
    TransientUpstreamError,
)
from bookresolver.utils.logging import get_logger

EMBEDDINGS_CACHE_PREFIX = "catalog_embeddings:"


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between *a* and *b*.

    Raises :class:`DimensionMismatchError` for vectors of different length;
    returns 0.0 when either vector has zero magnitude.
    """
    if len(a) != len(b):
        raise DimensionMismatchError(
            message=f"Cannot compare vectors of length {len(a)} and {len(b)}",
        )
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def rank_scored(
    scored: Iterable[ScoredItem],
    threshold: float,
    method: MatchMethod,
    limit: int | None = None,
    exclude_ids: Iterable[int] = (),
) -> list[RecommendationResult]:
    """Filter raw hits by *threshold* and order them ``(score desc, id asc)``.

    Scores are clamped into [0, 1]; the highest score wins when an id
    appears more than once.
    """
    excluded = set(exclude_ids)
    best: dict[int, ScoredItem] = {}
    for hit in scored:
        if hit.item_id in excluded or hit.score < threshold:
            continue
        current = best.get(hit.item_id)
        if current is None or hit.score > current.score:
            best[hit.item_id] = hit

    ordered = sorted(best.values(), key=lambda h: (-h.score, h.item_id))
    if limit is not None:
        ordered = ordered[:limit]
    return [
        RecommendationResult(
            item_id=hit.item_id,
            title=hit.title,
            score=min(1.0, max(0.0, hit.score)),
            match_method=method,
            threshold_used=threshold,
        )
        for hit in ordered
    ]


class EmbeddingIndex:
    """Row-normalized embedding matrix for fast client-side scoring.

    Rows whose length differs from *dimension* are skipped.  Without an
    explicit *dimension* the most common row length wins, so one corrupt
    row cannot evict the rest of the catalog.
    """

    def __init__(self, records: Sequence[EmbeddingRecord], dimension: int | None = None) -> None:
        self._logger = get_logger(__name__)
        if dimension is None:
            lengths = Counter(len(r.vector) for r in records)
            dimension = lengths.most_common(1)[0][0] if lengths else 0
        self._dimension = dimension
        kept = [r for r in records if len(r.vector) == self._dimension]
        self._skipped = len(records) - len(kept)
        if self._skipped:
            self._logger.warning(
                "embedding_rows_skipped",
                reason="vector length differs from model dimension",
                skipped=self._skipped,
                dimension=self._dimension,
            )
        self._ids = [r.item_id for r in kept]
        self._titles = [r.title or "" for r in kept]
        matrix = np.asarray([r.vector for r in kept], dtype=np.float64).reshape(len(kept), self._dimension)
        norms = np.linalg.norm(matrix, axis=1)
        # Zero rows score 0.0 instead of dividing by zero.
        norms[norms == 0.0] = np.inf
        self._matrix = matrix / norms[:, None]

    def __len__(self) -> int:
        return len(self._ids)

    @property
    def dimension(self) -> int:
        return self._dimension

    def score(self, query_vector: Sequence[float]) -> list[ScoredItem]:
        """Cosine similarity of *query_vector* against every row."""
        if not self._ids:
            if self._skipped:
                raise DimensionMismatchError(
                    message=f"None of {self._skipped} catalog embeddings has length {self._dimension}",
                )
            return []
        if len(query_vector) != self._dimension:
            raise DimensionMismatchError(
                message=f"Query vector has length {len(query_vector)}, catalog embeddings have {self._dimension}",
            )
        query = np.asarray(query_vector, dtype=np.float64)
        query_norm = float(np.linalg.norm(query))
        if query_norm == 0.0:
            scores = np.zeros(len(self._ids))
        else:
            scores = self._matrix @ (query / query_norm)
        return [
            ScoredItem(item_id=item_id, title=title, score=float(score))
            for item_id, title, score in zip(self._ids, self._titles, scores)
        ]


def rank_by_query(
    query_vector: Sequence[float],
    candidates: Sequence[EmbeddingRecord],
    threshold: float,
    limit: int | None = None,
) -> list[RecommendationResult]:
    """Client-side ranking of *candidates* against *query_vector*."""
    return rank_scored(
        EmbeddingIndex(candidates).score(query_vector),
        threshold,
        MatchMethod.VECTOR_FALLBACK_CLIENT,
        limit,
    )


class SimilarityEngine:
    """Runs vector search for the resolver, native first, client-side on failure.

    Parameters
    ----------
    store:
        Catalog store; its ``vector_search`` is tried first when it
        reports support.
    cache:
        Holds the client-side :class:`EmbeddingIndex` per model.
    model_name:
        Embedding model whose vectors are compared.
    timeout:
        Per-call timeout for the store calls.
    index_ttl:
        TTL of the cached index; ``None`` uses the cache default.
    dimension:
        Vector length of *model_name*; rows of any other length are left
        out of the client-side index.
    """

    def __init__(
        self,
        store: ICatalogStore,
        cache: ICacheProvider,
        model_name: str,
        timeout: float | None = 20.0,
        index_ttl: float | None = None,
        dimension: int | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._model_name = model_name
        self._timeout = timeout
        self._index_ttl = index_ttl
        self._dimension = dimension
        self._loading: dict[str, asyncio.Task[EmbeddingIndex]] = {}
        self._logger = get_logger(__name__)

    @property
    def model_name(self) -> str:
        return self._model_name

    async def search(
        self,
        query_vector: list[float],
        threshold: float,
        limit: int,
        options: SearchOptions | None = None,
    ) -> list[RecommendationResult]:
        """Return catalog items with similarity >= *threshold*, best first.

        Raises :class:`CatalogStoreError` only when the client-side path
        cannot load embeddings either.
        """
        options = options or SearchOptions()
        # The RPC always drops deleted books, so include_deleted forces the client path.
        if self._store.supports_vector_search() and not options.include_deleted:
            try:
                scored = await call_with_timeout(
                    self._store.vector_search(
                        query_vector,
                        self._model_name,
                        threshold,
                        limit + len(options.exclude_ids),
                        options.include_deleted,
                    ),
                    self._timeout,
                    operation="native vector search",
                    provider_name=self._store.get_provider_name(),
                )
            except (CatalogStoreError, TransientUpstreamError, DimensionMismatchError) as exc:
                self._logger.warning(
                    "native_vector_search_failed",
                    provider=self._store.get_provider_name(),
                    error=str(exc),
                )
            else:
                return rank_scored(scored, threshold, MatchMethod.VECTOR, limit, options.exclude_ids)

        index = await self.load_index(options.include_deleted)
        return rank_scored(
            index.score(query_vector),
            threshold,
            MatchMethod.VECTOR_FALLBACK_CLIENT,
            limit,
            options.exclude_ids,
        )

    async def load_index(self, include_deleted: bool = False) -> EmbeddingIndex:
        """Return the cached embedding index, loading it from the store on a miss.

        Concurrent misses for the same key share one store read.
        """
        scope = "all" if include_deleted else "live"
        key = f"{EMBEDDINGS_CACHE_PREFIX}{self._model_name}:{scope}"
        cached = await self._cache.get(key)
        if cached is not None:
            return cached

        task = self._loading.get(key)
        if task is None:
            task = asyncio.ensure_future(self._load_and_cache(key, include_deleted))
            self._loading[key] = task
            task.add_done_callback(lambda _t: self._loading.pop(key, None))
        return await asyncio.shield(task)

    async def _load_and_cache(self, key: str, include_deleted: bool) -> EmbeddingIndex:
        records = await call_with_timeout(
            self._store.fetch_all_embeddings(self._model_name, include_deleted),
            self._timeout,
            operation="embedding bulk read",
            provider_name=self._store.get_provider_name(),
        )
        index = EmbeddingIndex(records, self._dimension)
        await self._cache.set(key, index, self._index_ttl)
        self._logger.info(
            "embedding_index_loaded",
            model=self._model_name,
            rows=len(index),
            include_deleted=include_deleted,
        )
        return index
