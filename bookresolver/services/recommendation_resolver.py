"""Recommendation resolver: the orchestrator behind ``resolve``.

Given a free-text request ("kouzelnická škola", "a sad book about the
sea", "Tolkien") the resolver returns a ranked, deduplicated list of
catalog books.

Search strategy
---------------
1. **Cache** -- the key is a sha256 of the normalized query, the limit
   and the search options.  A hit returns immediately with no outbound
   calls.
2. **AI-regeneration loop** -- up to ``max_ai_attempts`` times the query
   expander produces candidate suggestions (at a rising temperature); the
   raw query is appended as the last candidate.  Each candidate is
   embedded once per attempt, concurrently and bounded by
   ``max_concurrency``.
3. **Threshold ladder** -- for each threshold, highest first, every
   candidate is searched:

   * embedded candidates go through the similarity engine (native vector
     search, client-side cosine when that is unavailable) and are tagged
     ``vector`` / ``vector_fallback_client``;
   * candidates whose embedding failed, and every candidate when vector
     search is off for the request, use keyword search and are tagged
     ``text_fallback``; their score is ``raw * discount * threshold`` so
     it stays below any vector match of the same tier;
   * a resolver built without an embedding client searches by keyword
     only and tags matches ``text``.

   The first tier with any match wins.  When several candidates match,
   earlier candidates get a small rank bonus (at most ``max_rank_bonus``).
4. **Popularity** -- when every attempt and tier came back empty, the
   store's default list is returned with a neutral score.

Only a failure of the popularity tier itself, a bad limit or threshold,
or an elapsed ``timeout`` reaches the caller as an exception.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import time
from dataclasses import dataclass

from bookresolver.config.resolver_config import ResolverConfig
from bookresolver.interfaces.cache_provider import ICacheProvider
from bookresolver.interfaces.catalog_store import ICatalogStore
from bookresolver.models.catalog import CatalogItem
from bookresolver.models.recommendation import (
    MatchMethod,
    RecommendationResult,
    ResolverStats,
    SearchOptions,
)
from bookresolver.services.embedding_client import EmbeddingClient
from bookresolver.services.query_expander import QueryExpander
from bookresolver.services.similarity_engine import EMBEDDINGS_CACHE_PREFIX, SimilarityEngine
from bookresolver.utils.concurrency import call_with_timeout, throttled_gather
from bookresolver.utils.errors import (
    BookResolverError,
    CatalogStoreError,
    DimensionMismatchError,
    NotFoundError,
    RecommendationUnavailableError,
    ResolutionCancelledError,
    TransientUpstreamError,
    ValidationError,
)
from bookresolver.utils.logging import bind_request_context, clear_request_context, get_logger
from bookresolver.utils.text_normalizer import keyword_relevance, keyword_terms, normalize_query

RECOMMENDATIONS_CACHE_PREFIX = "recommendations:"

# Keyword hits fetched per term, as a multiple of the requested limit.
_KEYWORD_FETCH_FACTOR = 3


@dataclass
class _Candidate:
    """One suggestion within one AI attempt."""

    text: str
    rank: int
    vector: list[float] | None = None
    # (item_id, title, raw keyword relevance); filled on first keyword search.
    keyword_hits: list[tuple[int, str, float]] | None = None


@dataclass(frozen=True)
class _Match:
    item_id: int
    title: str
    score: float
    method: MatchMethod
    # Highest score this match may reach after the rank bonus.
    ceiling: float = 1.0


class RecommendationResolver:
    """Resolves free-text requests into ranked catalog recommendations.

    Parameters
    ----------
    store:
        Catalog store for keyword search, popularity and lookups.
    cache:
        Result cache (and the similarity engine's embedding index).
    expander:
        LLM query expander.
    embedding_client:
        ``None`` puts the resolver in text-only mode.
    similarity_engine:
        Built from *store* and *cache* when omitted.
    config:
        Ladder, limits and scoring constants.
    """

    def __init__(
        self,
        store: ICatalogStore,
        cache: ICacheProvider,
        expander: QueryExpander,
        embedding_client: EmbeddingClient | None = None,
        similarity_engine: SimilarityEngine | None = None,
        config: ResolverConfig | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._expander = expander
        self._embedding = embedding_client
        self._config = config or ResolverConfig()
        if similarity_engine is None and embedding_client is not None:
            similarity_engine = SimilarityEngine(
                store,
                cache,
                self._config.embedding_model,
                timeout=self._config.call_timeout,
                dimension=embedding_client.dimension or None,
            )
        self._similarity = similarity_engine
        self._logger = get_logger(__name__)

    @property
    def text_only(self) -> bool:
        return self._embedding is None or self._similarity is None

    @property
    def config(self) -> ResolverConfig:
        return self._config

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def resolve(
        self,
        query: str,
        limit: int | None = None,
        options: SearchOptions | None = None,
        timeout: float | None = None,
    ) -> list[RecommendationResult]:
        """Return up to *limit* recommendations for *query*, best first.

        Parameters
        ----------
        query:
            Free-text request; empty input yields the popularity list.
        limit:
            Maximum results; ``None`` uses ``default_limit``, values above
            ``max_limit`` are clamped.
        options:
            Deleted-item handling, exclusions, a fixed threshold, vector
            search on/off.
        timeout:
            Deadline for the whole call in seconds.

        Raises
        ------
        ValidationError
            If *limit* < 1 or the threshold lies outside [0, 1].
        ResolutionCancelledError
            If *timeout* elapsed first.
        RecommendationUnavailableError
            If even the popularity tier failed.
        """
        options = options or SearchOptions()
        limit = self._validate_limit(limit)
        ladder = self._ladder_for(options)

        bind_request_context()
        try:
            if timeout is None:
                return await self._resolve(query, limit, options, ladder)
            try:
                return await asyncio.wait_for(self._resolve(query, limit, options, ladder), timeout)
            except asyncio.TimeoutError as exc:
                self._logger.warning("resolve_timed_out", timeout=timeout)
                raise ResolutionCancelledError(
                    message=f"Recommendation request exceeded {timeout}s",
                ) from exc
        finally:
            clear_request_context()

    async def find_similar_to_item(
        self,
        item_id: int,
        limit: int | None = None,
        options: SearchOptions | None = None,
    ) -> list[RecommendationResult]:
        """Recommend books similar to catalog item *item_id*, excluding the item itself.

        Raises :class:`NotFoundError` when the item does not exist.
        """
        item = await self._store.get_by_id(item_id)
        if item is None:
            raise NotFoundError(
                message=f"Book {item_id} not found",
                provider_name=self._store.get_provider_name(),
            )
        options = options or SearchOptions()
        options = options.model_copy(update={"exclude_ids": options.exclude_ids | {item_id}})
        return await self.resolve(item.title, limit, options)

    async def get_item(self, item_id: int) -> CatalogItem | None:
        return await self._store.get_by_id(item_id)

    async def stats(self) -> ResolverStats:
        cache_stats = self._cache.stats()
        return ResolverStats(
            model_name=self._config.embedding_model,
            total_embeddings=await self._store.count_embeddings(self._config.embedding_model),
            cache_size=cache_stats.get("size", 0),
            cache_expired=cache_stats.get("expired", 0),
            text_only=self.text_only,
        )

    async def clear_cache(self) -> int:
        """Drop cached result sets and the embedding index; returns entries removed."""
        removed = await self._cache.invalidate(RECOMMENDATIONS_CACHE_PREFIX)
        removed += await self._cache.invalidate(EMBEDDINGS_CACHE_PREFIX)
        self._logger.info("resolver_cache_cleared", removed=removed)
        return removed

    @staticmethod
    def cache_key(normalized_query: str, limit: int, options: SearchOptions) -> str:
        payload = {
            "query": normalized_query,
            "limit": limit,
            "include_deleted": options.include_deleted,
            "exclude_ids": sorted(options.exclude_ids),
            "similarity_threshold": options.similarity_threshold,
            "use_vector_search": options.use_vector_search,
        }
        digest = hashlib.sha256(json.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest()
        return f"{RECOMMENDATIONS_CACHE_PREFIX}{digest}"

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_limit(self, limit: int | None) -> int:
        if limit is None:
            return self._config.default_limit
        if limit < 1:
            raise ValidationError(message=f"limit must be at least 1, got {limit}")
        if limit > self._config.max_limit:
            self._logger.info("limit_clamped", requested=limit, max_limit=self._config.max_limit)
            return self._config.max_limit
        return limit

    def _ladder_for(self, options: SearchOptions) -> tuple[float, ...]:
        threshold = options.similarity_threshold
        if threshold is None:
            return self._config.threshold_ladder
        if not 0.0 <= threshold <= 1.0:
            raise ValidationError(message=f"similarity_threshold must be within [0, 1], got {threshold}")
        return (threshold,)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def _resolve(
        self,
        query: str,
        limit: int,
        options: SearchOptions,
        ladder: tuple[float, ...],
    ) -> list[RecommendationResult]:
        started = time.perf_counter()
        normalized = normalize_query(query)
        key = self.cache_key(normalized, limit, options)

        cached = await self._cache.get(key)
        if cached is not None:
            self._logger.info("cache_hit", query=normalized, results=len(cached))
            return list(cached)

        self._logger.info(
            "resolve_start",
            query=normalized,
            limit=limit,
            ladder=list(ladder),
            text_only=self.text_only,
        )
        results = await self._search(normalized, limit, options, ladder) if normalized else []
        if not results:
            results = await self._popularity(limit, options)

        await self._cache.set(key, list(results), self._config.cache_ttl)
        self._logger.info(
            "resolve_complete",
            query=normalized,
            results=len(results),
            methods=sorted({r.match_method.value for r in results}),
            duration_ms=int((time.perf_counter() - started) * 1000),
        )
        return results

    async def _search(
        self,
        query: str,
        limit: int,
        options: SearchOptions,
        ladder: tuple[float, ...],
    ) -> list[RecommendationResult]:
        semaphore = asyncio.Semaphore(self._config.max_concurrency)
        vector_mode = not self.text_only and options.use_vector_search
        previous: list[str] | None = None

        for attempt in range(self._config.max_ai_attempts):
            suggestions = await self._expander.expand(query, attempt)
            texts = self._candidate_texts(suggestions, query)
            if texts == previous:
                self._logger.info("ai_attempt_skipped", attempt=attempt, reason="same suggestions as before")
                continue
            previous = texts

            candidates = [_Candidate(text=t, rank=i) for i, t in enumerate(texts)]
            if vector_mode:
                await self._embed_candidates(candidates, semaphore)

            for threshold in ladder:
                per_candidate = await throttled_gather(
                    [self._match_candidate(c, threshold, limit, options) for c in candidates],
                    semaphore,
                )
                merged = self._merge(candidates, per_candidate, threshold)
                if merged:
                    self._logger.info(
                        "threshold_tier_matched",
                        attempt=attempt,
                        threshold=threshold,
                        matches=len(merged),
                    )
                    return merged[:limit]
                self._logger.debug("threshold_tier_empty", attempt=attempt, threshold=threshold)

            self._logger.info("ai_attempt_empty", attempt=attempt, candidates=len(candidates))

        return []

    @staticmethod
    def _candidate_texts(suggestions: list[str], query: str) -> list[str]:
        texts: list[str] = []
        seen: set[str] = set()
        for text in [*suggestions, query]:
            key = normalize_query(text)
            if key and key not in seen:
                seen.add(key)
                texts.append(text.strip())
        return texts

    async def _embed_candidates(self, candidates: list[_Candidate], semaphore: asyncio.Semaphore) -> None:
        outcomes = await throttled_gather(
            [self._embedding.embed(c.text) for c in candidates],
            semaphore,
        )
        for candidate, outcome in zip(candidates, outcomes):
            if isinstance(outcome, BookResolverError):
                self._logger.warning(
                    "embedding_failed_using_keywords",
                    suggestion=candidate.text,
                    error=str(outcome),
                )
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                candidate.vector = outcome

    async def _match_candidate(
        self,
        candidate: _Candidate,
        threshold: float,
        limit: int,
        options: SearchOptions,
    ) -> list[_Match]:
        if candidate.vector is not None:
            try:
                hits = await self._similarity.search(candidate.vector, threshold, limit, options)
            except (CatalogStoreError, TransientUpstreamError, DimensionMismatchError) as exc:
                self._logger.warning(
                    "vector_search_failed_using_keywords",
                    suggestion=candidate.text,
                    error=str(exc),
                )
                candidate.vector = None
            else:
                return [_Match(h.item_id, h.title, h.score, h.match_method) for h in hits]

        method = MatchMethod.TEXT if self.text_only else MatchMethod.TEXT_FALLBACK
        # Fallback scores stay below the lowest vector score this tier accepts.
        ceiling = 1.0 if method is MatchMethod.TEXT else self._config.fallback_discount * threshold

        matches: list[_Match] = []
        for item_id, title, raw in await self._keyword_hits(candidate, limit, options):
            if raw < threshold:
                continue
            score = min(1.0, raw) if method is MatchMethod.TEXT else raw * ceiling
            matches.append(_Match(item_id, title, score, method, ceiling))
        return matches

    async def _keyword_hits(
        self,
        candidate: _Candidate,
        limit: int,
        options: SearchOptions,
    ) -> list[tuple[int, str, float]]:
        if candidate.keyword_hits is not None:
            return candidate.keyword_hits

        terms = keyword_terms(candidate.text)
        found: dict[int, CatalogItem] = {}
        try:
            # Full phrase first; single words only when the phrase finds nothing.
            for index, term in enumerate(terms):
                if index > 0 and found:
                    break
                items = await call_with_timeout(
                    self._store.search_by_keyword(
                        term,
                        limit * _KEYWORD_FETCH_FACTOR,
                        options.include_deleted,
                        options.exclude_ids,
                    ),
                    self._config.call_timeout,
                    operation="keyword search",
                    provider_name=self._store.get_provider_name(),
                )
                for item in items:
                    if item.id in options.exclude_ids or (item.is_deleted and not options.include_deleted):
                        continue
                    found.setdefault(item.id, item)
        except (CatalogStoreError, TransientUpstreamError) as exc:
            self._logger.warning("keyword_search_failed", suggestion=candidate.text, error=str(exc))

        candidate.keyword_hits = [
            (item.id, item.title, keyword_relevance(candidate.text, item.title))
            for item in found.values()
        ]
        return candidate.keyword_hits

    def _merge(
        self,
        candidates: list[_Candidate],
        per_candidate: list[list[_Match] | BaseException],
        threshold: float,
    ) -> list[RecommendationResult]:
        for outcome in per_candidate:
            if isinstance(outcome, BaseException):
                raise outcome

        contributing = sum(1 for matches in per_candidate if matches)
        total = len(candidates)
        best: dict[int, tuple[float, _Match]] = {}
        for candidate, matches in zip(candidates, per_candidate):
            bonus = 0.0
            if contributing > 1:
                bonus = self._config.max_rank_bonus * (total - candidate.rank) / total
            for match in matches:
                score = max(0.0, min(match.ceiling, 1.0, match.score + bonus))
                current = best.get(match.item_id)
                if current is None or score > current[0]:
                    best[match.item_id] = (score, match)

        ordered = sorted(best.values(), key=lambda pair: (-pair[0], pair[1].item_id))
        return [
            RecommendationResult(
                item_id=match.item_id,
                title=match.title,
                score=score,
                match_method=match.method,
                threshold_used=threshold,
            )
            for score, match in ordered
        ]

    async def _popularity(self, limit: int, options: SearchOptions) -> list[RecommendationResult]:
        try:
            items = await call_with_timeout(
                self._store.popular_items(limit, options.include_deleted, options.exclude_ids),
                self._config.call_timeout,
                operation="popular items",
                provider_name=self._store.get_provider_name(),
            )
        except (CatalogStoreError, TransientUpstreamError) as exc:
            self._logger.error("popularity_fallback_failed", error=str(exc))
            raise RecommendationUnavailableError(
                message=f"Every search tier failed; last error: {exc}",
                provider_name=self._store.get_provider_name(),
            ) from exc

        self._logger.info("popularity_fallback", results=len(items))
        return [
            RecommendationResult(
                item_id=item.id,
                title=item.title,
                score=self._config.popularity_score,
                match_method=MatchMethod.POPULARITY,
                threshold_used=None,
            )
            for item in items[:limit]
            if item.id not in options.exclude_ids
        ]
