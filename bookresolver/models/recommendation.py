"""Recommendation models for bookresolver.

Defines Pydantic v2 models for the resolver's request options, ranked
results and the statistics reported by the resolver and the embedding
backfill job.  All models use frozen config.

Scores from different match methods share one [0, 1] scale.  Each method
caps its own maximum so that degraded tiers never outrank a genuine vector
match from the same call:

    vector / vector_fallback_client   cosine similarity >= threshold
    text_fallback                     < fallback_discount * threshold
    text                              < threshold (text-only mode)
    popularity                        fixed neutral score

See :mod:`bookresolver.services.recommendation_resolver` for the tiers.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class MatchMethod(str, Enum):
    """How a recommendation was found."""

    VECTOR = "vector"
    VECTOR_FALLBACK_CLIENT = "vector_fallback_client"
    TEXT = "text"
    TEXT_FALLBACK = "text_fallback"
    POPULARITY = "popularity"


# ---------------------------------------------------------------------------
# SearchOptions — per-request knobs, part of the cache key.
# ---------------------------------------------------------------------------
class SearchOptions(BaseModel):
    """Options accepted by ``RecommendationResolver.resolve``.

    Range checks on ``similarity_threshold`` are done by the resolver so
    that a bad value surfaces as the package's own ``ValidationError``.
    """

    model_config = ConfigDict(frozen=True)

    # Return soft-deleted books too.
    include_deleted: bool = False
    # Item ids that must never appear in the result.
    exclude_ids: frozenset[int] = Field(default_factory=frozenset)
    # When set, replaces the threshold ladder with this single value.
    similarity_threshold: float | None = None
    # False routes every suggestion straight to keyword search.
    use_vector_search: bool = True


# ---------------------------------------------------------------------------
# ScoredItem — one raw similarity hit before thresholding.
# ---------------------------------------------------------------------------
class ScoredItem(BaseModel):
    """A candidate with a raw similarity score.

    Produced by both the native store RPC and the client-side cosine path;
    ``score`` may fall outside [0, 1] (cosine can be negative) until
    ``rank_scored`` filters and clamps it.
    """

    model_config = ConfigDict(frozen=True)

    item_id: int
    title: str
    score: float


# ---------------------------------------------------------------------------
# RecommendationResult — one ranked result returned to the caller.
# ---------------------------------------------------------------------------
class RecommendationResult(BaseModel):
    """A single ranked recommendation."""

    model_config = ConfigDict(frozen=True)

    item_id: int
    title: str
    score: float = Field(ge=0.0, le=1.0)
    match_method: MatchMethod
    # Threshold of the ladder tier that produced this result (None for popularity).
    threshold_used: float | None = None


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------
class BackfillProgress(BaseModel):
    """Outcome of one ``EmbeddingBackfillService.run`` call."""

    model_config = ConfigDict(frozen=True)

    processed: int = 0
    total: int = 0
    errors: list[str] = Field(default_factory=list)
    # USD, from the ~4 chars/token estimate.
    estimated_cost: float = 0.0
    processing_time_ms: int = 0


class EmbeddingCoverage(BaseModel):
    """How much of the active catalog has an embedding for the model."""

    model_config = ConfigDict(frozen=True)

    model_name: str
    total_items: int = 0
    embedded_items: int = 0
    coverage_percent: float = 0.0


class ResolverStats(BaseModel):
    """Snapshot returned by ``RecommendationResolver.stats``."""

    model_config = ConfigDict(frozen=True)

    model_name: str
    total_embeddings: int = 0
    cache_size: int = 0
    cache_expired: int = 0
    text_only: bool = False
