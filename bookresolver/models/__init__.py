"""bookresolver domain models — re-exports all public model classes.

Other parts of the codebase import directly from ``bookresolver.models``
(e.g. ``from bookresolver.models import CatalogItem``) instead of from the
individual submodules:
    - catalog.py         — catalog books and their embeddings
    - recommendation.py  — search options, ranked results, statistics
"""

from __future__ import annotations

from bookresolver.models.catalog import CatalogItem, EmbeddingRecord, is_deleted_marker
from bookresolver.models.recommendation import (
    BackfillProgress,
    EmbeddingCoverage,
    MatchMethod,
    RecommendationResult,
    ResolverStats,
    ScoredItem,
    SearchOptions,
)

__all__ = [
    "BackfillProgress",
    "CatalogItem",
    "EmbeddingCoverage",
    "EmbeddingRecord",
    "MatchMethod",
    "RecommendationResult",
    "ResolverStats",
    "ScoredItem",
    "SearchOptions",
    "is_deleted_marker",
]
