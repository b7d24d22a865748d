"""Pydantic request/response schemas for the bookresolver API.

Request bodies are validated by FastAPI (422 on a malformed body); the
ranges below match what the resolver itself accepts, so a request that
passes schema validation never trips the resolver's ``ValidationError``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from bookresolver.models.recommendation import RecommendationResult, SearchOptions

MAX_QUERY_LENGTH = 500
MAX_LIMIT = 100


class RecommendationRequest(BaseModel):
    """Body of ``POST /api/v1/recommendations``."""

    query: str = Field(default="", max_length=MAX_QUERY_LENGTH)
    limit: int = Field(default=10, ge=1, le=MAX_LIMIT)
    threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    include_deleted: bool = False
    exclude_ids: list[int] = Field(default_factory=list)
    use_vector_search: bool = True

    def to_options(self) -> SearchOptions:
        return SearchOptions(
            include_deleted=self.include_deleted,
            exclude_ids=frozenset(self.exclude_ids),
            similarity_threshold=self.threshold,
            use_vector_search=self.use_vector_search,
        )


class RecommendationsResponse(BaseModel):
    """Ranked recommendations for one request."""

    query: str
    results: list[RecommendationResult]
    total: int
    processing_time_ms: int


class BookResponse(BaseModel):
    """A single catalog book."""

    id: int
    title: str
    parent_id: int | None = None
    root_id: int | None = None
    is_variant_spelling: bool = False
    is_deleted: bool = False


class StatsResponse(BaseModel):
    """Resolver and cache statistics."""

    model_name: str
    total_embeddings: int
    cache_size: int
    cache_expired: int
    text_only: bool


class CacheClearResponse(BaseModel):
    removed: int


class HealthResponse(BaseModel):
    """Application health check response."""

    status: str
    version: str
    providers: dict[str, Any]


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    detail: str | None = None
