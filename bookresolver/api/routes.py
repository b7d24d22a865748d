"""FastAPI routes for the bookresolver service.

Endpoint                          Method  Description
-------------------------------   ------  ---------------------------------
/api/v1/health                    GET     Health check + provider status
/api/v1/stats                     GET     Embedding and cache statistics
/api/v1/recommendations           POST    Resolve a free-text request
/api/v1/books/{id}/similar        GET     Books similar to a catalog book
/api/v1/books/{id}                GET     Single book lookup
/api/v1/cache/clear               POST    Drop cached results and index

Services come from ``app.state`` (populated in ``main.create_app``) through
``Depends`` helpers.  Domain errors are not caught here; they propagate to
:class:`~bookresolver.api.middleware.ErrorHandlingMiddleware`.
"""

from __future__ import annotations

import time
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Query, Request

from bookresolver.api.schemas import (
    BookResponse,
    CacheClearResponse,
    HealthResponse,
    RecommendationRequest,
    RecommendationsResponse,
    StatsResponse,
)
from bookresolver.services.recommendation_resolver import RecommendationResolver
from bookresolver.utils.errors import NotFoundError
from bookresolver.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

router = APIRouter(prefix="/api/v1")

_VERSION = "0.1.0"


def _get_resolver(request: Request) -> RecommendationResolver:
    """Return the recommendation resolver from application state."""
    return request.app.state.resolver


ResolverDep = Annotated[RecommendationResolver, Depends(_get_resolver)]


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Application health check",
)
async def health_check(request: Request, resolver: ResolverDep) -> HealthResponse:
    """Return application health, version, and provider availability."""
    providers: dict[str, Any] = dict(getattr(request.app.state, "provider_registry", {}))

    if not providers.get("catalog", False):
        status = "unhealthy"
    elif resolver.text_only or not providers.get("llm", False):
        status = "degraded"
    else:
        status = "healthy"

    return HealthResponse(status=status, version=_VERSION, providers=providers)


@router.get(
    "/stats",
    response_model=StatsResponse,
    summary="Embedding and cache statistics",
)
async def get_stats(resolver: ResolverDep) -> StatsResponse:
    stats = await resolver.stats()
    return StatsResponse(**stats.model_dump())


@router.post(
    "/recommendations",
    response_model=RecommendationsResponse,
    summary="Recommend books for a free-text request",
)
async def recommend(body: RecommendationRequest, resolver: ResolverDep) -> RecommendationsResponse:
    """Resolve *body.query* into ranked catalog books."""
    start = time.perf_counter()
    results = await resolver.resolve(body.query, body.limit, body.to_options())
    return RecommendationsResponse(
        query=body.query,
        results=results,
        total=len(results),
        processing_time_ms=int((time.perf_counter() - start) * 1000),
    )


@router.get(
    "/books/{book_id}/similar",
    response_model=RecommendationsResponse,
    summary="Books similar to a catalog book",
)
async def similar_books(
    book_id: int,
    resolver: ResolverDep,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
) -> RecommendationsResponse:
    start = time.perf_counter()
    results = await resolver.find_similar_to_item(book_id, limit)
    return RecommendationsResponse(
        query=f"similar:{book_id}",
        results=results,
        total=len(results),
        processing_time_ms=int((time.perf_counter() - start) * 1000),
    )


@router.get(
    "/books/{book_id}",
    response_model=BookResponse,
    summary="Look up one book",
)
async def get_book(book_id: int, resolver: ResolverDep) -> BookResponse:
    item = await resolver.get_item(book_id)
    if item is None:
        raise NotFoundError(message=f"Book {book_id} not found")
    return BookResponse(
        id=item.id,
        title=item.title,
        parent_id=item.parent_id,
        root_id=item.root_id,
        is_variant_spelling=item.is_variant_spelling,
        is_deleted=item.is_deleted,
    )


@router.post(
    "/cache/clear",
    response_model=CacheClearResponse,
    summary="Drop cached recommendations and the embedding index",
)
async def clear_cache(resolver: ResolverDep) -> CacheClearResponse:
    removed = await resolver.clear_cache()
    _logger.info("cache_cleared_via_api", removed=removed)
    return CacheClearResponse(removed=removed)
