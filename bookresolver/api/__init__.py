"""bookresolver API layer: routes, schemas and middleware."""

from bookresolver.api.middleware import ErrorHandlingMiddleware, RequestLoggingMiddleware
from bookresolver.api.routes import router
from bookresolver.api.schemas import (
    BookResponse,
    ErrorResponse,
    HealthResponse,
    RecommendationRequest,
    RecommendationsResponse,
    StatsResponse,
)

__all__ = [
    "BookResponse",
    "ErrorHandlingMiddleware",
    "ErrorResponse",
    "HealthResponse",
    "RecommendationRequest",
    "RecommendationsResponse",
    "RequestLoggingMiddleware",
    "StatsResponse",
    "router",
]
