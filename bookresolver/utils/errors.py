"""Custom exception hierarchy for bookresolver.

All application exceptions inherit from :class:`BookResolverError`, which
carries an optional ``provider_name`` so error handlers can identify which
external service (e.g. "openai", "sqlite_catalog", "supabase") caused the
failure.

The hierarchy is organized by fallback tier:

    BookResolverError  (base -- catch-all for any bookresolver error)
    +-- TransientUpstreamError          (timeouts / 5xx -- retried, then degraded)
    |   +-- RateLimitError              (provider rate-limit exceeded)
    +-- EmbeddingUnavailableError       (embedding retries exhausted)
    +-- DimensionMismatchError          (vector length != configured dimension)
    +-- LLMError                        (any LLM API call failure)
    +-- CatalogStoreError               (catalog store unreachable / query failed)
    |   +-- VectorSearchUnavailableError (no native vector-search RPC)
    +-- ValidationError                 (bad limit / threshold from the caller)
    +-- NotFoundError                   (id-driven operation on a missing item)
    +-- ResolutionCancelledError        (resolve deadline elapsed)
    +-- RecommendationUnavailableError  (every tier, popularity included, failed)
    +-- ConfigurationError              (startup / missing config)

Component-level errors are converted into the next fallback tier by the
resolver; only ``ValidationError`` and ``RecommendationUnavailableError``
(plus the cancellation error) ever reach a caller of ``resolve``.
"""


class BookResolverError(Exception):
    """Base exception for all bookresolver errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which external service triggered the
    error.  The ``__str__`` method prefixes the provider name in brackets
    for structured log output, e.g. ``[openai_embedding] Rate limit exceeded``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Upstream / provider errors
# ---------------------------------------------------------------------------

class TransientUpstreamError(BookResolverError):
    """Raised on a timeout or 5xx from the embedding, LLM or catalog service.

    Retried by the embedding client; converted into the next fallback tier
    by the resolver.
    """

    def __init__(
        self,
        message: str = "Upstream service temporarily unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class RateLimitError(TransientUpstreamError):
    """Raised when an API rate limit is exceeded.

    The embedding client answers this with a cooldown sleep proportional
    to its requests-per-minute budget before retrying.
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EmbeddingUnavailableError(BookResolverError):
    """Raised when an embedding could not be produced after all retries.

    Recoverable: the resolver switches the affected suggestion to the
    keyword path.
    """

    def __init__(
        self,
        message: str = "Embedding service unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class DimensionMismatchError(BookResolverError):
    """Raised when a vector's length disagrees with the expected dimension."""

    def __init__(
        self,
        message: str = "Embedding dimension mismatch",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class LLMError(BookResolverError):
    """Raised when an LLM API call fails or returns an unusable response."""

    def __init__(
        self,
        message: str = "LLM API call failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Catalog store errors
# ---------------------------------------------------------------------------

class CatalogStoreError(BookResolverError):
    """Raised when the catalog store is unreachable or a query fails."""

    def __init__(
        self,
        message: str = "Catalog store query failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class VectorSearchUnavailableError(CatalogStoreError):
    """Raised when the store has no native vector-search operation.

    The similarity engine catches this and ranks client-side instead.
    """

    def __init__(
        self,
        message: str = "Native vector search is not available",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Caller-facing errors
# ---------------------------------------------------------------------------

class ValidationError(BookResolverError):
    """Raised when the caller supplies an invalid limit, threshold or ladder."""

    def __init__(
        self,
        message: str = "Invalid request",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class NotFoundError(BookResolverError):
    """Raised by id-driven operations that cannot proceed without the item.

    Plain lookups (``ICatalogStore.get_by_id``) return ``None`` instead.
    """

    def __init__(
        self,
        message: str = "Item not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ResolutionCancelledError(BookResolverError):
    """Raised when a ``resolve`` call exceeds its deadline."""

    def __init__(
        self,
        message: str = "Recommendation request was cancelled",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class RecommendationUnavailableError(BookResolverError):
    """Raised when every search tier, including popularity, has failed."""

    def __init__(
        self,
        message: str = "No recommendation tier could produce results",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(BookResolverError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
