"""Utility modules for bookresolver.

Available utility modules (re-exported here for convenience):

- **errors** -- Exception hierarchy rooted at BookResolverError, organized
  by fallback tier so the resolver can convert each failure into the next
  tier without broad ``except Exception`` blocks.
- **concurrency** -- semaphore-bounded gather and per-call timeouts for
  outbound embedding, LLM and catalog calls.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production, plus
  per-request ``request_id`` binding.
- **text_normalizer** -- query normalization, keyword term extraction and
  title relevance scoring for the keyword search paths.
- **suggestion_parser** -- rules for turning newline-delimited LLM output
  into a clean suggestion list.
- **csv_import** (not re-exported here) -- CSV row parsing for the
  ``import-csv`` command.
"""

# -- Exception hierarchy ---------------------------------------------------
from bookresolver.utils.errors import (
    BookResolverError,
    CatalogStoreError,
    ConfigurationError,
    DimensionMismatchError,
    EmbeddingUnavailableError,
    LLMError,
    NotFoundError,
    RateLimitError,
    RecommendationUnavailableError,
    ResolutionCancelledError,
    TransientUpstreamError,
    ValidationError,
    VectorSearchUnavailableError,
)

# -- Async concurrency helpers ---------------------------------------------
from bookresolver.utils.concurrency import call_with_timeout, throttled_gather

# -- Structured logging setup ----------------------------------------------
from bookresolver.utils.logging import (
    bind_request_context,
    clear_request_context,
    configure_logging,
    get_logger,
)

# -- LLM output parsing ----------------------------------------------------
from bookresolver.utils.suggestion_parser import SuggestionParser

# -- Text normalization and keyword relevance -------------------------------
from bookresolver.utils.text_normalizer import keyword_relevance, keyword_terms, normalize_query

__all__ = [
    "BookResolverError",
    "CatalogStoreError",
    "ConfigurationError",
    "DimensionMismatchError",
    "EmbeddingUnavailableError",
    "LLMError",
    "NotFoundError",
    "RateLimitError",
    "RecommendationUnavailableError",
    "ResolutionCancelledError",
    "SuggestionParser",
    "TransientUpstreamError",
    "ValidationError",
    "VectorSearchUnavailableError",
    "bind_request_context",
    "call_with_timeout",
    "clear_request_context",
    "configure_logging",
    "get_logger",
    "keyword_relevance",
    "keyword_terms",
    "normalize_query",
    "throttled_gather",
]
