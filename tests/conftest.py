"""Shared pytest fixtures for the bookresolver test suite."""

from __future__ import annotations

from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest
import structlog

from bookresolver.config.resolver_config import ResolverConfig
from bookresolver.interfaces.embedding_provider import IEmbeddingProvider
from bookresolver.interfaces.llm_provider import ILLMProvider
from bookresolver.models.catalog import CatalogItem, EmbeddingRecord
from bookresolver.providers.cache.memory_cache import MemoryCacheProvider
from bookresolver.providers.catalog.memory_catalog_store import InMemoryCatalogStore
from bookresolver.services.embedding_client import EmbeddingClient
from bookresolver.services.query_expander import QueryExpander
from bookresolver.services.recommendation_resolver import RecommendationResolver

TEST_MODEL = "test-embedding-model"
TEST_DIMENSION = 4

# Toy embedding space: one axis per theme, the last axis for "anything else".
_THEME_WORDS: tuple[tuple[str, ...], ...] = (
    ("magic", "wizard", "school", "harry", "potter", "philosopher", "kouzel"),
    ("hobbit", "hobit", "dragon", "journey", "ring"),
    ("1984", "orwell", "dystopia", "surveillance"),
)


def concept_vector(text: str) -> list[float]:
    """Deterministic 4-d vector counting theme words in *text*."""
    lowered = text.lower()
    vector = [float(sum(1 for word in words if word in lowered)) for words in _THEME_WORDS]
    vector.append(0.0 if any(vector) else 1.0)
    return vector


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _silent_structlog() -> None:
    """Route structlog to ReturnLogger and disable logger caching.

    Cached loggers keep a reference to the stdout they were first used
    with, which breaks once capsys closes its stream.
    """
    structlog.configure(
        processors=[structlog.processors.KeyValueRenderer()],
        wrapper_class=structlog.make_filtering_bound_logger(0),
        context_class=dict,
        logger_factory=structlog.ReturnLoggerFactory(),
        cache_logger_on_first_use=False,
    )


# ---------------------------------------------------------------------------
# Catalog fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def catalog_items() -> list[CatalogItem]:
    """The three-book catalog used by the resolver scenarios."""
    return [
        CatalogItem(id=1, title="Harry Potter and the Philosopher's Stone"),
        CatalogItem(id=2, title="The Hobbit"),
        CatalogItem(id=3, title="1984"),
    ]


@pytest.fixture
def catalog_embeddings(catalog_items: list[CatalogItem]) -> list[EmbeddingRecord]:
    return [
        EmbeddingRecord(
            item_id=item.id,
            model_name=TEST_MODEL,
            vector=concept_vector(item.title),
            title=item.title,
        )
        for item in catalog_items
    ]


@pytest.fixture
def catalog_store(
    catalog_items: list[CatalogItem],
    catalog_embeddings: list[EmbeddingRecord],
) -> InMemoryCatalogStore:
    """In-memory store with native vector search enabled."""
    return InMemoryCatalogStore(catalog_items, catalog_embeddings, native_vector_search=True)


# ---------------------------------------------------------------------------
# Mock provider fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_embedding_provider() -> IEmbeddingProvider:
    """Mock IEmbeddingProvider backed by :func:`concept_vector`.

    Override with ``mock_embedding_provider.embed.side_effect = ...`` to
    simulate failures.
    """
    mock = MagicMock(spec=IEmbeddingProvider)
    mock.get_provider_name.return_value = "mock-embedding"
    mock.get_model_name.return_value = TEST_MODEL
    mock.get_dimension.return_value = TEST_DIMENSION
    mock.is_available.return_value = True
    mock.embed = AsyncMock(side_effect=lambda texts: [concept_vector(t) for t in texts])
    mock.embed_single = AsyncMock(side_effect=concept_vector)
    return mock


@pytest.fixture
def mock_llm_provider() -> ILLMProvider:
    """Mock ILLMProvider answering with two suggestion lines.

    Override with ``mock_llm_provider.complete.return_value = "..."``.
    """
    mock = MagicMock(spec=ILLMProvider)
    mock.get_provider_name.return_value = "mock-llm"
    mock.is_available.return_value = True
    mock.complete = AsyncMock(return_value="1. Harry Potter\n2. The Hobbit")
    return mock


@pytest.fixture
def vectorize() -> Callable[[str], list[float]]:
    """The toy embedding function the mock provider uses."""
    return concept_vector


@pytest.fixture
def test_model() -> str:
    return TEST_MODEL


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(fake_clock: FakeClock) -> MemoryCacheProvider:
    """Cache driven by the fake clock; advance it to expire entries."""
    return MemoryCacheProvider(max_size=100, ttl=300.0, timer=fake_clock)


@pytest.fixture
def embedding_client(mock_embedding_provider: IEmbeddingProvider) -> EmbeddingClient:
    """Embedding client whose retry sleeps return immediately."""
    return EmbeddingClient(
        mock_embedding_provider,
        max_retries=3,
        base_delay=1.0,
        requests_per_minute=600,
        timeout=5.0,
        sleep=AsyncMock(),
    )


@pytest.fixture
def resolver_config() -> ResolverConfig:
    return ResolverConfig(embedding_model=TEST_MODEL, call_timeout=5.0)


@pytest.fixture
def make_resolver(
    cache: MemoryCacheProvider,
    resolver_config: ResolverConfig,
) -> Callable[..., RecommendationResolver]:
    """Factory building a resolver around the shared cache.

    Without an LLM and with no fallback titles the raw query is the only
    candidate, which keeps scenario tests exact.
    """

    def _make(
        store: Any,
        embedding_client: EmbeddingClient | None = None,
        llm_provider: ILLMProvider | None = None,
        fallback_titles: tuple[str, ...] = (),
        **config_overrides: Any,
    ) -> RecommendationResolver:
        config = resolver_config.model_copy(update=config_overrides) if config_overrides else resolver_config
        expander = QueryExpander(llm_provider, fallback_titles=fallback_titles, timeout=None)
        return RecommendationResolver(
            store=store,
            cache=cache,
            expander=expander,
            embedding_client=embedding_client,
            config=config,
        )

    return _make
