"""bookresolver FastAPI application entry point.

Composition root: builds every provider and service from ``Settings`` and
``config/config.yaml`` and hands them to the routes through ``app.state``.
Nothing here is a module-level service singleton; :func:`build_components`
returns fresh instances each call, which the CLI reuses outside the web
server.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import httpx
import structlog
import uvicorn
from fastapi import FastAPI

from bookresolver.api.middleware import ErrorHandlingMiddleware, RequestLoggingMiddleware
from bookresolver.api.routes import router as api_router
from bookresolver.config.loader import load_config
from bookresolver.config.resolver_config import ResolverConfig
from bookresolver.config.settings import Settings
from bookresolver.interfaces.catalog_store import ICatalogStore
from bookresolver.interfaces.embedding_provider import IEmbeddingProvider
from bookresolver.interfaces.llm_provider import ILLMProvider
from bookresolver.providers.cache.memory_cache import MemoryCacheProvider
from bookresolver.providers.catalog.memory_catalog_store import InMemoryCatalogStore
from bookresolver.providers.catalog.sqlite_catalog_store import SQLiteCatalogStore
from bookresolver.providers.catalog.supabase_catalog_store import SupabaseCatalogStore
from bookresolver.providers.embedding.http_embedding_provider import HTTPEmbeddingProvider
from bookresolver.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from bookresolver.providers.llm.anthropic_provider import AnthropicLLMProvider
from bookresolver.providers.llm.openai_provider import OpenAILLMProvider
from bookresolver.services.embedding_backfill import EmbeddingBackfillService
from bookresolver.services.embedding_client import EmbeddingClient
from bookresolver.services.query_expander import DEFAULT_FALLBACK_TITLES, QueryExpander
from bookresolver.services.recommendation_resolver import RecommendationResolver
from bookresolver.utils.errors import ConfigurationError
from bookresolver.utils.logging import configure_logging, get_logger
from bookresolver.utils.suggestion_parser import SuggestionParser

_VERSION = "0.1.0"

_logger: structlog.BoundLogger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


def _build_llm_provider(app_settings: Settings) -> ILLMProvider | None:
    """Select the first configured LLM provider.

    Priority order: Anthropic -> OpenAI.  Returns ``None`` when neither key
    is set; the query expander then always uses its fallback titles.
    """
    if app_settings.anthropic_api_key:
        return AnthropicLLMProvider(settings=app_settings)
    if app_settings.openai_api_key:
        return OpenAILLMProvider(settings=app_settings)
    return None


def _build_embedding_provider(
    app_settings: Settings,
    http_client: httpx.AsyncClient,
) -> IEmbeddingProvider | None:
    """Select the embedding provider.

    Priority: OpenAI/OpenAI-compatible (if API key set) -> plain HTTP
    endpoint (if ``EMBEDDING_ENDPOINT_URL`` is set).  Returns ``None`` when
    neither is configured, which puts the resolver in text-only mode.
    """
    if app_settings.openai_api_key:
        provider: IEmbeddingProvider = OpenAIEmbeddingProvider(settings=app_settings)
        if provider.is_available():
            return provider

    if app_settings.embedding_endpoint_url:
        return HTTPEmbeddingProvider(
            http_client=http_client,
            endpoint_url=app_settings.embedding_endpoint_url,
            model=app_settings.openai_embedding_model,
            dimension=app_settings.embedding_dimension,
            api_key=app_settings.supabase_service_role_key,
        )

    return None


def _build_catalog_store(app_settings: Settings, http_client: httpx.AsyncClient) -> ICatalogStore:
    backend = app_settings.catalog_backend.lower()
    if backend == "sqlite":
        return SQLiteCatalogStore(db_path=app_settings.catalog_db_path)
    if backend == "supabase":
        if not (app_settings.supabase_url and app_settings.supabase_service_role_key):
            raise ConfigurationError(
                message="CATALOG_BACKEND=supabase needs SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY",
                provider_name="supabase_catalog",
            )
        return SupabaseCatalogStore(
            http_client=http_client,
            base_url=app_settings.supabase_url,
            service_key=app_settings.supabase_service_role_key,
            match_function=app_settings.supabase_match_function,
        )
    if backend == "memory":
        return InMemoryCatalogStore(native_vector_search=True)
    raise ConfigurationError(message=f"Unknown catalog backend: {app_settings.catalog_backend!r}")


# ---------------------------------------------------------------------------
# Full DI assembly
# ---------------------------------------------------------------------------


def build_components(
    app_settings: Settings | None = None,
    config: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Construct every provider and service instance.

    Returns a flat dict of named components to be stored on ``app.state``.
    """
    app_settings = app_settings or Settings()
    config = config if config is not None else load_config(settings=app_settings)
    expander_cfg = config.get("expander") or {}
    embedding_cfg = config.get("embedding") or {}
    cache_cfg = config.get("cache") or {}

    # -- Shared resources --
    http_client = httpx.AsyncClient(timeout=30.0)
    cache = MemoryCacheProvider(
        max_size=cache_cfg.get("max_size", app_settings.cache_max_size),
        ttl=app_settings.recommendation_cache_ttl,
    )
    catalog_store = _build_catalog_store(app_settings, http_client)

    # -- LLM query expansion --
    llm_provider = _build_llm_provider(app_settings)
    expander = QueryExpander(
        llm_provider,
        parser=SuggestionParser(max_suggestions=expander_cfg.get("max_suggestions", 10)),
        fallback_titles=expander_cfg.get("fallback_titles") or DEFAULT_FALLBACK_TITLES,
        base_temperature=expander_cfg.get("base_temperature", 0.7),
        temperature_step=expander_cfg.get("temperature_step", 0.15),
        max_tokens=expander_cfg.get("max_tokens", 300),
        timeout=app_settings.llm_timeout,
    )

    # -- Embeddings --
    embedding_provider = _build_embedding_provider(app_settings, http_client)
    embedding_client: EmbeddingClient | None = None
    if embedding_provider is not None:
        embedding_client = EmbeddingClient(
            embedding_provider,
            max_retries=app_settings.embedding_max_retries,
            requests_per_minute=app_settings.embedding_requests_per_minute,
            timeout=app_settings.embedding_timeout,
            max_input_tokens=embedding_cfg.get("max_input_tokens", 8000),
        )

    # -- Resolver --
    resolver_config = ResolverConfig.from_config(config)
    if embedding_client is not None and embedding_client.model_name != resolver_config.embedding_model:
        resolver_config = resolver_config.model_copy(update={"embedding_model": embedding_client.model_name})
    resolver = RecommendationResolver(
        store=catalog_store,
        cache=cache,
        expander=expander,
        embedding_client=embedding_client,
        config=resolver_config,
    )

    backfill: EmbeddingBackfillService | None = None
    if embedding_client is not None:
        backfill = EmbeddingBackfillService(
            catalog_store,
            embedding_client,
            cache=cache,
            price_per_1k_tokens=embedding_cfg.get("price_per_1k_tokens", 0.00002),
        )

    provider_registry: dict[str, Any] = {
        "catalog": catalog_store.is_available(),
        "catalog_backend": catalog_store.get_provider_name(),
        "llm": llm_provider is not None,
        "llm_provider": llm_provider.get_provider_name() if llm_provider else None,
        "embedding": embedding_client is not None,
        "embedding_provider": embedding_client.provider_name if embedding_client else None,
        "cache": True,
    }

    return {
        "settings": app_settings,
        "config": config,
        "http_client": http_client,
        "cache": cache,
        "catalog_store": catalog_store,
        "llm_provider": llm_provider,
        "embedding_client": embedding_client,
        "expander": expander,
        "resolver": resolver,
        "backfill": backfill,
        "provider_registry": provider_registry,
    }


# ---------------------------------------------------------------------------
# Application lifespan (startup / shutdown)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _lifespan(application: FastAPI):  # noqa: ANN201
    """Build components on startup (unless injected), clean up on shutdown."""
    components = application.state.injected_components or build_components(application.state.settings)
    for key, value in components.items():
        setattr(application.state, key, value)

    store = components.get("catalog_store")
    if isinstance(store, SQLiteCatalogStore):
        await store.initialize()
        application.state.provider_registry["catalog"] = store.is_available()

    cache = components.get("cache")
    if isinstance(cache, MemoryCacheProvider):
        cache.start_sweeper(application.state.settings.cache_sweep_interval)

    _logger.info(
        "app_startup",
        version=_VERSION,
        environment=application.state.settings.app_env,
        providers=components.get("provider_registry", {}),
    )

    yield

    if isinstance(cache, MemoryCacheProvider):
        await cache.stop_sweeper()
    http_client: httpx.AsyncClient | None = components.get("http_client")
    if http_client is not None:
        await http_client.aclose()
    _logger.info("app_shutdown", message="HTTP client closed")


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_app(
    app_settings: Settings | None = None,
    components: dict[str, Any] | None = None,
) -> FastAPI:
    """Build and configure the FastAPI application.

    *components* replaces :func:`build_components` at startup; tests use
    it to inject in-memory stores and fake providers.
    """
    app_settings = app_settings or Settings()
    configure_logging(
        log_level=app_settings.log_level,
        json_output=(app_settings.app_env == "production"),
    )

    application = FastAPI(
        title="bookresolver API",
        version=_VERSION,
        description=(
            "Resolve free-text book requests (titles, authors, genres, moods; "
            "Czech or English) into ranked catalog recommendations using LLM "
            "query expansion, embedding similarity and keyword fallbacks."
        ),
        lifespan=_lifespan,
    )
    application.state.settings = app_settings
    application.state.injected_components = components

    # -- Middleware (order matters: last added = first executed) --
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)

    application.include_router(api_router)
    return application


if __name__ == "__main__":
    _settings = Settings()
    uvicorn.run(
        create_app(_settings),
        host=_settings.app_host,
        port=_settings.app_port,
    )
