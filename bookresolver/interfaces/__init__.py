"""Public interface definitions for all external collaborators.

Every external service the resolver talks to is accessed exclusively
through the abstract base classes defined in this package.  Concrete
adapters implement these interfaces and are injected by the composition
root in ``bookresolver/main.py``; unit tests inject mocks instead.

CONCRETE PROVIDER MAP:
    Interface              →  Concrete implementations (in bookresolver/providers/)
    ─────────────────────────────────────────────────────────────────────
    IEmbeddingProvider     →  OpenAIEmbeddingProvider, HTTPEmbeddingProvider
    ILLMProvider           →  AnthropicLLMProvider, OpenAILLMProvider
    ICatalogStore          →  SQLiteCatalogStore, SupabaseCatalogStore,
                              InMemoryCatalogStore
    ICacheProvider         →  MemoryCacheProvider
"""

from bookresolver.interfaces.cache_provider import ICacheProvider
from bookresolver.interfaces.catalog_store import ICatalogStore
from bookresolver.interfaces.embedding_provider import IEmbeddingProvider
from bookresolver.interfaces.llm_provider import ILLMProvider

__all__ = [
    "ICacheProvider",
    "ICatalogStore",
    "IEmbeddingProvider",
    "ILLMProvider",
]
