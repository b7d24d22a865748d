"""Embedding provider implementations.

Two implementations of IEmbeddingProvider:
    1. OpenAIEmbeddingProvider — text-embedding-3-small (1536 dims) via the
       openai SDK; also works against OpenAI-compatible base URLs.
    2. HTTPEmbeddingProvider   — a plain ``POST {text, model}`` endpoint
       over an injected httpx client.

Both are raw transports; retries, rate limiting and dimension checks are
added by :class:`~bookresolver.services.embedding_client.EmbeddingClient`.
"""

from bookresolver.providers.embedding.http_embedding_provider import HTTPEmbeddingProvider
from bookresolver.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["HTTPEmbeddingProvider", "OpenAIEmbeddingProvider"]
