"""Abstract base class for text-embedding service providers.

Defines the raw transport contract for turning text into vectors.
Implementations wrap the OpenAI embeddings API or a plain HTTP endpoint
that answers ``{data: [{embedding: [...]}]}``.  Retries, rate limiting,
truncation and dimension validation are *not* the provider's job; they
live in :class:`~bookresolver.services.embedding_client.EmbeddingClient`,
which wraps any provider.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   OpenAIEmbeddingProvider  — text-embedding-3-small (requires API key)
#   HTTPEmbeddingProvider    — generic POST {text, model} endpoint
# Located in: bookresolver/providers/embedding/
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services used by the embedding client."""

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Parameters
        ----------
        texts:
            One or more text strings to embed.

        Returns
        -------
        list[list[float]]
            Embedding vectors corresponding positionally to *texts*.

        Raises
        ------
        bookresolver.utils.errors.RateLimitError
            If the provider signalled a rate limit (HTTP 429).
        bookresolver.utils.errors.TransientUpstreamError
            On timeouts, connection errors and 5xx responses.
        bookresolver.utils.errors.BookResolverError
            On any other failure, including a malformed response body.
        """

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string."""

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality the provider's model produces.

        Example values: ``1536`` (OpenAI ``text-embedding-3-small``).
        """

    @abstractmethod
    def get_model_name(self) -> str:
        """Return the model name stored alongside every ``EmbeddingRecord``."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this embedding provider."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured (credentials present)."""
