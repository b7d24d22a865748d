"""OpenAI-compatible embedding provider adapter.

Wraps the ``openai`` async client to implement :class:`IEmbeddingProvider`.
Supports both real OpenAI and OpenAI-compatible providers via custom
``base_url`` and model name settings.

SDK exceptions are translated into the bookresolver hierarchy so the
embedding client can decide what to retry:

    openai.RateLimitError                      -> RateLimitError
    openai.APIConnectionError / APITimeoutError -> TransientUpstreamError
    openai.InternalServerError (5xx)           -> TransientUpstreamError
    any other openai.APIError                  -> BookResolverError
"""

from __future__ import annotations

import openai
import structlog

from bookresolver.config.settings import Settings
from bookresolver.interfaces.embedding_provider import IEmbeddingProvider
from bookresolver.utils.errors import BookResolverError, RateLimitError, TransientUpstreamError

logger = structlog.get_logger(logger_name=__name__)

_OPENAI_BATCH_LIMIT = 2048

# Known embedding model dimensions.
_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by an OpenAI-compatible embeddings API.

    Uses ``text-embedding-3-small`` (1536 dims) by default.  Unknown models
    fall back to ``settings.embedding_dimension``.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._api_key = settings.openai_api_key

        client_kwargs: dict = {"api_key": self._api_key}
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._model = settings.openai_embedding_model or "text-embedding-3-small"
        self._dimension = _MODEL_DIMENSIONS.get(self._model, settings.embedding_dimension)
        self._provider_label = (
            "openai-compatible_embedding" if settings.openai_base_url else "openai_embedding"
        )

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Splits into batches of 2048 if the input exceeds the per-call limit.
        """
        if not texts:
            return []

        try:
            all_embeddings: list[list[float]] = []
            for start in range(0, len(texts), _OPENAI_BATCH_LIMIT):
                batch = texts[start : start + _OPENAI_BATCH_LIMIT]
                response = await self._client.embeddings.create(
                    input=batch,
                    model=self._model,
                )
                all_embeddings.extend(item.embedding for item in response.data)
                logger.debug(
                    "openai_embedding_batch",
                    model=self._model,
                    provider=self._provider_label,
                    batch_size=len(batch),
                    tokens=response.usage.total_tokens if response.usage else None,
                )
        except openai.RateLimitError as exc:
            raise RateLimitError(
                message=f"{self._provider_label} rate limited: {exc}",
                provider_name=self._provider_label,
            ) from exc
        except (openai.APIConnectionError, openai.InternalServerError) as exc:
            raise TransientUpstreamError(
                message=f"{self._provider_label} unavailable: {exc}",
                provider_name=self._provider_label,
            ) from exc
        except openai.APIError as exc:
            raise BookResolverError(
                message=f"{self._provider_label} API error: {exc}",
                provider_name=self._provider_label,
            ) from exc

        if len(all_embeddings) != len(texts):
            raise BookResolverError(
                message=(
                    f"{self._provider_label} returned {len(all_embeddings)} vectors "
                    f"for {len(texts)} inputs"
                ),
                provider_name=self._provider_label,
            )
        return all_embeddings

    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string."""
        result = await self.embed([text])
        return result[0]

    def get_dimension(self) -> int:
        return self._dimension

    def get_model_name(self) -> str:
        return self._model

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)
