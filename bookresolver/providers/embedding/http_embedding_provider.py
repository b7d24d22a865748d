"""Generic HTTP embedding provider.

Talks to any endpoint that accepts ``POST {"text": ..., "model": ...}``
and answers ``{"data": [{"embedding": [...]}]}`` (the shape of the
catalog's own ``generate-embedding`` edge function).  The endpoint embeds
one text per request, so :meth:`embed` issues one request per input, in
order.

Status mapping:
    429                         -> RateLimitError
    5xx, timeouts, conn errors  -> TransientUpstreamError
    other non-2xx, bad body     -> BookResolverError
"""

from __future__ import annotations

from typing import Any

import httpx

from bookresolver.interfaces.embedding_provider import IEmbeddingProvider
from bookresolver.utils.errors import BookResolverError, RateLimitError, TransientUpstreamError
from bookresolver.utils.logging import get_logger

_PROVIDER_NAME = "http_embedding"


class HTTPEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider for a plain JSON-over-HTTP endpoint.

    Parameters
    ----------
    http_client:
        Injected ``httpx.AsyncClient`` for testability and connection pooling.
    endpoint_url:
        Full URL of the embedding endpoint.
    model:
        Model name sent with every request and stored on each record.
    dimension:
        Vector length the endpoint's model produces.
    api_key:
        Optional bearer token.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        endpoint_url: str,
        model: str = "text-embedding-3-small",
        dimension: int = 1536,
        api_key: str = "",
    ) -> None:
        self._http = http_client
        self._endpoint_url = endpoint_url
        self._model = model
        self._dimension = dimension
        self._api_key = api_key
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def embed(self, texts: list[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for text in texts:
            vectors.append(await self.embed_single(text))
        return vectors

    async def embed_single(self, text: str) -> list[float]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        try:
            response = await self._http.post(
                self._endpoint_url,
                json={"text": text, "model": self._model},
                headers=headers,
            )
        except httpx.TimeoutException as exc:
            raise TransientUpstreamError(
                message=f"Embedding request timed out: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc
        except httpx.TransportError as exc:
            raise TransientUpstreamError(
                message=f"Embedding endpoint unreachable: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc

        if response.status_code == 429:
            raise RateLimitError(
                message="Embedding endpoint rate limited",
                provider_name=_PROVIDER_NAME,
            )
        if response.status_code >= 500:
            raise TransientUpstreamError(
                message=f"Embedding endpoint returned HTTP {response.status_code}",
                provider_name=_PROVIDER_NAME,
            )
        if response.status_code >= 300:
            raise BookResolverError(
                message=f"Embedding endpoint returned HTTP {response.status_code}",
                provider_name=_PROVIDER_NAME,
            )

        return self._parse_embedding(response)

    def get_dimension(self) -> int:
        return self._dimension

    def get_model_name(self) -> str:
        return self._model

    def get_provider_name(self) -> str:
        return _PROVIDER_NAME

    def is_available(self) -> bool:
        return bool(self._endpoint_url)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _parse_embedding(self, response: httpx.Response) -> list[float]:
        try:
            body: Any = response.json()
            embedding = body["data"][0]["embedding"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise BookResolverError(
                message="Malformed embedding response body",
                provider_name=_PROVIDER_NAME,
            ) from exc

        if not isinstance(embedding, list) or not all(
            isinstance(v, (int, float)) for v in embedding
        ):
            raise BookResolverError(
                message="Embedding response is not a list of numbers",
                provider_name=_PROVIDER_NAME,
            )
        return [float(v) for v in embedding]
