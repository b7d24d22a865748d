"""Unit tests for embedding and LLM provider adapters."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import httpx
import openai
import pytest

from bookresolver.config.settings import Settings
from bookresolver.providers.embedding.http_embedding_provider import HTTPEmbeddingProvider
from bookresolver.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from bookresolver.providers.llm.anthropic_provider import AnthropicLLMProvider
from bookresolver.providers.llm.openai_provider import OpenAILLMProvider
from bookresolver.utils.errors import (
    BookResolverError,
    LLMError,
    RateLimitError,
    TransientUpstreamError,
)

_OPENAI_URL = "https://api.openai.com/v1/embeddings"


# ======================================================================
# Shared helpers
# ======================================================================


def _settings(**overrides) -> Settings:
    defaults = {
        "_env_file": None,
        "openai_api_key": "sk-test",
        "openai_base_url": "",
        "openai_text_model": "",
        "openai_embedding_model": "text-embedding-3-small",
        "anthropic_api_key": "test-anthropic",
        "embedding_dimension": 1536,
    }
    defaults.update(overrides)
    return Settings(**defaults)


def _status_response(status: int) -> httpx.Response:
    return httpx.Response(status, request=httpx.Request("POST", _OPENAI_URL))


def _embedding_response(vectors: list[list[float]]) -> MagicMock:
    response = MagicMock()
    response.data = [MagicMock(embedding=v) for v in vectors]
    response.usage = MagicMock(total_tokens=12)
    return response


# ======================================================================
# OpenAI embedding provider
# ======================================================================


class TestOpenAIEmbeddingProvider:
    def test_metadata(self) -> None:
        with patch("bookresolver.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI"):
            provider = OpenAIEmbeddingProvider(_settings())

        assert provider.get_provider_name() == "openai_embedding"
        assert provider.get_model_name() == "text-embedding-3-small"
        assert provider.get_dimension() == 1536
        assert provider.is_available() is True

    def test_unknown_model_uses_configured_dimension(self) -> None:
        settings = _settings(
            openai_base_url="http://localhost:1234/v1",
            openai_embedding_model="nomic-embed-text",
            embedding_dimension=768,
        )
        with patch("bookresolver.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI") as client_cls:
            provider = OpenAIEmbeddingProvider(settings)

        assert provider.get_dimension() == 768
        assert provider.get_provider_name() == "openai-compatible_embedding"
        assert client_cls.call_args.kwargs["base_url"] == "http://localhost:1234/v1"

    @pytest.mark.asyncio
    async def test_embed_success(self) -> None:
        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(return_value=_embedding_response([[0.1, 0.2], [0.3, 0.4]]))

        with patch(
            "bookresolver.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI",
            return_value=mock_client,
        ):
            provider = OpenAIEmbeddingProvider(_settings())
            result = await provider.embed(["Hobit", "1984"])

        assert result == [[0.1, 0.2], [0.3, 0.4]]
        kwargs = mock_client.embeddings.create.await_args.kwargs
        assert kwargs == {"input": ["Hobit", "1984"], "model": "text-embedding-3-small"}

    @pytest.mark.asyncio
    async def test_embed_single(self) -> None:
        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(return_value=_embedding_response([[0.5, 0.5]]))

        with patch(
            "bookresolver.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI",
            return_value=mock_client,
        ):
            provider = OpenAIEmbeddingProvider(_settings())
            assert await provider.embed_single("Hobit") == [0.5, 0.5]

    @pytest.mark.asyncio
    async def test_empty_input_skips_api(self) -> None:
        mock_client = AsyncMock()
        with patch(
            "bookresolver.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI",
            return_value=mock_client,
        ):
            provider = OpenAIEmbeddingProvider(_settings())
            assert await provider.embed([]) == []
        mock_client.embeddings.create.assert_not_awaited()

    @pytest.mark.parametrize(
        ("sdk_error", "expected"),
        [
            (lambda: openai.RateLimitError("slow down", response=_status_response(429), body=None), RateLimitError),
            (lambda: openai.InternalServerError("boom", response=_status_response(500), body=None), TransientUpstreamError),
            (lambda: openai.APIConnectionError(request=httpx.Request("POST", _OPENAI_URL)), TransientUpstreamError),
            (lambda: openai.BadRequestError("bad input", response=_status_response(400), body=None), BookResolverError),
        ],
    )
    @pytest.mark.asyncio
    async def test_sdk_errors_are_translated(self, sdk_error, expected) -> None:
        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(side_effect=sdk_error())

        with patch(
            "bookresolver.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI",
            return_value=mock_client,
        ):
            provider = OpenAIEmbeddingProvider(_settings())
            with pytest.raises(expected) as exc_info:
                await provider.embed(["Hobit"])

        assert type(exc_info.value) is expected
        assert exc_info.value.provider_name == "openai_embedding"

    @pytest.mark.asyncio
    async def test_short_response_raises(self) -> None:
        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(return_value=_embedding_response([[0.1]]))

        with patch(
            "bookresolver.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI",
            return_value=mock_client,
        ):
            provider = OpenAIEmbeddingProvider(_settings())
            with pytest.raises(BookResolverError, match="1 vectors for 2 inputs"):
                await provider.embed(["a", "b"])


# ======================================================================
# HTTP embedding provider
# ======================================================================


def _http_provider(handler, api_key: str = "") -> HTTPEmbeddingProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HTTPEmbeddingProvider(
        client,
        "https://edge.example.com/functions/v1/generate-embedding",
        model="text-embedding-3-small",
        dimension=3,
        api_key=api_key,
    )


class TestHTTPEmbeddingProvider:
    @pytest.mark.asyncio
    async def test_posts_text_and_model(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": [{"embedding": [1, 2.5, 3]}]})

        provider = _http_provider(handler, api_key="secret")
        vector = await provider.embed_single("Hobit")

        assert vector == [1.0, 2.5, 3.0]
        assert json.loads(seen[0].content) == {"text": "Hobit", "model": "text-embedding-3-small"}
        assert seen[0].headers["Authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_no_auth_header_without_key(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": [{"embedding": [0.0, 0.0, 1.0]}]})

        await _http_provider(handler).embed_single("Hobit")
        assert "Authorization" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_batch_is_one_request_per_text_in_order(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            text = json.loads(request.content)["text"]
            return httpx.Response(200, json={"data": [{"embedding": [float(len(text)), 0.0, 0.0]}]})

        vectors = await _http_provider(handler).embed(["a", "abc", "ab"])
        assert [v[0] for v in vectors] == [1.0, 3.0, 2.0]

    @pytest.mark.parametrize(
        ("status", "expected"),
        [(429, RateLimitError), (503, TransientUpstreamError), (400, BookResolverError)],
    )
    @pytest.mark.asyncio
    async def test_status_mapping(self, status, expected) -> None:
        provider = _http_provider(lambda request: httpx.Response(status, json={"error": "x"}))

        with pytest.raises(expected) as exc_info:
            await provider.embed_single("Hobit")
        assert type(exc_info.value) is expected

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransientUpstreamError, match="unreachable"):
            await _http_provider(handler).embed_single("Hobit")

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(TransientUpstreamError, match="timed out"):
            await _http_provider(handler).embed_single("Hobit")

    @pytest.mark.parametrize(
        "body",
        [{"data": []}, {"nope": 1}, {"data": [{"embedding": ["a", "b"]}]}, {"data": [{"embedding": 3}]}],
    )
    @pytest.mark.asyncio
    async def test_malformed_body(self, body) -> None:
        provider = _http_provider(lambda request: httpx.Response(200, json=body))
        with pytest.raises(BookResolverError):
            await provider.embed_single("Hobit")

    @pytest.mark.asyncio
    async def test_non_json_body(self) -> None:
        provider = _http_provider(lambda request: httpx.Response(200, content=b"<html>"))
        with pytest.raises(BookResolverError, match="Malformed"):
            await provider.embed_single("Hobit")

    def test_metadata(self) -> None:
        provider = _http_provider(lambda request: httpx.Response(200))
        assert provider.get_provider_name() == "http_embedding"
        assert provider.get_dimension() == 3
        assert provider.get_model_name() == "text-embedding-3-small"
        assert provider.is_available() is True


# ======================================================================
# OpenAI LLM provider
# ======================================================================


class TestOpenAILLMProvider:
    def test_provider_name_follows_base_url(self) -> None:
        with patch("bookresolver.providers.llm.openai_provider.openai.AsyncOpenAI"):
            assert OpenAILLMProvider(_settings()).get_provider_name() == "openai"
            compatible = OpenAILLMProvider(_settings(openai_base_url="http://localhost:1234/v1"))
            assert compatible.get_provider_name() == "openai-compatible"

    def test_is_available_without_key(self) -> None:
        with patch("bookresolver.providers.llm.openai_provider.openai.AsyncOpenAI"):
            assert OpenAILLMProvider(_settings(openai_api_key="")).is_available() is False

    @pytest.mark.asyncio
    async def test_complete_success(self) -> None:
        mock_response = MagicMock()
        mock_response.choices = [MagicMock(message=MagicMock(content="Hobit\n1984"))]
        mock_response.usage = MagicMock(total_tokens=40)

        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(return_value=mock_response)

        with patch("bookresolver.providers.llm.openai_provider.openai.AsyncOpenAI", return_value=mock_client):
            provider = OpenAILLMProvider(_settings())
            result = await provider.complete("system prompt", "user prompt", temperature=0.85, max_tokens=50)

        assert result == "Hobit\n1984"
        kwargs = mock_client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["temperature"] == 0.85
        assert kwargs["messages"][0] == {"role": "system", "content": "system prompt"}

    @pytest.mark.asyncio
    async def test_empty_response_raises(self) -> None:
        mock_response = MagicMock()
        mock_response.choices = []
        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(return_value=mock_response)

        with patch("bookresolver.providers.llm.openai_provider.openai.AsyncOpenAI", return_value=mock_client):
            provider = OpenAILLMProvider(_settings())
            with pytest.raises(LLMError, match="empty response"):
                await provider.complete("s", "u")

    @pytest.mark.asyncio
    async def test_api_error_raises_llm_error(self) -> None:
        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(
            side_effect=openai.APIError(message="Rate limit exceeded", request=MagicMock(), body=None)
        )

        with patch("bookresolver.providers.llm.openai_provider.openai.AsyncOpenAI", return_value=mock_client):
            provider = OpenAILLMProvider(_settings())
            with pytest.raises(LLMError):
                await provider.complete("s", "u")

    @pytest.mark.asyncio
    async def test_timeout_raises_llm_error(self) -> None:
        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(
            side_effect=openai.APITimeoutError(request=httpx.Request("POST", _OPENAI_URL))
        )

        with patch("bookresolver.providers.llm.openai_provider.openai.AsyncOpenAI", return_value=mock_client):
            provider = OpenAILLMProvider(_settings(llm_timeout=7.0))
            with pytest.raises(LLMError, match="timed out after 7.0s"):
                await provider.complete("s", "u")


# ======================================================================
# Anthropic LLM provider
# ======================================================================


class TestAnthropicLLMProvider:
    def test_metadata(self) -> None:
        with patch("bookresolver.providers.llm.anthropic_provider.anthropic.AsyncAnthropic"):
            provider = AnthropicLLMProvider(_settings())
        assert provider.get_provider_name() == "anthropic"
        assert provider.is_available() is True

    @pytest.mark.asyncio
    async def test_complete_joins_text_blocks(self) -> None:
        mock_response = MagicMock()
        mock_response.content = [
            MagicMock(type="text", text="Hobit"),
            MagicMock(type="tool_use", text="ignored"),
            MagicMock(type="text", text="1984"),
        ]
        mock_response.usage = MagicMock(input_tokens=10, output_tokens=5)

        mock_client = AsyncMock()
        mock_client.messages.create = AsyncMock(return_value=mock_response)

        with patch(
            "bookresolver.providers.llm.anthropic_provider.anthropic.AsyncAnthropic",
            return_value=mock_client,
        ):
            provider = AnthropicLLMProvider(_settings())
            result = await provider.complete("system", "user", temperature=1.3)

        assert result == "Hobit\n1984"
        kwargs = mock_client.messages.create.await_args.kwargs
        assert kwargs["system"] == "system"
        assert kwargs["temperature"] == 1.0

    @pytest.mark.asyncio
    async def test_no_text_blocks_raises(self) -> None:
        mock_response = MagicMock()
        mock_response.content = []
        mock_client = AsyncMock()
        mock_client.messages.create = AsyncMock(return_value=mock_response)

        with patch(
            "bookresolver.providers.llm.anthropic_provider.anthropic.AsyncAnthropic",
            return_value=mock_client,
        ):
            provider = AnthropicLLMProvider(_settings())
            with pytest.raises(LLMError, match="no text"):
                await provider.complete("s", "u")

    @pytest.mark.asyncio
    async def test_api_error_raises_llm_error(self) -> None:
        mock_client = AsyncMock()
        mock_client.messages.create = AsyncMock(
            side_effect=anthropic.APIConnectionError(
                request=httpx.Request("POST", "https://api.anthropic.com/v1/messages")
            )
        )

        with patch(
            "bookresolver.providers.llm.anthropic_provider.anthropic.AsyncAnthropic",
            return_value=mock_client,
        ):
            provider = AnthropicLLMProvider(_settings())
            with pytest.raises(LLMError) as exc_info:
                await provider.complete("s", "u")

        assert isinstance(exc_info.value.__cause__, anthropic.APIConnectionError)
