"""Integration tests for the FastAPI endpoints using TestClient.

The app is built by ``create_app`` with injected in-memory components so
the full stack (routes, middleware, resolver, similarity engine, cache)
runs without network access.
"""

from __future__ import annotations

from typing import Any, Iterator
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from bookresolver.config.settings import Settings
from bookresolver.main import create_app
from bookresolver.utils.errors import CatalogStoreError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _test_settings() -> Settings:
    return Settings(
        _env_file=None,
        openai_api_key="",
        anthropic_api_key="",
        embedding_endpoint_url="",
        catalog_backend="memory",
        app_env="test",
    )


@pytest.fixture()
def components(make_resolver, catalog_store, embedding_client, cache) -> dict[str, Any]:
    return {
        "resolver": make_resolver(catalog_store, embedding_client),
        "cache": cache,
        "catalog_store": catalog_store,
        "provider_registry": {
            "catalog": True,
            "catalog_backend": catalog_store.get_provider_name(),
            "llm": False,
            "llm_provider": None,
            "embedding": True,
            "embedding_provider": embedding_client.provider_name,
            "cache": True,
        },
    }


@pytest.fixture()
def client(components) -> Iterator[TestClient]:
    app = create_app(_test_settings(), components=components)
    with TestClient(app) as test_client:
        yield test_client


# ---------------------------------------------------------------------------
# Health and stats
# ---------------------------------------------------------------------------


class TestHealthAndStats:
    def test_health_degraded_without_llm(self, client: TestClient) -> None:
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "degraded"
        assert body["version"] == "0.1.0"
        assert body["providers"]["catalog"] is True

    def test_health_unhealthy_without_catalog(self, components) -> None:
        components["provider_registry"]["catalog"] = False
        with TestClient(create_app(_test_settings(), components=components)) as test_client:
            assert test_client.get("/api/v1/health").json()["status"] == "unhealthy"

    def test_stats(self, client: TestClient, test_model: str) -> None:
        body = client.get("/api/v1/stats").json()

        assert body["model_name"] == test_model
        assert body["total_embeddings"] == 3
        assert body["text_only"] is False


# ---------------------------------------------------------------------------
# Recommendations
# ---------------------------------------------------------------------------


class TestRecommendations:
    def test_vector_match(self, client: TestClient) -> None:
        response = client.post("/api/v1/recommendations", json={"query": "the hobbit", "limit": 5})

        assert response.status_code == 200
        body = response.json()
        assert body["query"] == "the hobbit"
        assert body["results"][0]["item_id"] == 2
        assert body["results"][0]["match_method"] == "vector"
        assert body["total"] == len(body["results"])

    def test_exclusions_respected(self, client: TestClient) -> None:
        body = client.post(
            "/api/v1/recommendations",
            json={"query": "the hobbit", "limit": 5, "exclude_ids": [2]},
        ).json()

        assert 2 not in [r["item_id"] for r in body["results"]]

    def test_empty_query_returns_popular_books(self, client: TestClient) -> None:
        body = client.post("/api/v1/recommendations", json={"query": "", "limit": 2}).json()

        assert [r["item_id"] for r in body["results"]] == [1, 2]
        assert {r["match_method"] for r in body["results"]} == {"popularity"}

    @pytest.mark.parametrize("payload", [{"query": "x", "limit": 0}, {"query": "x", "threshold": 1.5}])
    def test_invalid_body_is_422(self, client: TestClient, payload: dict) -> None:
        assert client.post("/api/v1/recommendations", json=payload).status_code == 422

    def test_store_outage_maps_to_503(self, client: TestClient, catalog_store) -> None:
        catalog_store.popular_items = AsyncMock(side_effect=CatalogStoreError("down", provider_name="memory"))

        response = client.post("/api/v1/recommendations", json={"query": "", "limit": 3})

        assert response.status_code == 503
        assert response.json()["error"] == "RecommendationUnavailableError"


# ---------------------------------------------------------------------------
# Books
# ---------------------------------------------------------------------------


class TestBooks:
    def test_get_book(self, client: TestClient) -> None:
        body = client.get("/api/v1/books/2").json()

        assert body["title"] == "The Hobbit"
        assert body["is_deleted"] is False

    def test_unknown_book_is_404(self, client: TestClient) -> None:
        response = client.get("/api/v1/books/99")

        assert response.status_code == 404
        assert response.json() == {"error": "NotFoundError", "detail": "Book 99 not found"}

    def test_similar_excludes_the_book_itself(self, client: TestClient) -> None:
        response = client.get("/api/v1/books/1/similar", params={"limit": 3})

        assert response.status_code == 200
        body = response.json()
        assert body["query"] == "similar:1"
        assert 1 not in [r["item_id"] for r in body["results"]]

    def test_similar_unknown_book_is_404(self, client: TestClient) -> None:
        assert client.get("/api/v1/books/99/similar").status_code == 404


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class TestCacheClear:
    def test_clear_drops_cached_results(self, client: TestClient) -> None:
        client.post("/api/v1/recommendations", json={"query": "the hobbit", "limit": 5})

        body = client.post("/api/v1/cache/clear").json()

        assert body["removed"] >= 1
        assert client.get("/api/v1/stats").json()["cache_size"] == 0
