"""End-to-end resolution against a SQLite catalog.

SQLite has no native vector operator, so every vector match here comes
from client-side ranking over the stored embeddings.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from bookresolver.models.catalog import EmbeddingRecord
from bookresolver.models.recommendation import MatchMethod, SearchOptions
from bookresolver.providers.catalog.sqlite_catalog_store import SQLiteCatalogStore
from bookresolver.services.embedding_backfill import EmbeddingBackfillService
from bookresolver.utils.csv_import import parse_book_rows

_CATALOG = [
    {"id": "1", "title": "Harry Potter and the Philosopher's Stone"},
    {"id": "2", "title": "The Hobbit"},
    {"id": "3", "title": "1984"},
    {"id": "4", "title": "Wizard School", "deleted_at": "2024-05-01T00:00:00Z"},
]


@pytest_asyncio.fixture
async def sqlite_store(tmp_path: Path) -> SQLiteCatalogStore:
    store = SQLiteCatalogStore(db_path=tmp_path / "catalog.db")
    await store.initialize()
    rows, errors = parse_book_rows(_CATALOG)
    assert errors == []
    await store.upsert_books(rows)
    return store


@pytest_asyncio.fixture
async def embedded_store(sqlite_store, vectorize, test_model) -> SQLiteCatalogStore:
    records = [
        EmbeddingRecord(item_id=int(row["id"]), model_name=test_model, vector=vectorize(row["title"]))
        for row in _CATALOG
    ]
    await sqlite_store.upsert_embeddings(records)
    return sqlite_store


class TestSQLiteResolution:
    @pytest.mark.asyncio
    async def test_client_side_vector_match(self, make_resolver, embedded_store, embedding_client) -> None:
        resolver = make_resolver(embedded_store, embedding_client)

        results = await resolver.resolve("the hobbit", 5)

        assert results[0].item_id == 2
        assert results[0].title == "The Hobbit"
        assert results[0].score == pytest.approx(1.0)
        assert results[0].match_method == MatchMethod.VECTOR_FALLBACK_CLIENT

    @pytest.mark.asyncio
    async def test_deleted_book_only_on_request(self, make_resolver, embedded_store, embedding_client) -> None:
        resolver = make_resolver(embedded_store, embedding_client)

        live = await resolver.resolve("wizard", 5)
        everything = await resolver.resolve("wizard", 5, SearchOptions(include_deleted=True))

        assert [r.item_id for r in live] == [1]
        assert [r.item_id for r in everything] == [1, 4]

    @pytest.mark.asyncio
    async def test_text_only_keyword_match(self, make_resolver, sqlite_store) -> None:
        resolver = make_resolver(sqlite_store)

        results = await resolver.resolve("hobbit", 5)

        assert results[0].item_id == 2
        assert results[0].match_method == MatchMethod.TEXT

    @pytest.mark.asyncio
    async def test_find_similar_excludes_source(self, make_resolver, embedded_store, embedding_client) -> None:
        resolver = make_resolver(embedded_store, embedding_client)

        results = await resolver.find_similar_to_item(2, 5)

        assert 2 not in [r.item_id for r in results]


class TestBackfillThenResolve:
    @pytest.mark.asyncio
    async def test_backfill_enables_vector_matches(
        self, make_resolver, sqlite_store, embedding_client, cache, test_model
    ) -> None:
        resolver = make_resolver(sqlite_store, embedding_client)
        backfill = EmbeddingBackfillService(sqlite_store, embedding_client, cache=cache, sleep=AsyncMock())

        before = await resolver.resolve("wizard school", 3)
        assert {r.match_method for r in before} == {MatchMethod.POPULARITY}

        progress = await backfill.run(batch_size=2)
        assert progress.processed == 3
        assert await sqlite_store.count_embeddings(test_model) == 3

        after = await resolver.resolve("wizard school", 3)
        assert after[0].item_id == 1
        assert after[0].match_method == MatchMethod.VECTOR_FALLBACK_CLIENT

        coverage = await backfill.stats()
        assert coverage.coverage_percent == 100.0
