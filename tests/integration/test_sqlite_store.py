"""Integration tests for SQLiteCatalogStore against a real database file."""

from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio

from bookresolver.models.catalog import EmbeddingRecord
from bookresolver.providers.catalog.sqlite_catalog_store import SQLiteCatalogStore
from bookresolver.utils.errors import VectorSearchUnavailableError

MODEL = "test-embedding-model"


def _row(book_id: int | None, title: str, deleted_at: str | None = None, **extra) -> dict:
    return {"id": book_id, "title": title, "deleted_at": deleted_at, **extra}


@pytest_asyncio.fixture
async def store(tmp_path: Path) -> SQLiteCatalogStore:
    sqlite_store = SQLiteCatalogStore(db_path=tmp_path / "nested" / "catalog.db")
    await sqlite_store.initialize()
    await sqlite_store.upsert_books(
        [
            _row(1, "Harry Potter a Kámen mudrců"),
            _row(2, "ČARODĚJ ZE ZEMĚMOŘÍ"),
            _row(3, "Hobit", master_mother_id=9, great_grandmother_id=9, misspelled=True),
            _row(4, "Zapomenutý hobit", deleted_at="2024-03-01T10:00:00+00:00"),
            _row(5, "Hobit 2", deleted_at=""),
            _row(6, "100% pravda_"),
        ]
    )
    return sqlite_store


# ---------------------------------------------------------------------------
# Schema and books
# ---------------------------------------------------------------------------


class TestSchemaAndBooks:
    @pytest.mark.asyncio
    async def test_initialize_creates_file(self, store: SQLiteCatalogStore, tmp_path: Path) -> None:
        assert (tmp_path / "nested" / "catalog.db").exists()
        assert store.is_available() is True
        assert store.get_provider_name() == "sqlite_catalog"
        assert store.supports_vector_search() is False

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, store: SQLiteCatalogStore) -> None:
        await store.initialize()
        assert await store.count_items(include_deleted=True) == 6

    @pytest.mark.asyncio
    async def test_genealogy_and_flags_round_trip(self, store: SQLiteCatalogStore) -> None:
        item = await store.get_by_id(3)

        assert item is not None
        assert item.parent_id == 9
        assert item.root_id == 9
        assert item.is_variant_spelling is True

    @pytest.mark.asyncio
    async def test_upsert_updates_existing_and_assigns_ids(self, store: SQLiteCatalogStore) -> None:
        await store.upsert_books([_row(1, "Harry Potter and the Philosopher's Stone"), _row(None, "Dune")])

        assert (await store.get_by_id(1)).title == "Harry Potter and the Philosopher's Stone"
        assert (await store.get_by_id(7)).title == "Dune"

    @pytest.mark.asyncio
    async def test_missing_book(self, store: SQLiteCatalogStore) -> None:
        assert await store.get_by_id(404) is None


# ---------------------------------------------------------------------------
# Keyword search and popularity
# ---------------------------------------------------------------------------


class TestKeywordSearch:
    @pytest.mark.asyncio
    async def test_unicode_case_insensitive(self, store: SQLiteCatalogStore) -> None:
        items = await store.search_by_keyword("čaroděj", 10)
        assert [i.id for i in items] == [2]

    @pytest.mark.asyncio
    async def test_blank_deleted_at_is_live(self, store: SQLiteCatalogStore) -> None:
        items = await store.search_by_keyword("hobit", 10)
        assert sorted(i.id for i in items) == [3, 5]

    @pytest.mark.asyncio
    async def test_include_deleted(self, store: SQLiteCatalogStore) -> None:
        items = await store.search_by_keyword("HOBIT", 10, include_deleted=True)
        assert sorted(i.id for i in items) == [3, 4, 5]
        assert {i.id for i in items if i.is_deleted} == {4}

    @pytest.mark.asyncio
    async def test_exclusions_and_limit(self, store: SQLiteCatalogStore) -> None:
        assert [i.id for i in await store.search_by_keyword("hobit", 10, exclude_ids=[3])] == [5]
        assert len(await store.search_by_keyword("hobit", 1)) == 1

    @pytest.mark.asyncio
    async def test_wildcards_are_literal(self, store: SQLiteCatalogStore) -> None:
        assert [i.id for i in await store.search_by_keyword("100%", 10)] == [6]
        assert [i.id for i in await store.search_by_keyword("pravda_", 10)] == [6]
        assert await store.search_by_keyword("hobi_", 10) == []

    @pytest.mark.asyncio
    async def test_blank_term(self, store: SQLiteCatalogStore) -> None:
        assert await store.search_by_keyword("   ", 10) == []

    @pytest.mark.asyncio
    async def test_popular_items_in_id_order(self, store: SQLiteCatalogStore) -> None:
        items = await store.popular_items(3, exclude_ids=[2])
        assert [i.id for i in items] == [1, 3, 5]

    @pytest.mark.asyncio
    async def test_counts_skip_deleted(self, store: SQLiteCatalogStore) -> None:
        assert await store.count_items() == 5
        assert await store.count_items(include_deleted=True) == 6


# ---------------------------------------------------------------------------
# Embeddings
# ---------------------------------------------------------------------------


class TestEmbeddings:
    @pytest.mark.asyncio
    async def test_vector_search_unavailable(self, store: SQLiteCatalogStore) -> None:
        with pytest.raises(VectorSearchUnavailableError):
            await store.vector_search([1.0, 0.0], MODEL, 0.8, 5)

    @pytest.mark.asyncio
    async def test_upsert_and_fetch(self, store: SQLiteCatalogStore) -> None:
        await store.upsert_embeddings(
            [
                EmbeddingRecord(item_id=1, model_name=MODEL, vector=[1.0, 0.0]),
                EmbeddingRecord(item_id=4, model_name=MODEL, vector=[0.0, 1.0]),
                EmbeddingRecord(item_id=2, model_name="other-model", vector=[0.5, 0.5]),
            ]
        )

        live = await store.fetch_all_embeddings(MODEL)
        everything = await store.fetch_all_embeddings(MODEL, include_deleted=True)

        assert [r.item_id for r in live] == [1]
        assert live[0].title == "Harry Potter a Kámen mudrců"
        assert live[0].vector == [1.0, 0.0]
        assert [(r.item_id, r.is_deleted) for r in everything] == [(1, False), (4, True)]
        assert await store.count_embeddings(MODEL) == 2

    @pytest.mark.asyncio
    async def test_upsert_replaces_vector(self, store: SQLiteCatalogStore) -> None:
        await store.upsert_embeddings([EmbeddingRecord(item_id=1, model_name=MODEL, vector=[1.0, 0.0])])
        await store.upsert_embeddings([EmbeddingRecord(item_id=1, model_name=MODEL, vector=[0.0, 1.0])])

        records = await store.fetch_all_embeddings(MODEL)

        assert len(records) == 1
        assert records[0].vector == [0.0, 1.0]

    @pytest.mark.asyncio
    async def test_items_missing_embeddings(self, store: SQLiteCatalogStore) -> None:
        await store.upsert_embeddings([EmbeddingRecord(item_id=3, model_name=MODEL, vector=[1.0])])

        missing = await store.items_missing_embeddings(MODEL)

        assert [i.id for i in missing] == [1, 2, 5, 6]
        assert [i.id for i in await store.items_missing_embeddings(MODEL, limit=2)] == [1, 2]
        assert [i.id for i in await store.items_missing_embeddings("other-model")] == [1, 2, 3, 5, 6]

    @pytest.mark.asyncio
    async def test_empty_upsert(self, store: SQLiteCatalogStore) -> None:
        assert await store.upsert_embeddings([]) == 0
