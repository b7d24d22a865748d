"""SQLite-backed catalog store.

Keeps the book catalog and its embeddings in a local SQLite database
(``data/catalog.db`` by default).  Uses ``aiosqlite`` for async I/O and
opens one short-lived connection per operation.

Embeddings are stored as JSON arrays in ``book_embeddings.embedding``;
SQLite has no vector operator, so :meth:`SQLiteCatalogStore.vector_search`
raises :class:`VectorSearchUnavailableError` and the similarity engine
ranks client-side.

SQLite's ``LIKE`` / ``lower()`` only fold ASCII, which is useless for
Czech titles ("Čaroděj").  Keyword search therefore goes through a
``py_casefold`` SQL function registered on each connection.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite
import structlog

from bookresolver.interfaces.catalog_store import ICatalogStore
from bookresolver.models.catalog import CatalogItem, EmbeddingRecord
from bookresolver.models.recommendation import ScoredItem
from bookresolver.utils.errors import CatalogStoreError, VectorSearchUnavailableError

logger = structlog.get_logger(logger_name=__name__)

_PROVIDER_NAME = "sqlite_catalog"
_DEFAULT_DB_PATH = Path("data/catalog.db")

_CREATE_BOOKS_SQL = """\
CREATE TABLE IF NOT EXISTS books (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    title                 TEXT    NOT NULL,
    master_mother_id      INTEGER,
    great_grandmother_id  INTEGER,
    misspelled            INTEGER NOT NULL DEFAULT 0,
    deleted_at            TEXT,
    created_at            TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);
"""

_CREATE_EMBEDDINGS_SQL = """\
CREATE TABLE IF NOT EXISTS book_embeddings (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    book_id     INTEGER NOT NULL REFERENCES books(id),
    model       TEXT    NOT NULL,
    embedding   TEXT    NOT NULL,
    created_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    UNIQUE(book_id, model)
);
"""

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_books_deleted ON books(deleted_at);",
    "CREATE INDEX IF NOT EXISTS idx_embeddings_model ON book_embeddings(model);",
]

# NULL and blank deleted_at both mean "live".
_LIVE_PREDICATE = "(b.deleted_at IS NULL OR TRIM(b.deleted_at) = '')"

_BOOK_COLUMNS = "b.id, b.title, b.master_mother_id, b.great_grandmother_id, b.misspelled, b.deleted_at"

_UPSERT_BOOK_SQL = """\
INSERT INTO books (id, title, master_mother_id, great_grandmother_id, misspelled, deleted_at)
VALUES (?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET title                = excluded.title,
                              master_mother_id     = excluded.master_mother_id,
                              great_grandmother_id = excluded.great_grandmother_id,
                              misspelled           = excluded.misspelled,
                              deleted_at           = excluded.deleted_at;
"""

_UPSERT_EMBEDDING_SQL = """\
INSERT INTO book_embeddings (book_id, model, embedding)
VALUES (?, ?, ?)
ON CONFLICT(book_id, model)
DO UPDATE SET embedding  = excluded.embedding,
              created_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now');
"""


def _row_to_item(row: aiosqlite.Row) -> CatalogItem:
    return CatalogItem(
        id=row["id"],
        title=row["title"],
        parent_id=row["master_mother_id"],
        root_id=row["great_grandmother_id"],
        is_variant_spelling=bool(row["misspelled"]),
        deleted_at=row["deleted_at"],
    )


def _exclusion_clause(exclude_ids: Iterable[int]) -> tuple[str, list[int]]:
    ids = sorted(set(exclude_ids))
    if not ids:
        return "", []
    placeholders = ", ".join("?" for _ in ids)
    return f" AND b.id NOT IN ({placeholders})", ids


class SQLiteCatalogStore(ICatalogStore):
    """SQLite-backed catalog with books and per-model embeddings."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        """Create the tables and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self._connect() as db:
            await db.execute(_CREATE_BOOKS_SQL)
            await db.execute(_CREATE_EMBEDDINGS_SQL)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("catalog_db_initialized", path=str(self._db_path))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def search_by_keyword(
        self,
        term: str,
        limit: int,
        include_deleted: bool = False,
        exclude_ids: Iterable[int] = (),
    ) -> list[CatalogItem]:
        needle = term.strip().casefold()
        if not needle or limit <= 0:
            return []
        escaped = needle.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")

        sql = f"SELECT {_BOOK_COLUMNS} FROM books b WHERE py_casefold(b.title) LIKE ? ESCAPE '\\'"
        params: list[Any] = [f"%{escaped}%"]
        if not include_deleted:
            sql += f" AND {_LIVE_PREDICATE}"
        exclusion, ids = _exclusion_clause(exclude_ids)
        sql += exclusion + " LIMIT ?"
        params.extend(ids)
        params.append(limit)

        rows = await self._fetchall(sql, params)
        return [_row_to_item(r) for r in rows]

    async def fetch_all_embeddings(
        self,
        model_name: str,
        include_deleted: bool = False,
    ) -> list[EmbeddingRecord]:
        sql = (
            "SELECT e.book_id, e.model, e.embedding, b.title, b.deleted_at "
            "FROM book_embeddings e JOIN books b ON b.id = e.book_id "
            "WHERE e.model = ?"
        )
        if not include_deleted:
            sql += f" AND {_LIVE_PREDICATE}"
        sql += " ORDER BY e.book_id"

        rows = await self._fetchall(sql, [model_name])
        records: list[EmbeddingRecord] = []
        for row in rows:
            item = CatalogItem(id=row["book_id"], title=row["title"], deleted_at=row["deleted_at"])
            records.append(
                EmbeddingRecord(
                    item_id=row["book_id"],
                    model_name=row["model"],
                    vector=json.loads(row["embedding"]),
                    title=row["title"],
                    is_deleted=item.is_deleted,
                )
            )
        return records

    async def get_by_id(self, item_id: int) -> CatalogItem | None:
        rows = await self._fetchall(f"SELECT {_BOOK_COLUMNS} FROM books b WHERE b.id = ?", [item_id])
        return _row_to_item(rows[0]) if rows else None

    async def popular_items(
        self,
        limit: int,
        include_deleted: bool = False,
        exclude_ids: Iterable[int] = (),
    ) -> list[CatalogItem]:
        if limit <= 0:
            return []
        sql = f"SELECT {_BOOK_COLUMNS} FROM books b WHERE 1 = 1"
        if not include_deleted:
            sql += f" AND {_LIVE_PREDICATE}"
        exclusion, ids = _exclusion_clause(exclude_ids)
        sql += exclusion + " ORDER BY b.id LIMIT ?"

        rows = await self._fetchall(sql, [*ids, limit])
        return [_row_to_item(r) for r in rows]

    def supports_vector_search(self) -> bool:
        return False

    async def vector_search(
        self,
        query_vector: list[float],
        model_name: str,
        threshold: float,
        limit: int,
        include_deleted: bool = False,
    ) -> list[ScoredItem]:
        raise VectorSearchUnavailableError(
            message="SQLite has no native vector search",
            provider_name=_PROVIDER_NAME,
        )

    # ------------------------------------------------------------------
    # Backfill / statistics
    # ------------------------------------------------------------------

    async def items_missing_embeddings(
        self,
        model_name: str,
        limit: int | None = None,
    ) -> list[CatalogItem]:
        sql = (
            f"SELECT {_BOOK_COLUMNS} FROM books b "
            f"WHERE {_LIVE_PREDICATE} AND NOT EXISTS ("
            "SELECT 1 FROM book_embeddings e WHERE e.book_id = b.id AND e.model = ?"
            ") ORDER BY b.id"
        )
        params: list[Any] = [model_name]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        rows = await self._fetchall(sql, params)
        return [_row_to_item(r) for r in rows]

    async def upsert_embeddings(self, records: list[EmbeddingRecord]) -> int:
        if not records:
            return 0
        params = [(r.item_id, r.model_name, json.dumps(r.vector)) for r in records]
        try:
            async with self._connect() as db:
                await db.executemany(_UPSERT_EMBEDDING_SQL, params)
                await db.commit()
        except aiosqlite.Error as exc:
            raise CatalogStoreError(
                message=f"Embedding upsert failed: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc
        logger.info("embeddings_upserted", count=len(records), model=records[0].model_name)
        return len(records)

    async def count_items(self, include_deleted: bool = False) -> int:
        sql = "SELECT COUNT(*) AS n FROM books b"
        if not include_deleted:
            sql += f" WHERE {_LIVE_PREDICATE}"
        rows = await self._fetchall(sql, [])
        return int(rows[0]["n"])

    async def count_embeddings(self, model_name: str) -> int:
        rows = await self._fetchall(
            "SELECT COUNT(*) AS n FROM book_embeddings WHERE model = ?", [model_name]
        )
        return int(rows[0]["n"])

    # ------------------------------------------------------------------
    # Writes used by imports and tests
    # ------------------------------------------------------------------

    async def upsert_books(self, rows: list[dict[str, Any]]) -> int:
        """Insert or update book rows (keys as produced by ``parse_book_row``)."""
        if not rows:
            return 0
        params = [
            (
                r.get("id"),
                r["title"],
                r.get("master_mother_id"),
                r.get("great_grandmother_id"),
                1 if r.get("misspelled") else 0,
                r.get("deleted_at"),
            )
            for r in rows
        ]
        try:
            async with self._connect() as db:
                await db.executemany(_UPSERT_BOOK_SQL, params)
                await db.commit()
        except aiosqlite.Error as exc:
            raise CatalogStoreError(
                message=f"Book upsert failed: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc
        logger.info("books_upserted", count=len(rows))
        return len(rows)

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def get_provider_name(self) -> str:
        return _PROVIDER_NAME

    def is_available(self) -> bool:
        return self._db_path.exists()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            await db.create_function("py_casefold", 1, _casefold, deterministic=True)
            yield db

    async def _fetchall(self, sql: str, params: list[Any]) -> list[aiosqlite.Row]:
        try:
            async with self._connect() as db:
                cursor = await db.execute(sql, params)
                return list(await cursor.fetchall())
        except aiosqlite.Error as exc:
            raise CatalogStoreError(
                message=f"Catalog query failed: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc


def _casefold(value: Any) -> str | None:
    return value.casefold() if isinstance(value, str) else value
