"""Supabase (PostgREST) catalog store over httpx.

Talks to the production catalog through Supabase's REST layer:

* ``GET /rest/v1/books`` with ``ilike`` filters for keyword search,
* ``GET /rest/v1/book_embeddings`` (embedded ``books`` join) for the bulk
  embedding read, paged with ``limit``/``offset``,
* ``POST /rest/v1/rpc/search_similar_books`` as the native pgvector search,
* ``POST /rest/v1/book_embeddings?on_conflict=book_id,model`` for upserts.

pgvector columns come back as strings (``"[0.1,0.2,...]"``) and are parsed
with :func:`parse_vector`.  The live-row filter sends
``or=(deleted_at.is.null,deleted_at.eq.)`` so that both soft-delete
encodings count as live.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any

import httpx

from bookresolver.interfaces.catalog_store import ICatalogStore
from bookresolver.models.catalog import CatalogItem, EmbeddingRecord
from bookresolver.models.recommendation import ScoredItem
from bookresolver.utils.errors import CatalogStoreError, VectorSearchUnavailableError
from bookresolver.utils.logging import get_logger

_PROVIDER_NAME = "supabase_catalog"
_BOOK_SELECT = "id,title,master_mother_id,great_grandmother_id,misspelled,deleted_at"
_LIVE_FILTER = "(deleted_at.is.null,deleted_at.eq.)"
_PAGE_SIZE = 1000
# PostgREST error code for "function not found in the schema cache".
_MISSING_FUNCTION_CODE = "PGRST202"


def parse_vector(value: Any) -> list[float]:
    """Decode a pgvector value (JSON-style string or list) into floats."""
    if isinstance(value, str):
        value = json.loads(value)
    if not isinstance(value, list):
        raise ValueError(f"Unexpected vector payload type: {type(value).__name__}")
    return [float(v) for v in value]


def _format_vector(vector: list[float]) -> str:
    return "[" + ",".join(repr(float(v)) for v in vector) + "]"


def _row_to_item(row: dict[str, Any]) -> CatalogItem:
    return CatalogItem(
        id=row["id"],
        title=row["title"],
        parent_id=row.get("master_mother_id"),
        root_id=row.get("great_grandmother_id"),
        is_variant_spelling=bool(row.get("misspelled")),
        deleted_at=row.get("deleted_at"),
    )


def _ilike_pattern(term: str) -> str:
    # PostgREST uses * as the wildcard; drop characters that would break the filter.
    cleaned = "".join(ch for ch in term.strip() if ch not in "*,()")
    return f"*{cleaned}*"


class SupabaseCatalogStore(ICatalogStore):
    """Catalog store backed by a Supabase project.

    Parameters
    ----------
    http_client:
        Injected ``httpx.AsyncClient`` (timeouts are configured on it).
    base_url:
        Supabase project URL, e.g. ``https://xyz.supabase.co``.
    service_key:
        Service-role key, sent as both ``apikey`` and bearer token.
    match_function:
        Name of the pgvector RPC.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        service_key: str,
        match_function: str = "search_similar_books",
    ) -> None:
        self._http = http_client
        self._base_url = base_url.rstrip("/")
        self._rest_url = f"{self._base_url}/rest/v1"
        self._service_key = service_key
        self._match_function = match_function
        self._logger = get_logger(__name__)

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
        if not term.strip() or limit <= 0:
            return []
        params = self._book_filters(include_deleted, exclude_ids)
        params.update({"title": f"ilike.{_ilike_pattern(term)}", "limit": str(limit)})
        rows = await self._get("books", params)
        return [_row_to_item(r) for r in rows]

    async def fetch_all_embeddings(
        self,
        model_name: str,
        include_deleted: bool = False,
    ) -> list[EmbeddingRecord]:
        params = {
            "select": "book_id,model,embedding,books!inner(title,deleted_at)",
            "model": f"eq.{model_name}",
            "order": "book_id.asc",
        }
        if not include_deleted:
            params["books.or"] = _LIVE_FILTER

        records: list[EmbeddingRecord] = []
        for row in await self._get_all("book_embeddings", params):
            book = row.get("books") or {}
            flags = CatalogItem(id=row["book_id"], title=book.get("title", ""), deleted_at=book.get("deleted_at"))
            try:
                vector = parse_vector(row["embedding"])
            except (ValueError, TypeError) as exc:
                self._logger.warning("embedding_row_unparseable", book_id=row["book_id"], error=str(exc))
                continue
            records.append(
                EmbeddingRecord(
                    item_id=row["book_id"],
                    model_name=row["model"],
                    vector=vector,
                    title=flags.title,
                    is_deleted=flags.is_deleted,
                )
            )
        return records

    async def get_by_id(self, item_id: int) -> CatalogItem | None:
        rows = await self._get("books", {"select": _BOOK_SELECT, "id": f"eq.{item_id}", "limit": "1"})
        return _row_to_item(rows[0]) if rows else None

    async def popular_items(
        self,
        limit: int,
        include_deleted: bool = False,
        exclude_ids: Iterable[int] = (),
    ) -> list[CatalogItem]:
        if limit <= 0:
            return []
        params = self._book_filters(include_deleted, exclude_ids)
        params.update({"order": "id.asc", "limit": str(limit)})
        rows = await self._get("books", params)
        return [_row_to_item(r) for r in rows]

    def supports_vector_search(self) -> bool:
        return True

    async def vector_search(
        self,
        query_vector: list[float],
        model_name: str,
        threshold: float,
        limit: int,
        include_deleted: bool = False,
    ) -> list[ScoredItem]:
        """Call the pgvector RPC.  The function itself excludes deleted books."""
        payload = {
            "query_embedding": _format_vector(query_vector),
            "similarity_threshold": threshold,
            "max_results": limit,
        }
        url = f"{self._rest_url}/rpc/{self._match_function}"
        try:
            response = await self._http.post(url, json=payload, headers=self._headers())
        except httpx.HTTPError as exc:
            raise CatalogStoreError(
                message=f"Vector search RPC failed: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc

        if response.status_code == 404 or _error_code(response) == _MISSING_FUNCTION_CODE:
            raise VectorSearchUnavailableError(
                message=f"RPC {self._match_function} is not deployed",
                provider_name=_PROVIDER_NAME,
            )
        self._raise_for_status(response, "vector search")

        return [
            ScoredItem(
                item_id=row["book_id"],
                title=row.get("title", ""),
                score=float(row["similarity_score"]),
            )
            for row in response.json() or []
        ]

    # ------------------------------------------------------------------
    # Backfill / statistics
    # ------------------------------------------------------------------

    async def items_missing_embeddings(
        self,
        model_name: str,
        limit: int | None = None,
    ) -> list[CatalogItem]:
        books = await self._get_all(
            "books",
            {"select": _BOOK_SELECT, "or": _LIVE_FILTER, "order": "id.asc"},
        )
        embedded = await self._get_all(
            "book_embeddings",
            {"select": "book_id", "model": f"eq.{model_name}", "order": "book_id.asc"},
        )
        have = {row["book_id"] for row in embedded}
        missing = [_row_to_item(r) for r in books if r["id"] not in have]
        return missing if limit is None else missing[:limit]

    async def upsert_embeddings(self, records: list[EmbeddingRecord]) -> int:
        if not records:
            return 0
        body = [
            {"book_id": r.item_id, "model": r.model_name, "embedding": _format_vector(r.vector)}
            for r in records
        ]
        headers = self._headers()
        headers["Prefer"] = "resolution=merge-duplicates,return=minimal"
        try:
            response = await self._http.post(
                f"{self._rest_url}/book_embeddings",
                params={"on_conflict": "book_id,model"},
                json=body,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            raise CatalogStoreError(
                message=f"Embedding upsert failed: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc
        self._raise_for_status(response, "embedding upsert")
        self._logger.info("embeddings_upserted", count=len(records), model=records[0].model_name)
        return len(records)

    async def count_items(self, include_deleted: bool = False) -> int:
        params = {"select": "id", "limit": "1"}
        if not include_deleted:
            params["or"] = _LIVE_FILTER
        return await self._count("books", params)

    async def count_embeddings(self, model_name: str) -> int:
        return await self._count("book_embeddings", {"select": "id", "model": f"eq.{model_name}", "limit": "1"})

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def get_provider_name(self) -> str:
        return _PROVIDER_NAME

    def is_available(self) -> bool:
        return bool(self._base_url and self._service_key)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self._service_key,
            "Authorization": f"Bearer {self._service_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    @staticmethod
    def _book_filters(include_deleted: bool, exclude_ids: Iterable[int]) -> dict[str, str]:
        params = {"select": _BOOK_SELECT}
        if not include_deleted:
            params["or"] = _LIVE_FILTER
        ids = sorted(set(exclude_ids))
        if ids:
            params["id"] = "not.in.(" + ",".join(str(i) for i in ids) + ")"
        return params

    def _raise_for_status(self, response: httpx.Response, operation: str) -> None:
        if response.status_code >= 300:
            raise CatalogStoreError(
                message=f"Supabase {operation} returned HTTP {response.status_code}: {response.text[:200]}",
                provider_name=_PROVIDER_NAME,
            )

    async def _get(self, table: str, params: dict[str, str]) -> list[dict[str, Any]]:
        try:
            response = await self._http.get(
                f"{self._rest_url}/{table}", params=params, headers=self._headers()
            )
        except httpx.HTTPError as exc:
            raise CatalogStoreError(
                message=f"Supabase query on {table} failed: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc
        self._raise_for_status(response, f"query on {table}")
        return response.json() or []

    async def _get_all(self, table: str, params: dict[str, str]) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        offset = 0
        while True:
            page = await self._get(table, {**params, "limit": str(_PAGE_SIZE), "offset": str(offset)})
            rows.extend(page)
            if len(page) < _PAGE_SIZE:
                return rows
            offset += _PAGE_SIZE

    async def _count(self, table: str, params: dict[str, str]) -> int:
        headers = self._headers()
        headers["Prefer"] = "count=exact"
        try:
            response = await self._http.get(f"{self._rest_url}/{table}", params=params, headers=headers)
        except httpx.HTTPError as exc:
            raise CatalogStoreError(
                message=f"Supabase count on {table} failed: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc
        self._raise_for_status(response, f"count on {table}")
        # Content-Range: "0-0/1234" or "*/0"
        content_range = response.headers.get("content-range", "")
        total = content_range.rsplit("/", 1)[-1]
        if not total.isdigit():
            raise CatalogStoreError(
                message=f"Supabase count on {table} returned no total",
                provider_name=_PROVIDER_NAME,
            )
        return int(total)


def _error_code(response: httpx.Response) -> str | None:
    if response.status_code < 400:
        return None
    try:
        body = response.json()
    except ValueError:
        return None
    return body.get("code") if isinstance(body, dict) else None
