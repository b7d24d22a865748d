"""Catalog data models for bookresolver.

Defines Pydantic v2 models for catalog books and their precomputed
embeddings.  All models use frozen config: the resolver reads catalog
records but never mutates them.

Soft-delete normalization
-------------------------
The catalog's ``deleted_at`` column is encoded inconsistently: some rows
carry ``NULL`` for a live book, others an empty string.  Both mean "not
deleted".  :func:`is_deleted_marker` is the single place that decides,
and :class:`CatalogItem` computes ``is_deleted`` from it exactly once at
construction, so store adapters and downstream services only ever look at
the boolean.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


def is_deleted_marker(value: Any) -> bool:
    """Return ``True`` when a raw ``deleted_at`` value marks a deleted row.

    ``None`` and blank strings mean the row is live; any other value
    (a timestamp string or ``datetime``) means it was soft-deleted.
    """
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


# ---------------------------------------------------------------------------
# CatalogItem — one book row.
# ---------------------------------------------------------------------------
class CatalogItem(BaseModel):
    """A single book in the catalog.

    ``parent_id`` / ``root_id`` are the genealogy links of the original
    catalog (``master_mother_id`` / ``great_grandmother_id``); they are kept
    for grouping but play no part in ranking.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    # Direct parent in the title genealogy (e.g. the correctly spelled edition).
    parent_id: int | None = None
    # Root of the genealogy tree.
    root_id: int | None = None
    # True when the title is a known misspelling of another catalog entry.
    is_variant_spelling: bool = False
    # Raw marker as stored; None or "" both mean "live".
    deleted_at: str | None = None
    # Derived from ``deleted_at``; always recomputed, never trusted from input.
    is_deleted: bool = False

    @model_validator(mode="before")
    @classmethod
    def _normalize_deletion(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            raw = data.get("deleted_at")
            if raw is not None and not isinstance(raw, str):
                raw = str(raw)
                data["deleted_at"] = raw
            data["is_deleted"] = is_deleted_marker(raw)
        return data


# ---------------------------------------------------------------------------
# EmbeddingRecord — one (item, model) vector.
# ---------------------------------------------------------------------------
class EmbeddingRecord(BaseModel):
    """A precomputed embedding for one catalog item under one model.

    Unique on ``(item_id, model_name)``.  ``title`` is denormalized from the
    catalog when the store returns it alongside the vector so that ranked
    results can be built without a second lookup.
    """

    model_config = ConfigDict(frozen=True)

    item_id: int
    model_name: str
    vector: list[float] = Field(default_factory=list)
    title: str | None = None
    # Whether the referenced catalog item is soft-deleted.
    is_deleted: bool = False
