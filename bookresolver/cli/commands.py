"""Command-line interface for bookresolver.

Usage::

    python -m bookresolver.cli recommend "kouzelnická škola" --limit 5
    python -m bookresolver.cli recommend "Hobit" --threshold 0.8
    python -m bookresolver.cli backfill --batch-size 50 --limit 500
    python -m bookresolver.cli stats
    python -m bookresolver.cli import-csv data/books.csv

Each handler receives the parsed arguments and the component dict from
:func:`bookresolver.main.build_components` and returns a process exit code.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any

from bookresolver.config.settings import Settings
from bookresolver.models.recommendation import SearchOptions
from bookresolver.providers.cache.memory_cache import MutationOperation
from bookresolver.providers.catalog.sqlite_catalog_store import SQLiteCatalogStore
from bookresolver.utils.csv_import import read_book_rows
from bookresolver.utils.errors import BookResolverError
from bookresolver.utils.logging import configure_logging


async def _prepare_store(components: dict[str, Any]) -> None:
    store = components["catalog_store"]
    if isinstance(store, SQLiteCatalogStore):
        await store.initialize()


async def _close(components: dict[str, Any]) -> None:
    http_client = components.get("http_client")
    if http_client is not None:
        await http_client.aclose()


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


async def _handle_recommend(args: argparse.Namespace, components: dict[str, Any]) -> int:
    resolver = components["resolver"]
    options = SearchOptions(similarity_threshold=args.threshold)
    try:
        results = await resolver.resolve(args.query, args.limit, options)
    except BookResolverError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    if not results:
        print("No recommendations found.")
        return 0

    print(f"Recommendations for: {args.query!r}")
    print("=" * 60)
    for position, result in enumerate(results, start=1):
        print(
            f"{position:>3}. [{result.item_id}] {result.title}"
            f"  score={result.score:.3f}  method={result.match_method.value}"
        )
    return 0


async def _handle_backfill(args: argparse.Namespace, components: dict[str, Any]) -> int:
    backfill = components.get("backfill")
    if backfill is None:
        print(
            "Error: no embedding provider configured (set OPENAI_API_KEY or EMBEDDING_ENDPOINT_URL).",
            file=sys.stderr,
        )
        return 1

    pending = await backfill.items_needing_embeddings(args.limit)
    print(f"Books needing embeddings: {len(pending)}")
    if not pending:
        return 0

    progress = await backfill.run(batch_size=args.batch_size, limit=args.limit)
    print("\nBackfill complete:")
    print(f"  Processed:       {progress.processed}/{progress.total}")
    print(f"  Failed batches:  {len(progress.errors)}")
    print(f"  Estimated cost:  ${progress.estimated_cost:.4f}")
    print(f"  Time:            {progress.processing_time_ms / 1000:.1f}s")
    for error in progress.errors:
        print(f"    {error}")
    return 0 if not progress.errors else 2


async def _handle_stats(args: argparse.Namespace, components: dict[str, Any]) -> int:
    stats = await components["resolver"].stats()
    print("Resolver Statistics")
    print("=" * 40)
    print(f"  Embedding model:   {stats.model_name}")
    print(f"  Embeddings:        {stats.total_embeddings}")
    print(f"  Text-only mode:    {stats.text_only}")
    print(f"  Cache entries:     {stats.cache_size}")

    backfill = components.get("backfill")
    if backfill is not None:
        coverage = await backfill.stats()
        print(f"  Active books:      {coverage.total_items}")
        print(f"  Coverage:          {coverage.coverage_percent:.2f}%")
    return 0


async def _handle_import_csv(args: argparse.Namespace, components: dict[str, Any]) -> int:
    store = components["catalog_store"]
    if not isinstance(store, SQLiteCatalogStore):
        print("Error: import-csv requires CATALOG_BACKEND=sqlite.", file=sys.stderr)
        return 1

    try:
        rows, errors = read_book_rows(args.path)
    except OSError as exc:
        print(f"Error: cannot read {args.path}: {exc}", file=sys.stderr)
        return 1

    print(f"Importing {len(rows)} books from {args.path}")
    imported = await store.upsert_books(rows)
    await components["cache"].invalidate_on_mutation("books", MutationOperation.INSERT)

    print(f"  Imported:  {imported}")
    print(f"  Rejected:  {len(errors)}")
    for error in errors[:20]:
        print(f"    {error}")
    if len(errors) > 20:
        print(f"    ... and {len(errors) - 20} more")
    return 0 if not errors else 2


_HANDLERS = {
    "recommend": _handle_recommend,
    "backfill": _handle_backfill,
    "stats": _handle_stats,
    "import-csv": _handle_import_csv,
}


async def run_command(args: argparse.Namespace, components: dict[str, Any]) -> int:
    """Prepare the store, dispatch *args.command* and release shared clients."""
    try:
        await _prepare_store(components)
        return await _HANDLERS[args.command](args, components)
    finally:
        await _close(components)


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m bookresolver.cli",
        description="Book recommendation resolver tools.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    recommend_parser = subparsers.add_parser("recommend", help="Recommend books for a query")
    recommend_parser.add_argument("query", help="Free-text request (title, author, genre, mood)")
    recommend_parser.add_argument("--limit", type=int, default=10, help="Maximum results (default: 10)")
    recommend_parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Fixed similarity threshold instead of the ladder",
    )

    backfill_parser = subparsers.add_parser("backfill", help="Embed books that have no embedding")
    backfill_parser.add_argument("--batch-size", type=int, default=50, dest="batch_size")
    backfill_parser.add_argument("--limit", type=int, default=None, help="Maximum books to embed")

    subparsers.add_parser("stats", help="Show embedding and cache statistics")

    import_parser = subparsers.add_parser("import-csv", help="Import a catalog CSV into SQLite")
    import_parser.add_argument("path", help="CSV file with id,title,... columns")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """CLI entry point: parse arguments, build components, run the command."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    app_settings = Settings()
    configure_logging(log_level=app_settings.log_level)

    # Deferred so that --help does not import the provider SDKs.
    from bookresolver.main import build_components

    try:
        components = build_components(app_settings)
    except BookResolverError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    sys.exit(asyncio.run(run_command(args, components)))


if __name__ == "__main__":
    main()
