# =============================================================================
# bookresolver/cli/__init__.py — CLI Module Overview
# =============================================================================
#
# Command-line tools for operators, run as `python -m bookresolver.cli`.
# All commands build the same components as the web app (main.build_components)
# so the CLI and the API always agree on providers and embedding model.
#
#   recommend QUERY   resolve a request and print the ranked books
#   backfill          embed catalog books that have no embedding yet
#   stats             embedding coverage and cache statistics
#   import-csv PATH   load a catalog CSV export into the SQLite store
# =============================================================================
