"""Domain services: embedding client, similarity engine, query expander,
recommendation resolver and the embedding backfill job.

Import the concrete modules directly (``from
bookresolver.services.recommendation_resolver import RecommendationResolver``);
this package deliberately re-exports nothing so that store adapters can use
:mod:`bookresolver.services.similarity_engine` without pulling in the resolver.
"""
