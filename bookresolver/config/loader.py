"""YAML configuration loader with environment variable overrides.

# ─── CONFIGURATION HIERARCHY ───────────────────────────────────────────
#
# Configuration is loaded in layers (later layers override earlier):
#
#   1. config/config.yaml  — Static tuning defaults checked into the repo
#   2. .env file           — Local developer overrides (not committed)
#   3. Environment vars    — Set at deploy time
#
# load_config() reads the YAML file first, then deep-merges the
# environment-derived values on top:
#   base = {"resolver": {"max_ai_attempts": 3}}
#   overrides = {"resolver": {"cache_ttl": 60.0}}
#   result = {"resolver": {"max_ai_attempts": 3, "cache_ttl": 60.0}}
# ──────────────────────────────────────────────────────────────────────
"""

from pathlib import Path

import yaml

from bookresolver.config.settings import Settings


def load_config(path: str = "config/config.yaml", settings: Settings | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Environment variables (via Settings) override YAML values where keys overlap.

    Args:
        path: Path to the YAML configuration file.
        settings: Pre-built settings; a fresh ``Settings()`` is read when omitted.

    Returns:
        Fully resolved configuration dictionary.
    """
    config_path = Path(path)
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            yaml_config = yaml.safe_load(f) or {}
    else:
        yaml_config = {}

    settings = settings or Settings()
    env_overrides = {
        "app": {
            "host": settings.app_host,
            "port": settings.app_port,
            "env": settings.app_env,
        },
        "llm": {
            "available_providers": settings.get_available_llm_providers(),
            "timeout": settings.llm_timeout,
        },
        "embedding": {
            "model": settings.openai_embedding_model,
            "dimension": settings.embedding_dimension,
            "requests_per_minute": settings.embedding_requests_per_minute,
            "max_retries": settings.embedding_max_retries,
            "timeout": settings.embedding_timeout,
        },
        "catalog": {
            "backend": settings.catalog_backend,
            "db_path": settings.catalog_db_path,
            "match_function": settings.supabase_match_function,
        },
        "cache": {
            "max_size": settings.cache_max_size,
            "sweep_interval": settings.cache_sweep_interval,
        },
        "resolver": {
            "embedding_model": settings.openai_embedding_model,
            "cache_ttl": settings.recommendation_cache_ttl,
        },
        "logging": {
            "level": settings.log_level,
        },
    }

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
