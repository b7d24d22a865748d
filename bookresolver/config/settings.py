"""Application settings loaded from environment variables via pydantic-settings.

# ─── HOW SETTINGS WORK ─────────────────────────────────────────────────
#
# pydantic-settings reads configuration from two sources (in priority order):
#
#   1. **Environment variables** — e.g., OPENAI_API_KEY=sk-abc123
#   2. **.env file** — key=value lines in the project root .env file
#
# Field ``openai_api_key`` maps to env var ``OPENAI_API_KEY``.  Defaults
# apply when neither source sets a value.  Secrets (API keys, the Supabase
# service-role key) live only here, never in config.yaml.
# ──────────────────────────────────────────────────────────────────────
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """bookresolver application settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === LLM / Embedding Providers ===
    # Empty string = "not configured" → main.py skips that provider.
    openai_api_key: str = ""
    openai_base_url: str = ""  # Custom base URL for OpenAI-compatible APIs
    openai_text_model: str = ""  # Override the expansion model (default gpt-4o-mini)
    openai_embedding_model: str = "text-embedding-3-small"
    anthropic_api_key: str = ""
    # Plain HTTP embedding endpoint (POST {text, model}); used when no OpenAI key is set.
    embedding_endpoint_url: str = ""

    # === Embedding Client ===
    embedding_dimension: int = 1536
    embedding_requests_per_minute: int = 3500
    embedding_max_retries: int = 3
    embedding_timeout: float = 15.0
    llm_timeout: float = 20.0

    # === Catalog Store ===
    # One of: "sqlite", "supabase", "memory".
    catalog_backend: str = "sqlite"
    catalog_db_path: str = "data/catalog.db"
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_match_function: str = "search_similar_books"

    # === Cache ===
    recommendation_cache_ttl: float = 300.0  # 5 minutes
    cache_max_size: int = 1000
    cache_sweep_interval: float = 600.0  # 10 minutes

    # === App Config ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"

    def get_available_llm_providers(self) -> list[str]:
        """Return a list of LLM provider names that have non-empty API keys configured."""
        providers: list[str] = []
        if self.anthropic_api_key:
            providers.append("anthropic")
        if self.openai_api_key:
            providers.append("openai")
        return providers
