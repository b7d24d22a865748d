"""Tuning knobs for :class:`~bookresolver.services.recommendation_resolver.RecommendationResolver`.

Built from the ``resolver`` section of the merged configuration.  The
threshold ladder must be non-empty, strictly descending and inside [0, 1];
an invalid section fails fast at startup with ``ConfigurationError``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from bookresolver.utils.errors import ConfigurationError

DEFAULT_THRESHOLD_LADDER: tuple[float, ...] = (0.9, 0.8, 0.7, 0.6, 0.5)


class ResolverConfig(BaseModel):
    """Immutable resolver configuration."""

    model_config = ConfigDict(frozen=True)

    threshold_ladder: tuple[float, ...] = DEFAULT_THRESHOLD_LADDER
    max_ai_attempts: int = Field(default=3, ge=1)
    # Suggestions processed concurrently within one ladder tier.
    max_concurrency: int = Field(default=4, ge=1)
    default_limit: int = Field(default=10, ge=1)
    max_limit: int = Field(default=100, ge=1)
    # Text-fallback scores are capped at fallback_discount * threshold.
    fallback_discount: float = Field(default=0.8, gt=0.0, lt=1.0)
    # Largest bonus the first LLM suggestion can add; well below one ladder step.
    max_rank_bonus: float = Field(default=0.02, ge=0.0, le=0.05)
    popularity_score: float = Field(default=0.5, ge=0.0, le=1.0)
    embedding_model: str = "text-embedding-3-small"
    cache_ttl: float = Field(default=300.0, gt=0.0)
    # Per outbound call (LLM, catalog RPC); None disables the limit.
    call_timeout: float | None = 20.0

    @field_validator("threshold_ladder")
    @classmethod
    def _check_ladder(cls, ladder: tuple[float, ...]) -> tuple[float, ...]:
        if not ladder:
            raise ValueError("threshold_ladder must not be empty")
        for value in ladder:
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"threshold {value} is outside [0, 1]")
        for higher, lower in zip(ladder, ladder[1:]):
            if lower >= higher:
                raise ValueError("threshold_ladder must be strictly descending")
        return ladder

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> ResolverConfig:
        """Build from the merged configuration dict (the ``resolver`` section)."""
        section = {k: v for k, v in (config.get("resolver") or {}).items() if v is not None}
        try:
            return cls(**section)
        except ValidationError as exc:
            raise ConfigurationError(
                message=f"Invalid resolver configuration: {exc}",
            ) from exc
