"""Configuration module — exports Settings, load_config and ResolverConfig."""

from bookresolver.config.loader import load_config
from bookresolver.config.resolver_config import DEFAULT_THRESHOLD_LADDER, ResolverConfig
from bookresolver.config.settings import Settings

__all__ = ["DEFAULT_THRESHOLD_LADDER", "ResolverConfig", "Settings", "load_config"]
