"""Centralized application configuration."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SAGE_", env_file=".env", extra="ignore"
    )

    # Data storage path (used by file-backed graph storage)
    data_path: Path = Path("data")

    # Logging
    log_level: str = "INFO"

    # Traversal bounds
    max_traversal_results: int = 1000
    default_path_max_depth: int = 6
    hierarchy_depth: int = 5

    # Default result sizes
    default_search_limit: int = 20
    default_top_concepts_limit: int = 10
    due_review_limit: int = 20

    # Review interval clamp (days)
    min_interval_days: float = 1.0
    max_interval_days: float = 365.0


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton."""
    return Settings()
