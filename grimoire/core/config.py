"""Compiler and runtime configuration."""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from the environment (``GRIMOIRE_*``) or a ``.env`` file."""

    # Compilation
    chatty: bool = False
    emit_comments: bool = False
    swapped_suffix: str = "__Swapped"

    # Matching
    max_use_depth: int = 32

    # Logging
    log_level: str = "WARNING"

    # Paths
    spellbook_dir: str = "spellbooks"

    model_config = SettingsConfigDict(
        env_prefix="GRIMOIRE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
