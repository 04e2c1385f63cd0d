"""Configuration settings for cardsync."""

from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from cardsync.types import PURGE_WINDOW_DAYS


def default_home() -> Path:
    return Path.home() / ".cardsync"


class Settings(BaseSettings):
    """Application settings loaded from environment (``CARDSYNC_*``) and ``.env``."""

    model_config = SettingsConfigDict(
        env_prefix="CARDSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Local storage
    home: Path = default_home()
    db_path: Optional[Path] = None  # Defaults to <home>/entries.db
    fallback_path: Optional[Path] = None  # Defaults to <home>/entries.json

    # Remote row store (Supabase)
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    remote_table: str = "knowledge_entries"
    remote_timeout: float = 15.0  # seconds per remote call

    # Sync
    sync_interval: float = 30.0  # seconds between timer-triggered cycles
    purge_window_days: int = PURGE_WINDOW_DAYS

    # Content generation
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"

    # Review weights keyed by mastery level value
    review_weights: Dict[int, int] = {0: 10, 1: 5, 2: 1, -1: 5}

    @property
    def resolved_db_path(self) -> Path:
        return self.db_path or self.home / "entries.db"

    @property
    def resolved_fallback_path(self) -> Path:
        return self.fallback_path or self.home / "entries.json"

    @property
    def purge_window_ms(self) -> int:
        return self.purge_window_days * 24 * 60 * 60 * 1000

    @property
    def has_remote(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
