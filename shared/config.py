"""
Centralized configuration for Roster Sync.

All settings are loaded from environment variables with sensible defaults.
Provider-specific settings are namespaced (e.g., SUPABASE_*, MEMORY_*).
"""

from functools import lru_cache
from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Which identity provider / document store pair to build
    provider_backend: Literal["memory", "supabase"] = "memory"

    # Supabase (client side, so only the anon key)
    supabase_url: str = ""
    supabase_anon_key: str = ""

    # Document store layout
    profiles_collection: str = "users"
    members_collection: str = "usuarios"

    # Session behaviour
    min_password_length: int = 6
    send_verification_on_register: bool = True

    # In-memory identity provider
    memory_token_secret: str = "roster-sync-local-secret"
    memory_token_ttl_seconds: int = 3600


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
