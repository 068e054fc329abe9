"""Application settings."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, PostgresDsn, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Core configuration for the irrigation relay."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    env: Literal["development", "staging", "production"] = "development"
    app_name: str = "irrigation-relay"
    host: str = "0.0.0.0"
    port: int = 3000

    # History sink is disabled unless a database is configured.
    database_url: PostgresDsn | None = None
    db_pool_size: int = Field(default=5, ge=1)

    history_capacity: int = Field(default=100, ge=1)
    peer_queue_size: int = Field(default=64, ge=1)
    persist_queue_size: int = Field(default=1000, ge=1)
    scoring_policy_path: Path | None = None

    log_level: str = "INFO"
    log_json: bool = False

    # Use a string field to avoid JSON parsing by pydantic-settings
    cors_allowed_origins_str: str = Field(default="http://localhost:5173", alias="CORS_ALLOWED_ORIGINS")

    # This field is populated by the validator, not from env vars
    cors_allowed_origins: list[str] = Field(
        default=["http://localhost:5173"],
        validation_alias="__cors_allowed_origins_internal__",
    )

    @model_validator(mode="after")
    def parse_cors_origins(self) -> "Settings":
        """Parse CORS origins from comma-separated string after model initialization."""
        value = self.cors_allowed_origins_str
        if value:
            self.cors_allowed_origins = [origin.strip() for origin in value.split(",") if origin.strip()]
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
