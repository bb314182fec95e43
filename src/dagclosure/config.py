# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2026 dagclosure Contributors

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    database_url: str = "sqlite+aiosqlite:///./dagclosure.db"
    environment: str = "production"
    log_level: str = "info"
    log_format: str = "json"
    cors_origins: list[str] = []
    database_pool_size: int = 20

    # Upper bound on |ancestors(u) + 1| * |descendants(v) + 1| for one edge change.
    max_propagation_pairs: int = 250_000

    model_config = {"env_file": ".env", "env_prefix": "DAGCLOSURE_"}

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, value: str) -> str:
        if value not in ("json", "text"):
            raise ValueError("log_format must be 'json' or 'text'")
        return value

    @field_validator("max_propagation_pairs")
    @classmethod
    def _validate_max_pairs(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_propagation_pairs must be positive")
        return value


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance. Lazy-loaded to avoid import-time failures."""
    return Settings()
