# app/config.py

from __future__ import annotations

import logging
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Single project config. Reads environment variables.
    Pydantic v2 + pydantic-settings.
    """
    model_config = SettingsConfigDict(
        case_sensitive=False,
        extra="ignore",
    )

    # --- Core ---
    ENVIRONMENT: str = Field("dev", description="Application environment (dev, test, prod)")
    LOG_LEVEL: str = Field("INFO", description="Root logging level")

    # --- Database ---
    DATABASE_URL: str = Field(..., description="Async database connection URL (e.g., postgresql+asyncpg://...)")

    # --- Redis ---
    REDIS_URL: str = Field("redis://redis:6379/0", description="URL for Redis connection (distributed slot locks)")

    # --- JWT ---
    JWT_SECRET_KEY: str = Field(..., description="Secret key for signing JWT tokens")
    JWT_ALGORITHM: str = Field("HS256", description="Algorithm for JWT signing")
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(60 * 24 * 7, description="JWT access token lifetime in minutes")

    # --- Swap engine ---
    SLOT_LOCK_BACKEND: Literal["local", "redis"] = Field(
        "local", description="Per-slot lock backend ('local' for one worker, 'redis' for many)"
    )
    SLOT_LOCK_TIMEOUT_SECONDS: float = Field(
        5.0, description="Upper bound on waiting for a slot lock before failing with Busy"
    )

    @model_validator(mode='after')
    def check_lock_timeout(self) -> 'Settings':
        if self.SLOT_LOCK_TIMEOUT_SECONDS <= 0:
            raise ValueError("SLOT_LOCK_TIMEOUT_SECONDS must be positive")
        return self


try:
    settings = Settings()
    log.info("Settings loaded successfully for ENVIRONMENT=%s", settings.ENVIRONMENT)
    log.debug("Loaded settings: DB URL=%s..., lock backend=%s, lock timeout=%.1fs",
              str(settings.DATABASE_URL)[:25],
              settings.SLOT_LOCK_BACKEND,
              settings.SLOT_LOCK_TIMEOUT_SECONDS)
except Exception as e:
    log.exception("Failed to instantiate Settings.")
    raise e
