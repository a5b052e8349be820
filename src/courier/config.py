"""Courier settings, read from ``COURIER_*`` environment variables or ``.env``.

Example:
    COURIER_STORAGE_BACKEND=qdrant
    COURIER_QDRANT_URL=http://qdrant:6333
    COURIER_RETRY_BASE_DELAY_MS=2000
"""

import logging
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

Backend = Literal["memory", "qdrant"]


class Settings(BaseSettings):
    """Runtime configuration for the forwarding service and its API."""

    model_config = SettingsConfigDict(
        env_prefix="COURIER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    env: Literal["development", "production", "test"] = "development"
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "json"

    # Where events, targets and deliveries live. "memory" is lost on restart.
    storage_backend: Backend = "memory"
    qdrant_url: str = "http://localhost:6333"
    qdrant_api_key: str | None = None
    collection_prefix: str = Field(
        default="courier",
        description="Collections are named {prefix}_events, {prefix}_targets, {prefix}_deliveries",
    )

    user_agent: str = "courier-webhook-forwarder/1.0"
    max_concurrent_deliveries: int = Field(default=10, ge=1, le=500)

    # Attempt k > 1 waits min(max, base * 2**(k-1)) ms plus up to jitter ms
    retry_base_delay_ms: int = Field(default=5000, ge=0)
    retry_max_delay_ms: int = Field(default=60 * 60 * 1000, ge=0)
    retry_jitter_ms: int = Field(default=1000, ge=0)
    response_snippet_limit: int = Field(
        default=1000,
        ge=1,
        description="Characters of response body or error text kept per delivery",
    )

    sweep_interval_seconds: float = Field(default=30.0, gt=0)
    sweep_batch_size: int = Field(default=100, ge=1, le=10_000)

    @model_validator(mode="after")
    def _cap_not_below_base(self) -> "Settings":
        if self.retry_max_delay_ms < self.retry_base_delay_ms:
            raise ValueError(
                f"retry_max_delay_ms ({self.retry_max_delay_ms}) is below "
                f"retry_base_delay_ms ({self.retry_base_delay_ms})"
            )
        return self

    @model_validator(mode="after")
    def _warn_volatile_production_store(self) -> "Settings":
        if self.env == "production" and self.storage_backend == "memory":
            logger.warning(
                "Production env with in-memory store; pending deliveries do not survive restart"
            )
        return self


settings = Settings()
