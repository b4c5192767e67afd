"""Configuration management using pydantic-settings."""

import os
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from naversign.signing.engine import DEFAULT_COST, SignatureMode, SigningOptions


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="NAVERSIGN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server
    host: str = Field(
        default="0.0.0.0",
        description="Host for the signature HTTP server",
    )
    port: int = Field(
        default=3000,
        description="Port for the signature HTTP server",
    )
    environment: Literal["production", "development"] = Field(
        default="production",
        description="Deployment environment; development adds stack traces to error bodies",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Log level name",
    )
    log_json: bool = Field(
        default=True,
        description="Render logs as JSON lines (console renderer when False)",
    )

    # Signing
    signature_mode: SignatureMode = Field(
        default=SignatureMode.DIRECT_SALT,
        description="Output mode: direct_salt, generated_salt or base64_wrapped",
    )
    bcrypt_cost: int = Field(
        default=DEFAULT_COST,
        ge=4,
        le=31,
        description="bcrypt cost factor for generated salts",
    )
    strict_timestamp: bool = Field(
        default=True,
        description="Require the timestamp to be a non-negative integer of epoch milliseconds",
    )
    allow_mode_override: bool = Field(
        default=True,
        description="Allow requests to select a signature mode with a 'mode' field",
    )

    # HTTP surface
    debug_endpoint_enabled: bool = Field(
        default=True,
        description="Expose POST /debug, which echoes request bodies and headers",
    )
    cors_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Allowed CORS origins (JSON list)",
    )

    # Concurrency
    hash_workers: int = Field(
        default_factory=lambda: os.cpu_count() or 1,
        ge=1,
        description="Max concurrent bcrypt computations (defaults to CPU count)",
    )
    hash_timeout_seconds: float | None = Field(
        default=None,
        description="Deadline for a single bcrypt computation (None = no deadline)",
    )

    @property
    def is_development(self) -> bool:
        """Whether verbose error bodies are enabled."""
        return self.environment == "development"

    def signing_options(self, mode: SignatureMode | None = None) -> SigningOptions:
        """Build engine options from settings, optionally overriding the mode."""
        return SigningOptions(
            mode=mode or self.signature_mode,
            cost=self.bcrypt_cost,
            strict_timestamp=self.strict_timestamp,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
