"""API-layer configuration loaded from environment variables."""

from __future__ import annotations

from enum import Enum
from typing import Self

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PlatformEnv(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class APISettings(BaseSettings):
    """FastAPI application settings.

    All values can be overridden via environment variables prefixed with
    ``API_`` (e.g. ``API_GATEWAY_API_KEY=...``) or through a ``.env`` file
    in the working directory.  Engine constants (plan limit fallback, price
    table, timezone) live in :class:`ledger_core.config.LedgerSettings`.
    """

    model_config = SettingsConfigDict(
        env_prefix="API_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    platform_env: PlatformEnv = PlatformEnv.DEV

    # Origins permitted by the CORS middleware.
    cors_origins: list[str] = ["http://localhost:3000"]
    cors_allow_credentials: bool = True

    # Structured JSON logging.
    structured_logging: bool = False

    # Usage metering provider.
    metering_base_url: str = "https://api.gptmaker.ai/v2"
    metering_api_token: SecretStr = SecretStr("")
    metering_timeout: float = 10.0

    # Payment gateway.
    gateway_base_url: str = "https://api.asaas.com/v3"
    gateway_api_key: SecretStr = SecretStr("")
    gateway_timeout: float = 15.0
    gateway_max_retries: int = Field(default=2, ge=0)
    gateway_retry_base_delay: float = Field(default=0.5, gt=0.0)

    # Monthly reset background loop.
    reset_scheduler_enabled: bool = False
    reset_check_interval_seconds: float = Field(default=3600.0, gt=0.0)

    @model_validator(mode="after")
    def _validate_cors_credentials_not_wildcard(self) -> Self:
        """Reject wildcard origins when credentials are enabled.

        Browsers reject ``Access-Control-Allow-Origin: *`` together with
        credentials, so fail at startup instead.
        """
        if self.cors_allow_credentials and "*" in self.cors_origins:
            raise ValueError(
                "Cannot use wildcard origins with credentials. "
                "Specify explicit origins instead of '*' when cors_allow_credentials=True."
            )
        return self


def load_api_settings() -> APISettings:
    """Construct settings from the environment / ``.env`` file."""
    return APISettings()
