"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup — if a setting is malformed, the app fails fast with a clear
error message.

Usage:
    from secure_swap.config import get_settings
    settings = get_settings()
    print(settings.database_url)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from secure_swap.domain.identifiers import normalize_address


class Settings(BaseSettings):
    """Central configuration for the SecureSwap escrow service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 3000

    # --- Database ---
    database_url: str = "sqlite+aiosqlite:///./secure_swap.db"
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False
    db_create_tables: bool = True

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"
    redis_idempotency_ttl_seconds: int = 86400  # 24 hours

    # --- Signing identities ---
    # The service signs every state-changing call as one of these principals.
    signer_address: str = "0x" + "5" * 40
    signer_private_key: str = ""
    arbiter_address: str = "0x" + "a" * 40
    # JSON object mapping API key -> principal address, e.g.
    # API_CREDENTIALS='{"buyer-key": "0xB0B...", "arbiter-key": "0xAAA..."}'
    api_credentials: dict[str, str] = {}

    # --- Settlement backend ---
    settlement_backend: Literal["simulated", "http"] = "simulated"
    settlement_url: str = "http://localhost:8545"
    settlement_timeout_seconds: float = 30.0
    settlement_poll_interval_seconds: float = 0.5
    settlement_request_timeout_seconds: float = 10.0
    escrow_contract_address: str = ""

    # --- Escrow rules ---
    asset_decimals: int = 18
    dispute_remainder_policy: Literal["seller", "buyer", "counterparty"] = "seller"

    @field_validator("signer_address", "arbiter_address")
    @classmethod
    def _normalize_principal(cls, value: str) -> str:
        return normalize_address(value)

    @field_validator("api_credentials")
    @classmethod
    def _normalize_credentials(cls, value: dict[str, str]) -> dict[str, str]:
        return {key: normalize_address(addr) for key, addr in value.items()}

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
