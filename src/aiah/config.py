"""Application settings via pydantic-settings. Loads from environment and .env file."""

from __future__ import annotations

import pathlib

from pydantic import model_validator
from pydantic_settings import BaseSettings

PACKAGE_ROOT = pathlib.Path(__file__).resolve().parent

STARTER_PACK_PATH = PACKAGE_ROOT / "data" / "starter_pack.yaml"

DEFAULT_AI_MODEL = "claude-haiku-4-5-20251001"


class Settings(BaseSettings):
    """AI Against Humanity configuration.

    All values can be overridden via environment variables or .env file.
    """

    # External services
    anthropic_api_key: str = ""
    redis_url: str = ""

    # Credential encryption: hex-encoded 32-byte AES-256 key
    encryption_key: str = ""

    # Database
    database_url: str = "sqlite+aiosqlite:///aiah.db"

    # Environment
    aiah_env: str = "development"

    # AI generation
    aiah_ai_model: str = DEFAULT_AI_MODEL
    aiah_ai_max_tokens: int = 50
    aiah_provider_timeout_seconds: float = 20.0

    # Shared-credential rate limits, scoped per game
    aiah_rate_limit_per_minute: int = 10
    aiah_rate_limit_per_day: int = 100
    aiah_rate_limit_fail_open: bool = True

    # Round liveness timeouts (0 disables)
    aiah_submit_timeout_seconds: int = 60
    aiah_judge_timeout_seconds: int = 120

    # Cards
    aiah_seed_starter_pack: bool = True

    # Logging
    aiah_log_level: str = "INFO"

    model_config = {"env_prefix": "", "env_file": ".env", "extra": "ignore"}

    @model_validator(mode="after")
    def _check_encryption_key(self) -> Settings:
        """Reject malformed keys everywhere and a missing key in production."""
        if self.encryption_key:
            try:
                raw = bytes.fromhex(self.encryption_key)
            except ValueError:
                raw = b""
            if len(raw) != 32:
                msg = "ENCRYPTION_KEY must be a hex-encoded 32-byte value (64 hex characters)"
                raise ValueError(msg)
        elif self.aiah_env == "production":
            msg = (
                "ENCRYPTION_KEY must be set in production. "
                "Generate one with: python -c "
                '"import secrets; print(secrets.token_hex(32))"'
            )
            raise ValueError(msg)
        return self

    @property
    def is_production(self) -> bool:
        return self.aiah_env == "production"
