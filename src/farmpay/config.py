"""Configuration management for farmpay."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    """Application settings loaded from environment."""

    database_url: str
    authorization_timeout: float
    payroll_max_concurrency: int
    platform_fee_user_id: str
    host: str
    port: int
    debug: bool
    log_level: str

    def __post_init__(self) -> None:
        if self.authorization_timeout <= 0:
            raise ValueError("AUTHORIZATION_TIMEOUT_SECONDS must be positive")
        if self.payroll_max_concurrency < 1:
            raise ValueError("PAYROLL_MAX_CONCURRENCY must be at least 1")

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment variables."""
        load_dotenv()

        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./farmpay.db"),
            authorization_timeout=float(os.getenv("AUTHORIZATION_TIMEOUT_SECONDS", "120")),
            payroll_max_concurrency=int(os.getenv("PAYROLL_MAX_CONCURRENCY", "5")),
            platform_fee_user_id=os.getenv("PLATFORM_FEE_USER_ID", "platform"),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8000")),
            debug=os.getenv("DEBUG", "false").lower() == "true",
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings.from_env()
