"""Live sales agent configuration"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# === Path Configuration ===
PACKAGE_DIR = Path(__file__).parent.parent
PROJECT_DIR = PACKAGE_DIR.parent

# 24h rolling window shared by platform quotas and per-user entry expiry
DAY_SECONDS = 24 * 60 * 60

FALLBACK_MODELS: list[str] = [
    "deepseek/deepseek-r1-0528:free",
    "z-ai/glm-4.5-air:free",
    "meta-llama/llama-3.3-70b-instruct:free",
]


@dataclass(frozen=True)
class RateLimitConfig:
    """Limits enforced by the RateLimiter."""

    max_responses_per_user: int = 3
    max_responses_per_session: int = 100
    min_response_delay_seconds: float = 30.0
    twitch_whispers_per_day: int = 40
    youtube_quota_per_day: int = 10_000


class LiveSalesSettings(BaseSettings):
    """Live sales agent settings"""

    model_config = SettingsConfigDict(
        env_file=PROJECT_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # OpenRouter AI (intent classification and reply generation)
    openrouter_api_key: str = Field(default="", description="OpenRouter API key")
    openrouter_model: str = Field(
        default="tngtech/deepseek-r1t2-chimera:free", description="OpenRouter model"
    )
    classifier_timeout: float = Field(default=10.0, gt=0, description="Classifier call timeout")

    # Database (optional; interactions are only logged when empty)
    database_url: str = Field(default="", description="PostgreSQL database URL")

    # Rate limits
    max_responses_per_user: int = Field(default=3, ge=0)
    max_responses_per_session: int = Field(default=100, ge=0)
    min_response_delay_seconds: float = Field(default=30.0, ge=0)
    twitch_whispers_per_day: int = Field(default=40, ge=0)
    youtube_quota_per_day: int = Field(default=10_000, ge=0)

    # Session runtime
    cleanup_interval_seconds: float = Field(default=600.0, gt=0)
    stop_timeout_seconds: float = Field(default=10.0, gt=0)
    send_timeout_seconds: float = Field(default=10.0, gt=0)
    default_poll_interval: float = Field(default=5.0, gt=0)
    adapter_max_retries: int = Field(default=5, ge=0)

    # Environment
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate database URL starts with postgresql:// when set"""
        if v and not v.startswith(("postgresql://", "postgres://")):
            raise ValueError("DATABASE_URL must start with 'postgresql://'")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            logger.warning(f"Invalid log level '{v}', defaulting to INFO")
            return "INFO"
        return v_upper

    def rate_limit_config(self) -> RateLimitConfig:
        return RateLimitConfig(
            max_responses_per_user=self.max_responses_per_user,
            max_responses_per_session=self.max_responses_per_session,
            min_response_delay_seconds=self.min_response_delay_seconds,
            twitch_whispers_per_day=self.twitch_whispers_per_day,
            youtube_quota_per_day=self.youtube_quota_per_day,
        )


@lru_cache
def get_settings() -> LiveSalesSettings:
    """Get cached settings instance"""
    return LiveSalesSettings()
