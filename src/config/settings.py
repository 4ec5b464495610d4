"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/calls.db",
        description="SQLAlchemy connection string.",
    )

    # Migrations / schema
    auto_create_db_schema: bool = Field(
        default=True,
        description="If true, creates tables automatically on startup (useful for local/dev).",
    )

    # Ringing
    ring_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="How long an unanswered call rings before timing out.",
    )

    # Matchmaking policy
    language_wildcard: bool = Field(
        default=False,
        description="If true, an unset language matches any language instead of disqualifying.",
    )
    duplicate_ring_policy: Literal["reject", "collapse"] = Field(
        default="reject",
        description=(
            "What happens when B rings A while A is already ringing B: "
            "'reject' answers busy, 'collapse' accepts A's pending call."
        ),
    )

    # Billing
    billing_payer_gender: str = Field(
        default="male",
        description="Gender charged per accepted call. Empty disables charging.",
    )
    billing_earner_gender: str = Field(
        default="female",
        description="Gender credited for completed call time. Empty disables earning.",
    )
    billing_call_cost: int = Field(default=100, ge=0)
    billing_earn_block_seconds: int = Field(default=300, gt=0)
    billing_earn_units_per_block: int = Field(default=1, ge=0)
    starting_coins: int = Field(default=0, ge=0, description="Balance granted on signup.")

    data_dir: Path = Field(default=Path("./data"))

    @field_validator("billing_payer_gender", "billing_earner_gender")
    @classmethod
    def normalize_gender(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("data_dir")
    @classmethod
    def ensure_data_dir(cls, value: Path) -> Path:
        value.mkdir(parents=True, exist_ok=True)
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
