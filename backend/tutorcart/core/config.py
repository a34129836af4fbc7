# backend/tutorcart/core/config.py
import logging
import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_BACKEND_ROOT = Path(__file__).resolve().parents[2]


# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = _BACKEND_ROOT / ".env"
    logger.debug("[CONFIG] Looking for .env at: %s (exists=%s)", env_path, env_path.exists())
    load_dotenv(env_path)


CheckoutPricePolicy = Literal["reprice", "honor_quote"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TUTORCART_",
        case_sensitive=False,
        extra="ignore",
    )

    environment: str = Field(default="development", description="Deployment environment tag")
    log_level: str = Field(default="INFO", description="Root logging level")

    database_url: str = Field(
        default=f"sqlite:///{_BACKEND_ROOT / 'tutorcart.db'}",
        description="SQLAlchemy database URL",
    )
    db_echo: bool = Field(default=False, description="Echo SQL statements")
    db_retry_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts for a transaction that hits a transient storage failure",
    )

    # Slot holds
    hold_ttl_minutes: int = Field(
        default=15,
        gt=0,
        description="Minutes an unrenewed slot hold stays live",
    )

    # Pricing / checkout
    currency: str = Field(default="cad", description="ISO currency sent to the processor")
    checkout_price_policy: CheckoutPricePolicy = Field(
        default="reprice",
        description=(
            "reprice: checkout recomputes line prices from current catalog rates; "
            "honor_quote: checkout keeps the price captured when the item was added"
        ),
    )

    # Payment processor
    stripe_secret_key: str | None = Field(default=None, description="Stripe API secret key")

    @field_validator("currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        cleaned = (value or "").strip().lower()
        if len(cleaned) != 3:
            raise ValueError("currency must be a 3-letter ISO code")
        return cleaned

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return (value or "INFO").strip().upper()

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


settings = Settings()
