from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./rcn.db"
    database_echo: bool = False
    log_level: str = "INFO"

    # OpenTelemetry export (spans are dropped when neither is configured)
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_console_export: bool = False

    # Internal API security (booking collaborator, shop dashboard backend)
    internal_api_key: str = ""

    # Redemption sessions
    redemption_session_ttl_seconds: int = 5 * 60
    redemption_cross_shop_ratio: float = 0.20
    redemption_signature_brand: str = "RepairCoin"

    # Session sweeper (garbage collection only; expiry is evaluated lazily)
    redemption_session_sweeper_enabled: bool = False
    redemption_session_sweep_interval_seconds: int = 60
    redemption_session_sweep_limit: int = 500

    # Customer tiers derived from lifetime earnings
    customer_tier_silver_threshold: int = 200
    customer_tier_gold_threshold: int = 1000

    # No-show policy
    noshow_caution_threshold: int = 2
    noshow_deposit_threshold: int = 3
    noshow_suspension_threshold: int = 5
    noshow_caution_advance_booking_hours: int = 24
    noshow_deposit_advance_booking_hours: int = 48
    noshow_deposit_amount: float = 25.0
    noshow_deposit_reset_after_successful: int = 3
    noshow_max_redemption_percent: int = 80
    noshow_suspension_days: int = 30
    noshow_dispute_window_days: int = 7
    noshow_dispute_min_reason_length: int = 10
    noshow_resolution_min_notes_length: int = 10
    noshow_auto_approve_first_dispute: bool = True

    @field_validator("redemption_cross_shop_ratio")
    @classmethod
    def _validate_ratio(cls, value: float) -> float:
        if not 0 <= value <= 1:
            raise ValueError("redemption_cross_shop_ratio must be between 0 and 1")
        return value

    @field_validator("noshow_max_redemption_percent")
    @classmethod
    def _validate_percent(cls, value: int) -> int:
        if not 0 <= value <= 100:
            raise ValueError("noshow_max_redemption_percent must be between 0 and 100")
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
