"""Application configuration using pydantic-settings."""
from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BillingSettings(BaseSettings):
    """Configuration values for the billing ledger."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = Field(default="Hospital Billing Ledger")
    currency: str = Field(default="INR", min_length=3, max_length=3)
    hospital_name: str = Field(default="City General Hospital")
    hospital_gstin: str = Field(default="29ABCDE1234F1Z5")
    hospital_state: str = Field(
        default="Karnataka",
        description="State of the hospital; supplies elsewhere are billed as IGST.",
    )
    default_due_days: int = Field(default=15, ge=0)
    conflict_retries: int = Field(
        default=3,
        ge=0,
        description="Times a write is re-read and re-applied after a version conflict.",
    )
    catalog_match_threshold: float = Field(default=80.0, ge=0, le=100)
    seed_demo_data: bool = Field(
        default=True,
        description="Seed the in-memory ledger with illustrative demo invoices.",
    )
    max_entries_returned: int = Field(default=200)
    template_dir: Path = Field(default=Path(__file__).parent / "rendering" / "templates")
    redact_phi: bool = Field(default=True)

    @field_validator("currency")
    @classmethod
    def _uppercase_currency(cls, value: str) -> str:
        return value.upper()


_settings: BillingSettings | None = None


def get_settings() -> BillingSettings:
    """Return a cached instance of the application settings."""

    global _settings
    if _settings is None:
        _settings = BillingSettings()
    return _settings


__all__ = ["BillingSettings", "get_settings"]
