"""
Settings for Contractor Billing

Each section reads its own prefixed environment variables (and .env)
through pydantic-settings. Sections are built on access, so one bad
value only invalidates its own section.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageSettings(BaseSettings):
    """JSON file storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="BILLING_STORAGE_",
        extra="ignore"
    )

    data_dir: Path = Field(
        default=Path("data"),
        description="Directory holding one JSON file per collection"
    )


class InvoicingSettings(BaseSettings):
    """Invoice numbering and consistency-check configuration."""

    model_config = SettingsConfigDict(
        env_prefix="BILLING_INVOICING_",
        extra="ignore"
    )

    number_prefix: str = Field(
        default="INV",
        min_length=1,
        max_length=10,
        description="Prefix of every allocated invoice number"
    )
    number_width: int = Field(
        default=5,
        ge=1,
        le=12,
        description="Zero-padded width of the numeric part"
    )
    default_payment_term_days: int = Field(
        default=10,
        ge=0,
        le=365,
        description="Payment terms used when neither client nor settings store define them"
    )
    drift_tolerance: Decimal = Field(
        default=Decimal("0.01"),
        ge=0,
        description="Largest money difference not reported as drift"
    )
    reuse_released_numbers: bool = Field(
        default=True,
        description="Hand a released number out again after unconfirm"
    )

    @field_validator('number_prefix')
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        """Reject digits so the numeric part can be parsed back out."""
        v = v.strip()
        if any(c.isdigit() for c in v):
            raise ValueError("Invoice number prefix cannot contain digits")
        return v


class AppSettings(BaseSettings):
    """Runtime environment and log output."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Deployment name stamped on startup log lines"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Minimum level written by the structured logger"
    )
    log_json: bool = Field(
        default=True,
        description="Render log lines as JSON (console renderer otherwise)"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class Settings(BaseSettings):
    """Entry point to the storage, invoicing and app sections."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def invoicing(self) -> InvoicingSettings:
        return InvoicingSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """Process-wide Settings; tests reset it with get_settings.cache_clear()."""
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Build every section once and report which ones load.

    Failed sections also get a '<name>_error' entry with the message.
    """
    results = {}
    settings = get_settings()

    for name in ("storage", "invoicing", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
