"""Configuration package."""

from contractor_billing.config.settings import (
    AppSettings,
    InvoicingSettings,
    Settings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "InvoicingSettings",
    "Settings",
    "StorageSettings",
    "get_settings",
    "validate_all_settings",
]
