"""Configuration package."""

from lastwish.config.settings import (
    AppSettings,
    DeliverySettings,
    SMTPSettings,
    Settings,
    SupabaseSettings,
    check_send_budget,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "DeliverySettings",
    "SMTPSettings",
    "Settings",
    "SupabaseSettings",
    "check_send_budget",
    "get_settings",
    "validate_all_settings",
]
