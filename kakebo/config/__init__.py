"""Configuration package."""

from kakebo.config.settings import (
    AppSettings,
    GeminiSettings,
    GoogleSheetsSettings,
    PolicySettings,
    SearchMode,
    SearchSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GeminiSettings",
    "GoogleSheetsSettings",
    "PolicySettings",
    "SearchMode",
    "SearchSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
