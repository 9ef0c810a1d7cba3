"""Configuration helpers for Tenant Broker."""

from .settings import (
    AZURE_CLI_CLIENT_ID,
    DEFAULT_MANAGEMENT_SCOPES,
    ORGANIZATIONS_AUTHORITY,
    Settings,
    SettingsManager,
    SignInMode,
)

__all__ = [
    "AZURE_CLI_CLIENT_ID",
    "DEFAULT_MANAGEMENT_SCOPES",
    "ORGANIZATIONS_AUTHORITY",
    "Settings",
    "SettingsManager",
    "SignInMode",
]
