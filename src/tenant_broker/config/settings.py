from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from dotenv import load_dotenv
from platformdirs import user_cache_dir, user_config_dir

APP_NAME = "TenantBroker"
ENV_PREFIX = "TENANT_BROKER_"
ENV_FILE_NAME = "settings.env"

# Azure CLI's first-party public client; pre-consented for ARM in every tenant.
AZURE_CLI_CLIENT_ID = "04b07795-8ddb-461a-bbee-02f9e1bf7b46"
ORGANIZATIONS_AUTHORITY = "https://login.microsoftonline.com/organizations"
TENANT_AUTHORITY_TEMPLATE = "https://login.microsoftonline.com/{tenant_id}"
MANAGEMENT_ENDPOINT = "https://management.azure.com"
# The doubled slash matches the audience ARM issues tokens for.
DEFAULT_MANAGEMENT_SCOPES: tuple[str, ...] = ("https://management.azure.com//.default",)
TENANTS_API_VERSION = "2022-12-01"
SUBSCRIPTIONS_API_VERSION = "2022-12-01"


class SignInMode(StrEnum):
    INTERACTIVE = "interactive"
    DEVICE_CODE = "device_code"


def _config_dir() -> Path:
    path = Path(user_config_dir(APP_NAME, roaming=True))
    path.mkdir(parents=True, exist_ok=True)
    return path


def cache_dir() -> Path:
    path = Path(user_cache_dir(APP_NAME))
    path.mkdir(parents=True, exist_ok=True)
    return path


def log_dir() -> Path:
    path = cache_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


@dataclass(slots=True)
class Settings:
    """Public client registration and endpoints used for a discovery run."""

    client_id: str = AZURE_CLI_CLIENT_ID
    authority: str = ORGANIZATIONS_AUTHORITY
    authority_template: str = TENANT_AUTHORITY_TEMPLATE
    management_endpoint: str = MANAGEMENT_ENDPOINT
    management_scopes: list[str] = field(
        default_factory=lambda: list(DEFAULT_MANAGEMENT_SCOPES)
    )
    tenants_api_version: str = TENANTS_API_VERSION
    subscriptions_api_version: str = SUBSCRIPTIONS_API_VERSION
    sign_in_mode: SignInMode = SignInMode.INTERACTIVE
    dump_cache: bool = False
    timeout_seconds: float | None = None

    def tenant_authority(self, tenant_id: str) -> str:
        """Return the authority URL for a discovered tenant."""
        if not tenant_id:
            raise ValueError("Tenant id is required to build an authority")
        return self.authority_template.format(tenant_id=tenant_id)


class SettingsManager:
    """Load settings from the environment with a dotenv file fallback."""

    def __init__(self, env_file: Path | None = None) -> None:
        self._env_file = env_file

    @property
    def env_file(self) -> Path:
        if self._env_file is None:
            self._env_file = _config_dir() / ENV_FILE_NAME
        return self._env_file

    def load(self) -> Settings:
        load_dotenv(self.env_file, override=False)

        settings = Settings()
        client_id = self._get_env("CLIENT_ID")
        if client_id:
            settings.client_id = client_id
        authority = self._get_env("AUTHORITY")
        if authority:
            settings.authority = authority
        template = self._get_env("AUTHORITY_TEMPLATE")
        if template:
            settings.authority_template = template
        endpoint = self._get_env("MANAGEMENT_ENDPOINT")
        if endpoint:
            settings.management_endpoint = endpoint.rstrip("/")
        scopes = self._get_scopes_from_env()
        if scopes:
            settings.management_scopes = scopes
        mode = self._get_env("SIGN_IN_MODE")
        if mode:
            settings.sign_in_mode = SignInMode(mode.strip().lower())
        settings.dump_cache = self._get_flag("DUMP_CACHE")
        timeout = self._get_env("TIMEOUT_SECONDS")
        if timeout:
            settings.timeout_seconds = float(timeout)
        return settings

    def _get_env(self, name: str) -> str | None:
        return os.getenv(f"{ENV_PREFIX}{name}") or None

    def _get_flag(self, name: str) -> bool:
        raw = self._get_env(name)
        if raw is None:
            return False
        return raw.strip().lower() in {"1", "true", "yes", "on"}

    def _get_scopes_from_env(self) -> list[str] | None:
        raw = self._get_env("SCOPES")
        if not raw:
            return None
        scopes = [scope.strip() for scope in raw.split(";") if scope.strip()]
        return scopes or None


__all__ = [
    "AZURE_CLI_CLIENT_ID",
    "DEFAULT_MANAGEMENT_SCOPES",
    "ORGANIZATIONS_AUTHORITY",
    "Settings",
    "SettingsManager",
    "SignInMode",
    "cache_dir",
    "log_dir",
]
