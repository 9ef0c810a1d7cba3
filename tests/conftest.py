from __future__ import annotations

import pytest

from tenant_broker.auth import TokenCacheStore
from tenant_broker.config import Settings
from tenant_broker.utils import LoggingOptions, configure_logging

from tests.factories import install_stub_msal, make_account_record, make_settings
from tests.stubs import StubAppRegistry


configure_logging(LoggingOptions(level="WARNING", write_file=False))


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def store() -> TokenCacheStore:
    """Fresh shared token store for a single test."""

    return TokenCacheStore()


@pytest.fixture
def stub_registry(monkeypatch: pytest.MonkeyPatch) -> StubAppRegistry:
    """Replace msal.PublicClientApplication with per-authority stubs."""

    registry = StubAppRegistry(accounts=[make_account_record()])
    return install_stub_msal(monkeypatch, registry)
