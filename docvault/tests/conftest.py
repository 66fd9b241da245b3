from __future__ import annotations

import pytest

from docvault.core.config import get_settings
from docvault.services import telemetry
from docvault.services.auth.credentials import get_credential_store


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path) -> None:
    # Keep credentials out of the home directory and rebuild cached singletons per test.
    monkeypatch.setenv("CREDENTIAL_STORE_PATH", str(tmp_path / "credentials.json"))
    monkeypatch.delenv("AUTH_DEV_BYPASS", raising=False)
    monkeypatch.delenv("BACKEND_PROVIDER", raising=False)
    get_settings.cache_clear()
    get_credential_store.cache_clear()
    telemetry.reset()
    yield
    get_settings.cache_clear()
    get_credential_store.cache_clear()
