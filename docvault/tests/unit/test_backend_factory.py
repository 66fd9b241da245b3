from __future__ import annotations

import pytest

from docvault.core.config import get_settings
from docvault.core.errors import BackendConfigError
from docvault.providers.backend.factory import get_document_backend
from docvault.providers.backend.fake import InMemoryBackend
from docvault.providers.backend.http import HttpBackend


@pytest.mark.parametrize(("provider", "expected"), [("http", HttpBackend), ("FAKE", InMemoryBackend)])
def test_factory_selects_backend(monkeypatch, provider: str, expected: type) -> None:
    monkeypatch.setenv("BACKEND_PROVIDER", provider)
    get_settings.cache_clear()
    assert isinstance(get_document_backend(), expected)


def test_factory_rejects_unknown_provider(monkeypatch) -> None:
    monkeypatch.setenv("BACKEND_PROVIDER", "carrier-pigeon")
    get_settings.cache_clear()
    with pytest.raises(BackendConfigError):
        get_document_backend()
