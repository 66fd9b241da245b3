from __future__ import annotations

import httpx
import pytest

from docvault.core.config import get_settings
from docvault.core.errors import AuthenticationMissingError, AuthorizationDeniedError
from docvault.providers.backend.http import HttpBackend
from docvault.services.auth.authorizer import BearerAuth
from docvault.services.auth.credentials import CredentialStore
from docvault.tests.utils.tokens import make_token


@pytest.mark.asyncio
async def test_bearer_header_follows_store(tmp_path) -> None:
    store = CredentialStore(tmp_path / "credentials.json")
    seen: list[str | None] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers.get("Authorization"))
        return httpx.Response(200, json={})

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler), auth=BearerAuth(store), base_url="http://dms.test"
    ) as client:
        await client.get("/documents")
        store.login("token-1")
        await client.get("/documents")
        store.logout()
        await client.get("/documents")

    assert seen == [None, "Bearer token-1", None]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "error"),
    [(401, AuthenticationMissingError), (403, AuthorizationDeniedError)],
)
async def test_auth_failures_are_surfaced_without_retry(monkeypatch, tmp_path, status, error) -> None:
    monkeypatch.setenv("API_RETRY_MAX_ATTEMPTS", "3")
    monkeypatch.setenv("API_RETRY_BACKOFF_MS", "1")
    get_settings.cache_clear()
    store = CredentialStore(tmp_path / "credentials.json")
    store.login(make_token())
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(status, json={"message": "nope"})

    backend = HttpBackend(base_url="http://dms.test/api", store=store, transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(error):
            await backend.get_document("doc-1")
    finally:
        await backend.aclose()
    assert calls["count"] == 1
