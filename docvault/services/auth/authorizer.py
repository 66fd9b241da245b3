from __future__ import annotations

from typing import Generator

import httpx

from docvault.services.auth.credentials import CredentialStore, get_credential_store


class BearerAuth(httpx.Auth):
    """Attach the stored bearer token to every outbound request.

    The token is read per request from a store snapshot, so a login or logout
    takes effect on the next call without rebuilding the HTTP client. Requests
    go out unmodified while no session exists. A 401 is not retried here; the
    transport surfaces it to the caller.
    """

    def __init__(self, store: CredentialStore | None = None) -> None:
        self._store = store or get_credential_store()

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        token = self._store.snapshot().token
        if token:
            request.headers["Authorization"] = f"Bearer {token}"
        yield request
