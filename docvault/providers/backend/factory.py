from __future__ import annotations

from docvault.core.config import get_settings
from docvault.core.errors import BackendConfigError
from docvault.providers.backend.base import DocumentBackend
from docvault.providers.backend.fake import InMemoryBackend
from docvault.providers.backend.http import HttpBackend
from docvault.services.auth.credentials import CredentialStore
from docvault.services.auth.roles import RoleResolver


def get_document_backend(
    *, store: CredentialStore | None = None, resolver: RoleResolver | None = None
) -> DocumentBackend:
    settings = get_settings()
    provider = (settings.backend_provider or "http").lower()

    if provider == "http":
        return HttpBackend(store=store)
    if provider == "fake":
        # Offline development: server rules run in process against the local session.
        return InMemoryBackend(store=store, resolver=resolver)

    raise BackendConfigError(f"Unsupported backend provider: {provider}")
