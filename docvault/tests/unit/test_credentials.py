from __future__ import annotations

import dataclasses
import json
import stat

import pytest

from docvault.core.errors import CredentialStorageError, ValidationError
from docvault.services.auth.credentials import CredentialStore, get_credential_store


def test_login_persists_token_under_storage_key(tmp_path) -> None:
    path = tmp_path / "credentials.json"
    store = CredentialStore(path)
    snapshot = store.login("  header.payload.sig  ")

    assert snapshot.token == "header.payload.sig"
    assert snapshot.present
    assert json.loads(path.read_text(encoding="utf-8")) == {"dms.jwt": "header.payload.sig"}
    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_new_store_reads_durable_token_lazily(tmp_path) -> None:
    path = tmp_path / "credentials.json"
    CredentialStore(path).login("persisted-token")

    store = CredentialStore(path)
    path.write_text(json.dumps({"dms.jwt": "rewritten-before-first-read"}), encoding="utf-8")
    assert store.get_token() == "rewritten-before-first-read"


def test_construction_does_not_touch_disk(tmp_path) -> None:
    path = tmp_path / "nested" / "credentials.json"
    CredentialStore(path)
    assert not path.parent.exists()


def test_logout_clears_memory_and_storage(tmp_path) -> None:
    path = tmp_path / "credentials.json"
    store = CredentialStore(path)
    store.login("token-1")
    snapshot = store.logout()

    assert snapshot.token is None
    assert not snapshot.present
    assert store.get_token() is None
    assert not path.exists()
    # Logging out twice is harmless.
    store.logout()


def test_generation_increments_and_snapshots_are_immutable(tmp_path) -> None:
    store = CredentialStore(tmp_path / "credentials.json")
    first = store.login("token-1")
    second = store.refresh("token-2")

    assert second.generation == first.generation + 1
    assert first.token == "token-1"
    with pytest.raises(dataclasses.FrozenInstanceError):
        first.token = "other"  # type: ignore[misc]


@pytest.mark.parametrize("token", ["", "   "])
def test_blank_tokens_rejected(tmp_path, token: str) -> None:
    store = CredentialStore(tmp_path / "credentials.json")
    with pytest.raises(ValidationError):
        store.login(token)
    with pytest.raises(ValidationError):
        store.refresh(token)
    assert store.get_token() is None


@pytest.mark.parametrize("content", ["{not json", "[1, 2]", json.dumps({"dms.jwt": 42})])
def test_corrupt_storage_is_treated_as_no_session(tmp_path, content: str) -> None:
    path = tmp_path / "credentials.json"
    path.write_text(content, encoding="utf-8")
    assert CredentialStore(path).get_token() is None


def test_custom_storage_key(tmp_path) -> None:
    path = tmp_path / "credentials.json"
    CredentialStore(path, storage_key="other.jwt").login("token-1")
    assert json.loads(path.read_text(encoding="utf-8")) == {"other.jwt": "token-1"}
    assert CredentialStore(path).get_token() is None


def test_write_failure_surfaces_storage_error(tmp_path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("file, not a directory", encoding="utf-8")
    store = CredentialStore(blocker / "credentials.json")
    with pytest.raises(CredentialStorageError):
        store.login("token-1")
    # The unusable location is reported on read as well, never as a stale token.
    with pytest.raises(CredentialStorageError):
        store.get_token()


def test_shared_store_uses_configured_path(tmp_path) -> None:
    store = get_credential_store()
    assert store.path == tmp_path / "credentials.json"
    assert get_credential_store() is store
