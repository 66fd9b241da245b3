from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
import json
import logging
import os
from pathlib import Path
import threading

from docvault.core.config import get_settings
from docvault.core.errors import CredentialStorageError, ValidationError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CredentialSnapshot:
    # Immutable view handed to readers so a concurrent login/logout never changes a check mid-flight.
    token: str | None
    generation: int

    @property
    def present(self) -> bool:
        return bool(self.token)


class CredentialStore:
    """Process-wide holder of the bearer token.

    The token lives in memory and in a small JSON file that plays the role of
    browser local storage. ``login``, ``refresh`` and ``logout`` are the only
    writers; everything else reads through ``get_token`` or ``snapshot``.
    """

    def __init__(self, path: str | Path | None = None, *, storage_key: str | None = None) -> None:
        settings = get_settings()
        self._path = Path(path or settings.credential_store_path).expanduser()
        self._key = storage_key or settings.credential_storage_key
        self._lock = threading.Lock()
        self._loaded = False
        self._token: str | None = None
        self._generation = 0

    @property
    def path(self) -> Path:
        return self._path

    def get_token(self) -> str | None:
        return self.snapshot().token

    def snapshot(self) -> CredentialSnapshot:
        with self._lock:
            self._ensure_loaded()
            return CredentialSnapshot(token=self._token, generation=self._generation)

    def login(self, token: str) -> CredentialSnapshot:
        # Sign-in writes the token to memory and durable storage together.
        return self._write(_normalize_token(token), event="credential_login")

    def refresh(self, token: str) -> CredentialSnapshot:
        return self._write(_normalize_token(token), event="credential_refresh")

    def logout(self) -> CredentialSnapshot:
        return self._write(None, event="credential_logout")

    def _write(self, token: str | None, *, event: str) -> CredentialSnapshot:
        with self._lock:
            self._persist(token)
            self._token = token
            self._loaded = True
            self._generation += 1
            logger.info("%s generation=%s", event, self._generation)
            return CredentialSnapshot(token=self._token, generation=self._generation)

    def _ensure_loaded(self) -> None:
        # Read durable storage lazily so constructing the store never touches disk.
        if self._loaded:
            return
        self._token = self._read()
        self._loaded = True

    def _read(self) -> str | None:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise CredentialStorageError(f"Cannot read credential file {self._path}") from exc
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            # A corrupt file is the same as no session; the next login overwrites it.
            logger.warning("credential_file_corrupt path=%s", self._path)
            return None
        if not isinstance(payload, dict):
            logger.warning("credential_file_corrupt path=%s", self._path)
            return None
        token = payload.get(self._key)
        if not isinstance(token, str) or not token.strip():
            return None
        return token.strip()

    def _persist(self, token: str | None) -> None:
        try:
            if token is None:
                self._path.unlink(missing_ok=True)
                return
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp_path.write_text(json.dumps({self._key: token}), encoding="utf-8")
            os.chmod(tmp_path, 0o600)
            tmp_path.replace(self._path)
        except OSError as exc:
            logger.error("credential_file_write_failed path=%s", self._path)
            raise CredentialStorageError(f"Cannot write credential file {self._path}") from exc


def _normalize_token(token: str) -> str:
    if not isinstance(token, str) or not token.strip():
        raise ValidationError("Token must be a non-empty string")
    return token.strip()


@lru_cache
def get_credential_store() -> CredentialStore:
    return CredentialStore()
