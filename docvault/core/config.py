from __future__ import annotations

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    app_name: str = "docvault"
    log_level: str = "INFO"

    # Base URL of the document-management REST API, including the /api prefix.
    api_base_url: str = "http://localhost:8080/api"
    # Select the backend implementation: http for a live server, fake for in-process development.
    backend_provider: str = "http"
    # Bound every API call so a stalled server never hangs the caller.
    api_timeout_ms: int = 15000
    # Attempts for idempotent reads; 1 leaves retry decisions to the caller.
    api_retry_max_attempts: int = 1
    # Base backoff between read retries (ms), jittered per call.
    api_retry_backoff_ms: int = 200

    # Durable credential location, the local-storage equivalent for the bearer token.
    credential_store_path: str = "~/.docvault/credentials.json"
    # Key under which the token is persisted.
    credential_storage_key: str = "dms.jwt"
    # Force authentication and role checks to succeed for local development only.
    auth_dev_bypass: bool = False

    # Navigation targets used by the access guards.
    unauthorized_route: str = "/unauthorized"
    forbidden_route: str = "/forbidden"
    default_route: str = "/documents"

    # Soft-deleted documents can be restored for this many days.
    restore_window_days: int = 30
    # Documents expiring within this window are reported by retention warnings.
    retention_warning_window_days: int = 30

    search_default_page_size: int = 20
    audit_default_page_size: int = 50


@lru_cache
def get_settings() -> Settings:
    return Settings()
