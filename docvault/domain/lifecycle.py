from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from docvault.core.errors import (
    InvalidTransitionError,
    LegalHoldActiveError,
    RecoveryWindowExceededError,
    ValidationError,
)
from docvault.domain.models import (
    DOCUMENT_STATE_ACTIVE,
    DOCUMENT_STATE_SOFT_DELETED,
    Document,
    DocumentVersion,
)


ACTION_NEW_VERSION = "new_version"
ACTION_RESTORE_VERSION = "restore_version"
ACTION_SOFT_DELETE = "soft_delete"
ACTION_RESTORE = "restore"
ACTION_HARD_DELETE = "hard_delete"
ACTION_UPDATE_METADATA = "update_metadata"

# Source states each transition may start from. Hard-deleted documents no longer exist.
ALLOWED_FROM: dict[str, frozenset[str]] = {
    ACTION_NEW_VERSION: frozenset({DOCUMENT_STATE_ACTIVE}),
    ACTION_RESTORE_VERSION: frozenset({DOCUMENT_STATE_ACTIVE}),
    ACTION_SOFT_DELETE: frozenset({DOCUMENT_STATE_ACTIVE}),
    ACTION_RESTORE: frozenset({DOCUMENT_STATE_SOFT_DELETED}),
    ACTION_HARD_DELETE: frozenset({DOCUMENT_STATE_SOFT_DELETED}),
    ACTION_UPDATE_METADATA: frozenset({DOCUMENT_STATE_ACTIVE, DOCUMENT_STATE_SOFT_DELETED}),
}

# Retention assignments are capped at roughly one hundred years.
MAX_RETENTION_DAYS = 36500

_TRANSITION_REASONS = {
    ACTION_NEW_VERSION: "new versions can only be added to active documents",
    ACTION_RESTORE_VERSION: "versions can only be restored on active documents",
    ACTION_SOFT_DELETE: "document is already deleted",
    ACTION_RESTORE: "only deleted documents can be restored",
    ACTION_HARD_DELETE: "document must be deleted before it can be permanently removed",
    ACTION_UPDATE_METADATA: "metadata cannot be changed on this document",
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def document_state(document: Document) -> str:
    return DOCUMENT_STATE_SOFT_DELETED if document.deleted_at is not None else DOCUMENT_STATE_ACTIVE


def ensure_transition(document: Document, action: str) -> None:
    # Raise with a UI-friendly reason when the document's state forbids the action.
    allowed = ALLOWED_FROM[action]
    state = document_state(document)
    if state not in allowed:
        raise InvalidTransitionError(
            f"{action} not permitted for document {document.id} in state {state}",
            reason=_TRANSITION_REASONS[action],
        )


def initial_version(document: Document) -> DocumentVersion:
    # Upload creates version 1 from the document's own blob fields.
    return DocumentVersion(
        document_id=document.id,
        version_number=1,
        blob_path=document.blob_path,
        size_bytes=document.size_bytes,
        content_hash=document.content_hash,
        created_by=document.created_by,
        created_at=document.created_at,
    )


def append_version(
    document: Document,
    *,
    blob_path: str,
    size_bytes: int,
    content_hash: str,
    actor: str,
    now: datetime | None = None,
    action: str = ACTION_NEW_VERSION,
) -> tuple[Document, DocumentVersion]:
    ensure_transition(document, action)
    now = now or _utc_now()
    number = document.current_version_number + 1
    version = DocumentVersion(
        document_id=document.id,
        version_number=number,
        blob_path=blob_path,
        size_bytes=size_bytes,
        content_hash=content_hash,
        created_by=actor,
        created_at=now,
    )
    updated = document.model_copy(
        update={"current_version_number": number, "modified_at": now, "modified_by": actor}
    )
    return updated, version


def restore_version(
    document: Document,
    source: DocumentVersion,
    *,
    actor: str,
    now: datetime | None = None,
) -> tuple[Document, DocumentVersion]:
    # Restoring an old version appends a copy; history is never rewritten.
    return append_version(
        document,
        blob_path=source.blob_path,
        size_bytes=source.size_bytes,
        content_hash=source.content_hash,
        actor=actor,
        now=now,
        action=ACTION_RESTORE_VERSION,
    )


def soft_delete(document: Document, *, actor: str, now: datetime | None = None) -> Document:
    ensure_transition(document, ACTION_SOFT_DELETE)
    return document.model_copy(update={"deleted_at": now or _utc_now(), "deleted_by": actor})


def restore(
    document: Document,
    *,
    restore_window_days: int | None = None,
    now: datetime | None = None,
) -> Document:
    ensure_transition(document, ACTION_RESTORE)
    now = now or _utc_now()
    if restore_window_days is not None and document.deleted_at is not None:
        if now > document.deleted_at + timedelta(days=restore_window_days):
            raise RecoveryWindowExceededError(
                f"document {document.id} was deleted more than {restore_window_days} days ago"
            )
    # The version pointer is untouched so the latest version is reinstated as-is.
    return document.model_copy(update={"deleted_at": None, "deleted_by": None})


def ensure_hard_delete_allowed(document: Document, *, has_active_legal_holds: bool) -> None:
    # Holds are checked first so a held document always reports the hold as the reason.
    if has_active_legal_holds:
        raise LegalHoldActiveError(f"document {document.id} has an active legal hold")
    ensure_transition(document, ACTION_HARD_DELETE)


def update_metadata(
    document: Document,
    metadata: dict[str, Any],
    *,
    actor: str,
    now: datetime | None = None,
) -> Document:
    ensure_transition(document, ACTION_UPDATE_METADATA)
    return document.model_copy(
        update={"metadata": dict(metadata), "modified_at": now or _utc_now(), "modified_by": actor}
    )


def validate_retention_days(retention_days: int | None) -> int:
    if retention_days is None or isinstance(retention_days, bool) or not isinstance(retention_days, int):
        raise ValidationError("Retention days must be a whole number")
    if retention_days < 0:
        raise ValidationError("Retention days must be non-negative")
    if retention_days > MAX_RETENTION_DAYS:
        raise ValidationError(f"Retention days cannot exceed {MAX_RETENTION_DAYS} (100 years)")
    return retention_days


def assign_retention(
    document: Document,
    retention_days: int,
    *,
    now: datetime | None = None,
) -> Document:
    # The expiry is counted from the moment of assignment, not from creation.
    if document.is_soft_deleted:
        raise ValidationError("Cannot set retention on deleted document")
    days = validate_retention_days(retention_days)
    return document.model_copy(
        update={"retention_expires_at": (now or _utc_now()) + timedelta(days=days)}
    )
