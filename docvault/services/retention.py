from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
import math
from typing import Iterable

from docvault.core.config import get_settings
from docvault.domain.lifecycle import validate_retention_days
from docvault.domain.models import (
    Document,
    DocumentType,
    LegalHold,
    RetentionCleanupResult,
    RetentionCounts,
    RetentionStatus,
)
from docvault.providers.backend.base import DocumentBackend
from docvault.services.auth.roles import ROLE_ADMINISTRATOR, RoleResolver, require_role, require_session
from docvault.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

_ONE_DAY = timedelta(days=1)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def evaluate_retention(
    *,
    document_id: str,
    document_type: str,
    default_retention_days: int | None,
    anchor: datetime,
    now: datetime | None = None,
    has_active_legal_holds: bool,
    is_soft_deleted: bool,
    expires_at: datetime | None = None,
) -> RetentionStatus:
    """Derive the retention status of one document at ``now``.

    The retention clock is suspended while any legal hold is active, so
    ``days_until_retention`` is ``None`` in that case. Eligibility for hard
    delete depends only on soft deletion and hold state, never on elapsed time.
    An explicit ``expires_at`` replaces ``anchor`` plus the type default.
    """
    now = now or _utc_now()
    days_until = None
    if expires_at is None and default_retention_days is not None:
        expires_at = anchor + timedelta(days=default_retention_days)
    if expires_at is not None and not has_active_legal_holds:
        days_until = max(0, math.ceil((expires_at - now) / _ONE_DAY))
    return RetentionStatus(
        document_id=document_id,
        document_type=document_type,
        default_retention_days=default_retention_days,
        retention_expires_at=expires_at,
        days_until_retention=days_until,
        has_active_legal_holds=has_active_legal_holds,
        is_eligible_for_hard_delete=is_soft_deleted and not has_active_legal_holds,
        is_soft_deleted=is_soft_deleted,
    )


def status_for_document(
    document: Document,
    document_type: DocumentType | None,
    holds: Iterable[LegalHold],
    *,
    now: datetime | None = None,
) -> RetentionStatus:
    # An assigned expiry wins over creation time plus the type default; holds for other documents are ignored.
    held = any(hold.is_active for hold in holds if hold.document_id == document.id)
    return evaluate_retention(
        document_id=document.id,
        document_type=document_type.name if document_type else document.document_type_id,
        default_retention_days=document_type.retention_days if document_type else None,
        anchor=document.created_at,
        now=now,
        has_active_legal_holds=held,
        is_soft_deleted=document.is_soft_deleted,
        expires_at=document.retention_expires_at,
    )


@dataclass(frozen=True)
class ExpiringDocument:
    document: Document
    status: RetentionStatus


class RetentionService:
    def __init__(self, backend: DocumentBackend, resolver: RoleResolver) -> None:
        self._backend = backend
        self._resolver = resolver

    async def count(self) -> RetentionCounts:
        require_role(self._resolver, ROLE_ADMINISTRATOR)
        return await self._backend.retention_counts()

    async def process(self) -> RetentionCleanupResult:
        # Server-side purge of expired soft-deleted documents; held documents are skipped there.
        require_role(self._resolver, ROLE_ADMINISTRATOR)
        result = await self._backend.process_retention()
        increment_counter("retention_process_runs_total")
        logger.info(
            "retention_processed processed_count=%s status=%s", result.processed_count, result.status
        )
        return result

    async def assign(self, document_id: str, retention_days: int) -> None:
        # Range is checked locally; the deleted-document rule needs the server's view.
        require_role(self._resolver, ROLE_ADMINISTRATOR)
        days = validate_retention_days(retention_days)
        await self._backend.set_retention(document_id, days)
        logger.info("retention_assigned document_id=%s retention_days=%s", document_id, days)

    async def status(self, document_id: str) -> RetentionStatus:
        require_session(self._resolver)
        return await self._backend.retention_status(document_id)

    def expiring_within(
        self,
        documents: Iterable[Document],
        document_types: Iterable[DocumentType],
        holds: Iterable[LegalHold],
        *,
        days: int | None = None,
        now: datetime | None = None,
    ) -> list[ExpiringDocument]:
        # Documents whose retention ends inside the warning window, soonest first.
        window = get_settings().retention_warning_window_days if days is None else days
        if window < 0:
            raise ValueError("days must be non-negative")
        types = {item.id: item for item in document_types}
        hold_list = list(holds)
        expiring = []
        for document in documents:
            status = status_for_document(
                document, types.get(document.document_type_id), hold_list, now=now
            )
            if status.days_until_retention is not None and status.days_until_retention <= window:
                expiring.append(ExpiringDocument(document=document, status=status))
        expiring.sort(key=lambda item: (item.status.days_until_retention, item.document.id))
        return expiring
