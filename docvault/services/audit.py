from __future__ import annotations

import csv
import io
import json
import logging
from typing import Iterable

from docvault.core.config import get_settings
from docvault.core.errors import ValidationError
from docvault.domain.models import AuditLog, AuditStatistics, Page
from docvault.providers.backend.base import DocumentBackend
from docvault.services.auth.roles import (
    ROLE_ADMINISTRATOR,
    ROLE_COMPLIANCE_OFFICER,
    RoleResolver,
    require_any_role,
    require_role,
)


logger = logging.getLogger(__name__)

EXPORT_FORMATS = frozenset({"csv", "json"})

CSV_COLUMNS = (
    "id",
    "timestamp",
    "tenantId",
    "action",
    "entityType",
    "entityId",
    "userId",
    "clientIp",
    "correlationId",
    "details",
)


def _normalize_format(export_format: str) -> str:
    normalized = export_format.strip().lower()
    if normalized not in EXPORT_FORMATS:
        raise ValidationError(f"Unsupported export format: {export_format}")
    return normalized


def export_audit_logs(logs: Iterable[AuditLog], *, export_format: str = "csv") -> bytes:
    # Render audit rows for download; details stay a JSON string in CSV cells.
    normalized = _normalize_format(export_format)
    rows = [log.model_dump(mode="json", by_alias=True) for log in logs]
    if normalized == "json":
        return json.dumps(rows, ensure_ascii=False, indent=2).encode("utf-8")
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS, extrasaction="ignore", lineterminator="\n")
    writer.writeheader()
    for row in rows:
        row["details"] = json.dumps(row.get("details") or {}, sort_keys=True, separators=(",", ":"))
        writer.writerow(row)
    return buffer.getvalue().encode("utf-8")


class AuditService:
    # Read-only: audit records are written by the server, the client only queries and exports.
    def __init__(self, backend: DocumentBackend, resolver: RoleResolver) -> None:
        self._backend = backend
        self._resolver = resolver

    def _require_compliance(self) -> None:
        require_role(self._resolver, ROLE_COMPLIANCE_OFFICER)

    async def logs(self, *, page: int = 0, page_size: int | None = None) -> Page[AuditLog]:
        self._require_compliance()
        return await self._backend.audit_logs(
            page=page, page_size=page_size or get_settings().audit_default_page_size
        )

    async def document_trail(self, document_id: str, *, page: int = 0, page_size: int | None = None) -> Page[AuditLog]:
        self._require_compliance()
        return await self._backend.document_audit_trail(
            document_id, page=page, page_size=page_size or get_settings().audit_default_page_size
        )

    async def log_detail(self, log_id: str) -> AuditLog:
        self._require_compliance()
        if not log_id.strip():
            raise ValidationError("Audit log id is required")
        return await self._backend.audit_log(log_id.strip())

    async def user_trail(self, user_id: str, *, page: int = 0, page_size: int | None = None) -> Page[AuditLog]:
        self._require_compliance()
        if not user_id.strip():
            raise ValidationError("User id is required")
        return await self._backend.user_audit_trail(
            user_id.strip(), page=page, page_size=page_size or get_settings().audit_default_page_size
        )

    async def statistics(
        self, *, start_time: str | None = None, end_time: str | None = None
    ) -> AuditStatistics:
        # Administrators see the counts too; the window defaults to the last 30 days server-side.
        require_any_role(self._resolver, ROLE_ADMINISTRATOR, ROLE_COMPLIANCE_OFFICER)
        return await self._backend.audit_statistics(start_time=start_time, end_time=end_time)

    async def export(
        self,
        *,
        export_format: str = "csv",
        start_time: str | None = None,
        end_time: str | None = None,
    ) -> bytes:
        self._require_compliance()
        normalized = _normalize_format(export_format)
        payload = await self._backend.export_audit(
            export_format=normalized, start_time=start_time, end_time=end_time
        )
        logger.info("audit_export format=%s bytes=%s", normalized, len(payload))
        return payload
