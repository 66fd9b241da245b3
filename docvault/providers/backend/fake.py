from __future__ import annotations

from datetime import datetime, timedelta, timezone
import hashlib
import io
import logging
import math
from typing import Any, Callable
from uuid import uuid4
import zipfile

from docvault.core.config import get_settings
from docvault.core.errors import (
    DocumentNotFoundError,
    HoldAlreadyReleasedError,
    LegalHoldActiveError,
    LegalHoldNotFoundError,
    NotFoundError,
    ValidationError,
)
from docvault.domain import lifecycle
from docvault.domain.models import (
    AuditLog,
    AuditStatistics,
    Document,
    DocumentType,
    DocumentUploadRequest,
    DocumentVersion,
    Group,
    HybridSearchResult,
    LegalHold,
    LegalHoldRequest,
    Page,
    RetentionCleanupResult,
    RetentionCounts,
    RetentionStatus,
    SearchRequest,
)
from docvault.services.audit import export_audit_logs
from docvault.services.auth.credentials import CredentialStore
from docvault.services.auth.roles import (
    ROLE_ADMINISTRATOR,
    ROLE_COMPLIANCE_OFFICER,
    ROLE_LEGAL_OFFICER,
    AuthorizationContext,
    RoleResolver,
    require_any_role,
    require_role,
    require_session,
)
from docvault.services.retention import status_for_document


logger = logging.getLogger(__name__)

DEFAULT_TENANT_ID = "tenant-local"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_bound(value: str | None, name: str) -> datetime | None:
    # Accept ISO-8601 with a trailing Z; naive bounds are read as UTC.
    if not value:
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValidationError(f"Invalid {name}: {value}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _paginate(items: list[Any], page: int, page_size: int) -> Page[Any]:
    size = max(page_size, 1)
    start = max(page, 0) * size
    return Page(
        results=items[start : start + size],
        total_count=len(items),
        page=page,
        page_size=size,
        total_pages=max(1, math.ceil(len(items) / size)) if items else 0,
    )


class InMemoryBackend:
    """Process-local document service that applies the server's rules.

    Used for offline development (``backend_provider=fake``) and tests. It
    enforces the same session, role and lifecycle rules the REST service does,
    so callers see identical errors from either backend.
    """

    def __init__(
        self,
        *,
        store: CredentialStore | None = None,
        resolver: RoleResolver | None = None,
        clock: Callable[[], datetime] | None = None,
        document_types: list[DocumentType] | None = None,
        groups: list[Group] | None = None,
    ) -> None:
        self._resolver = resolver or RoleResolver(store)
        self._clock = clock or _utc_now
        self._settings = get_settings()
        self._documents: dict[str, Document] = {}
        self._versions: dict[str, list[DocumentVersion]] = {}
        self._blobs: dict[str, bytes] = {}
        self._holds: dict[str, LegalHold] = {}
        self._audit: list[AuditLog] = []
        self._document_types = {item.id: item for item in document_types or []}
        self._groups = {item.id: item for item in groups or []}

    def add_document_type(self, document_type: DocumentType) -> DocumentType:
        self._document_types[document_type.id] = document_type
        return document_type

    def add_group(self, group: Group) -> Group:
        self._groups[group.id] = group
        return group

    async def aclose(self) -> None:
        return None

    def _context(self, required_role: str | None = None) -> AuthorizationContext:
        if required_role is None:
            return require_session(self._resolver)
        return require_role(self._resolver, required_role)

    def _context_any(self, *roles: str) -> AuthorizationContext:
        return require_any_role(self._resolver, *roles)

    @staticmethod
    def _actor(context: AuthorizationContext) -> str:
        return context.subject or "anonymous"

    @staticmethod
    def _tenant(context: AuthorizationContext) -> str:
        return context.tenant_id or DEFAULT_TENANT_ID

    def _record(
        self,
        context: AuthorizationContext,
        action: str,
        entity_id: str,
        *,
        entity_type: str = "DOCUMENT",
        **details: Any,
    ) -> None:
        self._audit.append(
            AuditLog(
                id=uuid4().hex,
                tenant_id=self._tenant(context),
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                user_id=self._actor(context),
                client_ip="127.0.0.1",
                correlation_id=uuid4().hex,
                details=details,
                timestamp=self._clock(),
            )
        )

    def _document(self, document_id: str) -> Document:
        document = self._documents.get(document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return document

    def _store_blob(self, document: Document, document_type_name: str, version: int, content: bytes) -> tuple[str, str]:
        now = self._clock()
        blob_path = (
            f"{document.tenant_id}/{document_type_name}/{now.year}/{now.month:02d}/{document.id}_v{version}.pdf"
        )
        self._blobs[blob_path] = content
        return blob_path, hashlib.sha256(content).hexdigest()

    def _type_name(self, document: Document) -> str:
        document_type = self._document_types.get(document.document_type_id)
        return document_type.name if document_type else document.document_type_id

    def has_active_legal_holds(self, document_id: str) -> bool:
        return any(hold.is_active for hold in self._holds.values() if hold.document_id == document_id)

    def retention_expires_at(self, document: Document) -> datetime | None:
        if document.retention_expires_at is not None:
            return document.retention_expires_at
        document_type = self._document_types.get(document.document_type_id)
        if document_type is None or not document_type.retention_days:
            return None
        return document.created_at + timedelta(days=document_type.retention_days)

    async def upload_document(
        self,
        request: DocumentUploadRequest,
        *,
        filename: str,
        content: bytes,
        content_type: str = "application/pdf",
    ) -> Document:
        context = self._context()
        document_type = self._document_types.get(request.document_type_id)
        if document_type is None:
            raise ValidationError(f"Unknown document type {request.document_type_id}")
        if not document_type.active:
            raise ValidationError("Document type is deactivated")
        if not content:
            raise ValidationError(f"File {filename} is empty")
        now = self._clock()
        document = Document(
            id=uuid4().hex,
            tenant_id=self._tenant(context),
            document_type_id=document_type.id,
            current_version_number=1,
            metadata=dict(request.metadata),
            blob_path="",
            size_bytes=len(content),
            content_hash="",
            created_at=now,
            created_by=self._actor(context),
        )
        blob_path, content_hash = self._store_blob(document, document_type.name, 1, content)
        document = document.model_copy(update={"blob_path": blob_path, "content_hash": content_hash})
        self._documents[document.id] = document
        self._versions[document.id] = [lifecycle.initial_version(document)]
        self._record(context, "UPLOAD", document.id, filename=filename, contentType=content_type)
        return document

    async def get_document(self, document_id: str) -> Document:
        self._context()
        return self._document(document_id)

    async def list_documents(
        self, *, page: int = 0, page_size: int = 20, include_deleted: bool = False
    ) -> Page[Document]:
        self._context()
        documents = [
            document
            for document in self._documents.values()
            if include_deleted or not document.is_soft_deleted
        ]
        documents.sort(key=lambda document: document.created_at, reverse=True)
        return _paginate(documents, page, page_size)

    async def update_metadata(self, document_id: str, metadata: dict[str, Any]) -> Document:
        context = self._context()
        before = self._document(document_id)
        updated = lifecycle.update_metadata(before, metadata, actor=self._actor(context), now=self._clock())
        self._documents[document_id] = updated
        self._record(context, "METADATA_UPDATE", document_id, before=before.metadata, after=updated.metadata)
        return updated

    async def list_versions(self, document_id: str) -> list[DocumentVersion]:
        self._context()
        self._document(document_id)
        return sorted(self._versions[document_id], key=lambda version: version.version_number, reverse=True)

    async def upload_version(
        self,
        document_id: str,
        *,
        filename: str,
        content: bytes,
        content_type: str = "application/pdf",
    ) -> None:
        context = self._context()
        document = self._document(document_id)
        lifecycle.ensure_transition(document, lifecycle.ACTION_NEW_VERSION)
        number = document.current_version_number + 1
        blob_path, content_hash = self._store_blob(document, self._type_name(document), number, content)
        updated, version = lifecycle.append_version(
            document,
            blob_path=blob_path,
            size_bytes=len(content),
            content_hash=content_hash,
            actor=self._actor(context),
            now=self._clock(),
        )
        self._documents[document_id] = updated
        self._versions[document_id].append(version)
        self._record(context, "VERSION_UPLOAD", document_id, version=number, filename=filename)

    async def restore_version(self, document_id: str, version_number: int) -> None:
        context = self._context()
        document = self._document(document_id)
        source = next(
            (item for item in self._versions[document_id] if item.version_number == version_number),
            None,
        )
        if source is None:
            raise DocumentNotFoundError(f"Version {version_number} not found")
        updated, version = lifecycle.restore_version(
            document, source, actor=self._actor(context), now=self._clock()
        )
        self._documents[document_id] = updated
        self._versions[document_id].append(version)
        self._record(context, "VERSION_RESTORE", document_id, restoredFrom=version_number, newVersion=version.version_number)

    async def download_document(self, document_id: str) -> bytes:
        context = self._context()
        document = self._document(document_id)
        latest = max(self._versions[document_id], key=lambda version: version.version_number)
        self._record(context, "DOWNLOAD", document.id)
        return self._blobs[latest.blob_path]

    async def soft_delete(self, document_id: str, reason: str | None = None) -> None:
        context = self._context()
        document = self._document(document_id)
        self._documents[document_id] = lifecycle.soft_delete(document, actor=self._actor(context), now=self._clock())
        self._record(context, "SOFT_DELETE", document_id, reason=reason)

    async def restore_document(self, document_id: str) -> None:
        context = self._context()
        document = self._document(document_id)
        self._documents[document_id] = lifecycle.restore(
            document,
            restore_window_days=self._settings.restore_window_days,
            now=self._clock(),
        )
        self._record(context, "RESTORE", document_id)

    async def hard_delete(self, document_id: str) -> None:
        context = self._context(ROLE_ADMINISTRATOR)
        self._purge(context, self._document(document_id))

    def _purge(self, context: AuthorizationContext, document: Document) -> None:
        lifecycle.ensure_hard_delete_allowed(
            document, has_active_legal_holds=self.has_active_legal_holds(document.id)
        )
        versions = self._versions.pop(document.id, [])
        for version in versions:
            self._blobs.pop(version.blob_path, None)
        del self._documents[document.id]
        self._record(context, "HARD_DELETE", document.id, versions=len(versions))

    async def place_legal_hold(self, request: LegalHoldRequest) -> LegalHold:
        context = self._context(ROLE_LEGAL_OFFICER)
        document = self._document(request.document_id)
        if not request.case_reference.strip():
            raise ValidationError("Case reference is required")
        hold = LegalHold(
            id=uuid4().hex,
            tenant_id=document.tenant_id,
            document_id=document.id,
            case_reference=request.case_reference.strip(),
            reason=request.reason,
            placed_at=self._clock(),
            placed_by=self._actor(context),
        )
        self._holds[hold.id] = hold
        self._record(context, "LEGAL_HOLD_PLACE", document.id, legalHoldId=hold.id)
        return hold

    async def release_legal_hold(self, hold_id: str, reason: str | None = None) -> LegalHold:
        context = self._context(ROLE_LEGAL_OFFICER)
        hold = self._holds.get(hold_id)
        if hold is None:
            raise LegalHoldNotFoundError(f"Legal hold {hold_id} not found")
        if not hold.is_active:
            raise HoldAlreadyReleasedError(f"Legal hold {hold_id} already released")
        released = hold.model_copy(
            update={
                "released_at": self._clock(),
                "released_by": self._actor(context),
                "release_reason": reason,
            }
        )
        self._holds[hold_id] = released
        self._record(context, "LEGAL_HOLD_RELEASE", hold.document_id, legalHoldId=hold_id)
        return released

    async def list_active_legal_holds(self, case_reference: str | None = None) -> list[LegalHold]:
        self._context()
        holds = [hold for hold in self._holds.values() if hold.is_active]
        if case_reference:
            holds = [hold for hold in holds if hold.case_reference == case_reference]
        return sorted(holds, key=lambda hold: hold.placed_at, reverse=True)

    async def legal_hold_history(self, document_id: str) -> list[LegalHold]:
        self._context()
        holds = [hold for hold in self._holds.values() if hold.document_id == document_id]
        return sorted(holds, key=lambda hold: hold.placed_at, reverse=True)

    def _expired_documents(self) -> list[Document]:
        now = self._clock()
        expired = []
        for document in self._documents.values():
            expires_at = self.retention_expires_at(document)
            if document.is_soft_deleted and expires_at is not None and expires_at <= now:
                expired.append(document)
        return expired

    async def retention_counts(self) -> RetentionCounts:
        self._context(ROLE_ADMINISTRATOR)
        held = sum(
            1
            for document in self._documents.values()
            if not document.is_soft_deleted and self.has_active_legal_holds(document.id)
        )
        return RetentionCounts(expired_documents=len(self._expired_documents()), active_legal_holds=held)

    async def process_retention(self) -> RetentionCleanupResult:
        context = self._context(ROLE_ADMINISTRATOR)
        processed = 0
        for document in self._expired_documents():
            try:
                self._purge(context, document)
            except LegalHoldActiveError:
                logger.warning("retention_skip_legal_hold document_id=%s", document.id)
                continue
            processed += 1
        return RetentionCleanupResult(processed_count=processed, status="completed")

    async def set_retention(self, document_id: str, retention_days: int) -> None:
        context = self._context(ROLE_ADMINISTRATOR)
        document = self._document(document_id)
        updated = lifecycle.assign_retention(document, retention_days, now=self._clock())
        self._documents[document_id] = updated
        self._record(
            context,
            "RETENTION_SET",
            document_id,
            retentionDays=retention_days,
            expiresAt=updated.retention_expires_at.isoformat(),
        )

    async def retention_status(self, document_id: str) -> RetentionStatus:
        self._context()
        document = self._document(document_id)
        return status_for_document(
            document,
            self._document_types.get(document.document_type_id),
            list(self._holds.values()),
            now=self._clock(),
        )

    def _matches(self, document: Document, request: SearchRequest) -> bool:
        if document.is_soft_deleted and not request.include_deleted:
            return False
        if request.document_type:
            document_type = self._document_types.get(document.document_type_id)
            names = {document.document_type_id}
            if document_type is not None:
                names.add(document_type.name)
            if request.document_type not in names:
                return False
        created = document.created_at.date().isoformat()
        if request.date_from and created < request.date_from[:10]:
            return False
        if request.date_to and created > request.date_to[:10]:
            return False
        for key, expected in (request.metadata or {}).items():
            if key == "query":
                needle = str(expected).lower()
                haystack = " ".join(str(value) for value in document.metadata.values()).lower()
                if needle not in haystack:
                    return False
            elif document.metadata.get(key) != expected:
                return False
        return True

    async def search(self, request: SearchRequest) -> Page[Document]:
        context = self._context()
        results = [document for document in self._documents.values() if self._matches(document, request)]
        results.sort(key=lambda document: document.created_at, reverse=True)
        self._record(context, "SEARCH", "documents", entity_type="SEARCH", resultCount=len(results))
        return _paginate(
            results,
            request.page or 0,
            request.page_size or self._settings.search_default_page_size,
        )

    async def hybrid_search(self, query: str, *, page: int = 0, page_size: int = 20) -> Page[HybridSearchResult]:
        self._context()
        needle = query.strip().lower()
        results = []
        for document in self._documents.values():
            if document.is_soft_deleted or not needle:
                continue
            latest = max(self._versions[document.id], key=lambda version: version.version_number)
            text = self._blobs[latest.blob_path].decode("utf-8", errors="ignore")
            if needle not in text.lower():
                continue
            results.append(
                HybridSearchResult(
                    chunk_id=f"{document.id}:0",
                    document_id=document.id,
                    sequence_number=0,
                    content=text[:500],
                    token_count=len(text.split()),
                    relevance_score=text.lower().count(needle) / max(len(text.split()), 1),
                    search_type="keyword",
                    created_at=document.created_at,
                )
            )
        results.sort(key=lambda result: result.relevance_score, reverse=True)
        return _paginate(results, page, page_size)

    async def bulk_download(self, document_ids: list[str]) -> bytes:
        self._context()
        documents = []
        # Every id is resolved before the archive is built so a bad id yields no partial zip.
        for document_id in document_ids:
            document = self._documents.get(document_id)
            if document is None:
                raise DocumentNotFoundError(f"Document not found: {document_id}")
            documents.append(document)
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for document in documents:
                latest = max(self._versions[document.id], key=lambda version: version.version_number)
                archive.writestr(f"{document.id}.pdf", self._blobs[latest.blob_path])
        return buffer.getvalue()

    async def list_document_types(self) -> list[DocumentType]:
        self._context()
        return list(self._document_types.values())

    async def list_groups(self) -> list[Group]:
        self._context(ROLE_ADMINISTRATOR)
        return list(self._groups.values())

    async def audit_logs(self, *, page: int = 0, page_size: int = 50) -> Page[AuditLog]:
        self._context(ROLE_COMPLIANCE_OFFICER)
        return _paginate(sorted(self._audit, key=lambda log: log.timestamp, reverse=True), page, page_size)

    async def document_audit_trail(
        self, document_id: str, *, page: int = 0, page_size: int = 50
    ) -> Page[AuditLog]:
        self._context(ROLE_COMPLIANCE_OFFICER)
        logs = [log for log in self._audit if log.entity_id == document_id]
        return _paginate(sorted(logs, key=lambda log: log.timestamp, reverse=True), page, page_size)

    async def export_audit(
        self, *, export_format: str = "csv", start_time: str | None = None, end_time: str | None = None
    ) -> bytes:
        self._context(ROLE_COMPLIANCE_OFFICER)
        logs = self._logs_between(_parse_bound(start_time, "startTime"), _parse_bound(end_time, "endTime"))
        return export_audit_logs(logs, export_format=export_format)

    def _logs_between(self, start: datetime | None, end: datetime | None) -> list[AuditLog]:
        return [
            log
            for log in self._audit
            if (start is None or log.timestamp >= start) and (end is None or log.timestamp <= end)
        ]

    async def audit_log(self, log_id: str) -> AuditLog:
        self._context(ROLE_COMPLIANCE_OFFICER)
        for log in self._audit:
            if log.id == log_id:
                return log
        raise NotFoundError(f"Audit log {log_id} not found")

    async def user_audit_trail(self, user_id: str, *, page: int = 0, page_size: int = 50) -> Page[AuditLog]:
        self._context(ROLE_COMPLIANCE_OFFICER)
        logs = [log for log in self._audit if log.user_id == user_id]
        return _paginate(sorted(logs, key=lambda log: log.timestamp, reverse=True), page, page_size)

    async def audit_statistics(
        self, *, start_time: str | None = None, end_time: str | None = None
    ) -> AuditStatistics:
        self._context_any(ROLE_ADMINISTRATOR, ROLE_COMPLIANCE_OFFICER)
        now = self._clock()
        start = _parse_bound(start_time, "startTime") or now - timedelta(days=30)
        end = _parse_bound(end_time, "endTime") or now
        actions = [log.action for log in self._logs_between(start, end)]
        return AuditStatistics(
            total=len(actions),
            uploads=actions.count("UPLOAD"),
            downloads=actions.count("DOWNLOAD"),
            searches=actions.count("SEARCH"),
        )
