from __future__ import annotations

from typing import Any, Protocol

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


class DocumentBackend(Protocol):
    async def upload_document(
        self,
        request: DocumentUploadRequest,
        *,
        filename: str,
        content: bytes,
        content_type: str = "application/pdf",
    ) -> Document:
        ...

    async def get_document(self, document_id: str) -> Document:
        ...

    async def list_documents(
        self, *, page: int = 0, page_size: int = 20, include_deleted: bool = False
    ) -> Page[Document]:
        ...

    async def update_metadata(self, document_id: str, metadata: dict[str, Any]) -> Document:
        ...

    async def list_versions(self, document_id: str) -> list[DocumentVersion]:
        ...

    async def upload_version(
        self,
        document_id: str,
        *,
        filename: str,
        content: bytes,
        content_type: str = "application/pdf",
    ) -> None:
        ...

    async def restore_version(self, document_id: str, version_number: int) -> None:
        ...

    async def download_document(self, document_id: str) -> bytes:
        ...

    async def soft_delete(self, document_id: str, reason: str | None = None) -> None:
        ...

    async def restore_document(self, document_id: str) -> None:
        ...

    async def hard_delete(self, document_id: str) -> None:
        ...

    async def place_legal_hold(self, request: LegalHoldRequest) -> LegalHold:
        ...

    async def release_legal_hold(self, hold_id: str, reason: str | None = None) -> LegalHold:
        ...

    async def list_active_legal_holds(self, case_reference: str | None = None) -> list[LegalHold]:
        ...

    async def legal_hold_history(self, document_id: str) -> list[LegalHold]:
        ...

    async def retention_counts(self) -> RetentionCounts:
        ...

    async def process_retention(self) -> RetentionCleanupResult:
        ...

    async def set_retention(self, document_id: str, retention_days: int) -> None:
        ...

    async def retention_status(self, document_id: str) -> RetentionStatus:
        ...

    async def search(self, request: SearchRequest) -> Page[Document]:
        ...

    async def hybrid_search(self, query: str, *, page: int = 0, page_size: int = 20) -> Page[HybridSearchResult]:
        ...

    async def bulk_download(self, document_ids: list[str]) -> bytes:
        ...

    async def list_document_types(self) -> list[DocumentType]:
        ...

    async def list_groups(self) -> list[Group]:
        ...

    async def audit_logs(self, *, page: int = 0, page_size: int = 50) -> Page[AuditLog]:
        ...

    async def document_audit_trail(
        self, document_id: str, *, page: int = 0, page_size: int = 50
    ) -> Page[AuditLog]:
        ...

    async def export_audit(
        self, *, export_format: str = "csv", start_time: str | None = None, end_time: str | None = None
    ) -> bytes:
        ...

    async def audit_log(self, log_id: str) -> AuditLog:
        ...

    async def user_audit_trail(self, user_id: str, *, page: int = 0, page_size: int = 50) -> Page[AuditLog]:
        ...

    async def audit_statistics(
        self, *, start_time: str | None = None, end_time: str | None = None
    ) -> AuditStatistics:
        ...

    async def aclose(self) -> None:
        ...
