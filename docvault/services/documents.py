from __future__ import annotations

from datetime import datetime, timezone
import logging
import math
from typing import Any, Callable

from docvault.core.config import Settings, get_settings
from docvault.core.errors import DocumentNotFoundError, ValidationError
from docvault.domain import lifecycle
from docvault.domain.models import (
    Document,
    DocumentType,
    DocumentUploadRequest,
    DocumentVersion,
    Page,
    RetentionStatus,
)
from docvault.providers.backend.base import DocumentBackend
from docvault.services.auth.roles import (
    ROLE_ADMINISTRATOR,
    AuthorizationContext,
    RoleResolver,
    require_role,
    require_session,
)
from docvault.services.legal_holds import LegalHoldLedger
from docvault.services.retention import status_for_document
from docvault.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DocumentLifecycle:
    """Document operations with a local view that follows the server.

    Every transition is checked against the local view first so invalid
    requests fail without a network call. Local state changes only after the
    backend acknowledges the operation; a rejected or cancelled call leaves it
    untouched. Hard-deleted ids are remembered so later version queries report
    the document as missing instead of returning an empty history.
    """

    def __init__(
        self,
        backend: DocumentBackend,
        ledger: LegalHoldLedger,
        resolver: RoleResolver,
        *,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._backend = backend
        self._ledger = ledger
        self._resolver = resolver
        self._settings = settings or get_settings()
        self._clock = clock or _utc_now
        self._documents: dict[str, Document] = {}
        self._versions: dict[str, list[DocumentVersion]] = {}
        self._document_types: dict[str, DocumentType] = {}
        self._purged: set[str] = set()

    @staticmethod
    def _actor(context: AuthorizationContext) -> str:
        return context.subject or "anonymous"

    def _remember(self, document: Document) -> Document:
        self._documents[document.id] = document
        self._purged.discard(document.id)
        return document

    def _ensure_not_purged(self, document_id: str) -> None:
        if document_id in self._purged:
            raise DocumentNotFoundError(f"Document {document_id} was permanently deleted")

    def local(self, document_id: str) -> Document | None:
        return self._documents.get(document_id)

    async def _known(self, document_id: str) -> Document:
        self._ensure_not_purged(document_id)
        document = self._documents.get(document_id)
        if document is None:
            document = await self.refresh(document_id)
        return document

    async def upload(
        self,
        document_type_id: str,
        *,
        filename: str,
        content: bytes,
        metadata: dict[str, Any] | None = None,
        content_type: str = "application/pdf",
    ) -> Document:
        require_session(self._resolver)
        if not content:
            raise ValidationError(f"File {filename} is empty")
        document = await self._backend.upload_document(
            DocumentUploadRequest(document_type_id=document_type_id, metadata=metadata or {}),
            filename=filename,
            content=content,
            content_type=content_type,
        )
        self._remember(document)
        self._versions[document.id] = [lifecycle.initial_version(document)]
        increment_counter("documents_uploaded_total")
        logger.info("document_uploaded document_id=%s document_type_id=%s", document.id, document_type_id)
        return document

    async def refresh(self, document_id: str) -> Document:
        # Re-read the server copy; the local view may be stale after other sessions write.
        require_session(self._resolver)
        document = await self._backend.get_document(document_id)
        self._versions.pop(document_id, None)
        return self._remember(document)

    async def get(self, document_id: str, *, include_deleted: bool = False) -> Document:
        self._ensure_not_purged(document_id)
        document = await self.refresh(document_id)
        if document.is_soft_deleted and not include_deleted:
            raise DocumentNotFoundError(f"Document {document_id} is deleted")
        return document

    async def list_documents(
        self, *, page: int = 0, page_size: int | None = None, include_deleted: bool = False
    ) -> Page[Document]:
        require_session(self._resolver)
        result = await self._backend.list_documents(
            page=page,
            page_size=page_size or self._settings.search_default_page_size,
            include_deleted=include_deleted,
        )
        for document in result.results:
            self._remember(document)
        if include_deleted:
            return result
        visible = [document for document in result.results if not document.is_soft_deleted]
        dropped = len(result.results) - len(visible)
        if not dropped:
            return result
        # Page metadata must describe the rows actually returned.
        total_count = max(0, result.total_count - dropped)
        size = result.page_size or 1
        return result.model_copy(
            update={
                "results": visible,
                "total_count": total_count,
                "total_pages": math.ceil(total_count / size) if total_count else 0,
            }
        )

    async def new_version(
        self,
        document_id: str,
        *,
        filename: str,
        content: bytes,
        content_type: str = "application/pdf",
    ) -> Document:
        require_session(self._resolver)
        lifecycle.ensure_transition(await self._known(document_id), lifecycle.ACTION_NEW_VERSION)
        if not content:
            raise ValidationError(f"File {filename} is empty")
        await self._backend.upload_version(
            document_id, filename=filename, content=content, content_type=content_type
        )
        document = await self.refresh(document_id)
        logger.info(
            "document_version_added document_id=%s version=%s", document_id, document.current_version_number
        )
        return document

    async def restore_version(self, document_id: str, version_number: int) -> Document:
        require_session(self._resolver)
        document = await self._known(document_id)
        lifecycle.ensure_transition(document, lifecycle.ACTION_RESTORE_VERSION)
        if version_number < 1 or version_number > document.current_version_number:
            raise ValidationError(f"Version {version_number} does not exist for document {document_id}")
        await self._backend.restore_version(document_id, version_number)
        restored = await self.refresh(document_id)
        logger.info(
            "document_version_restored document_id=%s source_version=%s version=%s",
            document_id,
            version_number,
            restored.current_version_number,
        )
        return restored

    async def soft_delete(self, document_id: str, reason: str | None = None) -> Document:
        context = require_session(self._resolver)
        document = await self._known(document_id)
        lifecycle.ensure_transition(document, lifecycle.ACTION_SOFT_DELETE)
        await self._backend.soft_delete(document_id, reason)
        deleted = self._remember(lifecycle.soft_delete(document, actor=self._actor(context), now=self._clock()))
        increment_counter("documents_soft_deleted_total")
        logger.info("document_soft_deleted document_id=%s", document_id)
        return deleted

    async def restore(self, document_id: str) -> Document:
        require_session(self._resolver)
        document = await self._known(document_id)
        # Computed up front so window and state violations fail before the request.
        restored = lifecycle.restore(
            document,
            restore_window_days=self._settings.restore_window_days,
            now=self._clock(),
        )
        await self._backend.restore_document(document_id)
        self._remember(restored)
        logger.info(
            "document_restored document_id=%s version=%s", document_id, restored.current_version_number
        )
        return restored

    async def hard_delete(self, document_id: str) -> None:
        require_role(self._resolver, ROLE_ADMINISTRATOR)
        document = await self._known(document_id)
        # Pull the hold history first so holds placed by other sessions block before the DELETE.
        await self._ledger.history(document_id)
        lifecycle.ensure_hard_delete_allowed(
            document, has_active_legal_holds=self._ledger.has_active_legal_holds(document_id)
        )
        await self._backend.hard_delete(document_id)
        self._documents.pop(document_id, None)
        self._versions.pop(document_id, None)
        self._purged.add(document_id)
        increment_counter("documents_hard_deleted_total")
        logger.info("document_hard_deleted document_id=%s", document_id)

    async def update_metadata(self, document_id: str, metadata: dict[str, Any]) -> Document:
        require_session(self._resolver)
        lifecycle.ensure_transition(await self._known(document_id), lifecycle.ACTION_UPDATE_METADATA)
        updated = await self._backend.update_metadata(document_id, dict(metadata))
        logger.info("document_metadata_updated document_id=%s", document_id)
        return self._remember(updated)

    async def versions(self, document_id: str) -> list[DocumentVersion]:
        # Newest first; a purged document has no history to report.
        self._ensure_not_purged(document_id)
        require_session(self._resolver)
        versions = await self._backend.list_versions(document_id)
        ordered = sorted(versions, key=lambda version: version.version_number, reverse=True)
        self._versions[document_id] = ordered
        return ordered

    async def download(self, document_id: str) -> bytes:
        self._ensure_not_purged(document_id)
        require_session(self._resolver)
        return await self._backend.download_document(document_id)

    async def document_types(self, *, refresh: bool = False) -> list[DocumentType]:
        if refresh or not self._document_types:
            require_session(self._resolver)
            types = await self._backend.list_document_types()
            self._document_types = {item.id: item for item in types}
        return list(self._document_types.values())

    async def retention_status(self, document_id: str, *, now: datetime | None = None) -> RetentionStatus:
        document = await self._known(document_id)
        await self.document_types()
        holds = await self._ledger.history(document_id)
        return status_for_document(
            document,
            self._document_types.get(document.document_type_id),
            holds,
            now=now or self._clock(),
        )
