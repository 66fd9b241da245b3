from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, TypeVar

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as ModelValidationError

from docvault.core.config import get_settings
from docvault.core.errors import (
    AuthenticationMissingError,
    AuthorizationDeniedError,
    BackendError,
    ConcurrentModificationError,
    DocVaultError,
    DocumentNotFoundError,
    HoldAlreadyReleasedError,
    LegalHoldActiveError,
    LegalHoldNotFoundError,
    NotFoundError,
    PolicyViolationError,
    RecoveryWindowExceededError,
    RetentionNotExpiredError,
    TransientNetworkError,
    ValidationError,
)
from docvault.domain.models import (
    AuditLog,
    AuditStatistics,
    BulkDownloadRequest,
    Document,
    DocumentType,
    DocumentUploadRequest,
    DocumentVersion,
    Group,
    HybridSearchResult,
    LegalHold,
    LegalHoldRequest,
    Page,
    RetentionAssignment,
    RetentionCleanupResult,
    RetentionCounts,
    RetentionStatus,
    SearchRequest,
)
from docvault.services.auth.authorizer import BearerAuth
from docvault.services.auth.credentials import CredentialStore
from docvault.services.resilience import retry_async
from docvault.services.telemetry import increment_counter, record_external_call


logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

# Server error codes that map onto a specific client error type.
_CODE_ERRORS: dict[str, type[DocVaultError]] = {
    "LEGAL_HOLD_ACTIVE": LegalHoldActiveError,
    "RETENTION_NOT_EXPIRED": RetentionNotExpiredError,
    "CONCURRENT_MODIFICATION": ConcurrentModificationError,
    "DOCUMENT_NOT_FOUND": DocumentNotFoundError,
    "TENANT_MISMATCH": AuthorizationDeniedError,
    "UNAUTHORIZED_ACCESS": AuthorizationDeniedError,
}

_MESSAGE_ERRORS: dict[str, type[DocVaultError]] = {
    "legal hold already released": HoldAlreadyReleasedError,
    "recovery window exceeded": RecoveryWindowExceededError,
}


def _error_body(response: httpx.Response) -> tuple[str | None, str]:
    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None, response.text[:200]
    if not isinstance(body, dict):
        return None, str(body)[:200]
    code = body.get("errorCode") or body.get("code")
    message = body.get("message") or body.get("detail") or ""
    return (code if isinstance(code, str) else None), str(message)


def map_error_response(response: httpx.Response, *, not_found: type[NotFoundError] = NotFoundError) -> DocVaultError:
    # Translate HTTP failures into the client error taxonomy; no status is retried here.
    status = response.status_code
    code, message = _error_body(response)
    if status == 401:
        return AuthenticationMissingError(message or None)
    if status == 403:
        return AuthorizationDeniedError(message or None)
    if code in _CODE_ERRORS and status < 500:
        return _CODE_ERRORS[code](message or None)
    lowered = message.strip().lower()
    if lowered in _MESSAGE_ERRORS:
        return _MESSAGE_ERRORS[lowered](message)
    if status == 404:
        return not_found(message or None)
    if status == 409:
        return PolicyViolationError(message or None)
    if status in {400, 422}:
        return ValidationError(message or None)
    if status >= 500:
        return TransientNetworkError(f"Document service error: {status}")
    return BackendError(f"Unexpected response {status}: {message}", status_code=status)


def _parse_page(payload: Any, item_parser: Callable[[Any], M]) -> Page[M]:
    # Accept both the search result shape and the server's paged list shape.
    if isinstance(payload, list):
        items = [item_parser(item) for item in payload]
        return Page(results=items, total_count=len(items), page=0, page_size=len(items), total_pages=1)
    if not isinstance(payload, dict):
        raise BackendError("Unexpected page payload")
    raw_items = payload.get("results", payload.get("content", []))
    if not isinstance(raw_items, list):
        raise BackendError("Unexpected page payload")
    try:
        total_count = int(payload.get("totalCount", payload.get("totalElements", len(raw_items))))
        page = int(payload.get("page", payload.get("number", 0)))
        page_size = int(payload.get("pageSize", payload.get("size", len(raw_items))))
        total_pages = int(payload.get("totalPages", 1))
    except (TypeError, ValueError) as exc:
        raise BackendError("Unexpected page payload") from exc
    return Page(
        results=[item_parser(item) for item in raw_items],
        total_count=total_count,
        page=page,
        page_size=page_size,
        total_pages=total_pages,
    )


class HttpBackend:
    def __init__(
        self,
        *,
        base_url: str | None = None,
        store: CredentialStore | None = None,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = get_settings()
        self._base_url = (base_url or self._settings.api_base_url).rstrip("/")
        self._auth = BearerAuth(store)
        self._client = client
        self._transport = transport

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        # Reuse a single client for connection pooling.
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            auth=self._auth,
            timeout=self._settings.api_timeout_ms / 1000.0,
            transport=self._transport,
        )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        integration: str,
        not_found: type[NotFoundError] = NotFoundError,
        **kwargs: Any,
    ) -> httpx.Response:
        client = self._get_client()

        async def _call() -> httpx.Response:
            try:
                response = await client.request(method, path, **kwargs)
            except httpx.TimeoutException as exc:
                raise TransientNetworkError(f"{method} {path} timed out") from exc
            except httpx.TransportError as exc:
                raise TransientNetworkError(f"{method} {path} failed: {exc}") from exc
            if response.status_code >= 500:
                raise map_error_response(response, not_found=not_found)
            return response

        start = time.monotonic()
        try:
            if method == "GET":
                response = await retry_async(_call)
            else:
                # Writes are never replayed; the server arbitrates duplicates.
                response = await _call()
        except TimeoutError as exc:
            self._record(integration, start, success=False)
            raise TransientNetworkError(f"{method} {path} timed out") from exc
        except DocVaultError:
            self._record(integration, start, success=False)
            logger.warning("api_call_failed method=%s path=%s", method, path)
            raise

        if response.status_code >= 400:
            self._record(integration, start, success=False)
            error = map_error_response(response, not_found=not_found)
            logger.info(
                "api_call_rejected method=%s path=%s status=%s code=%s",
                method,
                path,
                response.status_code,
                error.code,
            )
            raise error
        self._record(integration, start, success=True)
        return response

    def _record(self, integration: str, start: float, *, success: bool) -> None:
        record_external_call(
            integration=integration,
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=success,
        )
        if not success:
            increment_counter(f"api_failures_total.{integration}")

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise BackendError("Document service returned invalid JSON", status_code=response.status_code) from exc

    @classmethod
    def _model(cls, model: type[M], response: httpx.Response) -> M:
        try:
            return model.model_validate(cls._json(response))
        except ModelValidationError as exc:
            raise BackendError(f"Unexpected {model.__name__} payload") from exc

    @classmethod
    def _models(cls, model: type[M], response: httpx.Response) -> list[M]:
        payload = cls._json(response)
        if not isinstance(payload, list):
            raise BackendError(f"Expected a list of {model.__name__}")
        try:
            return [model.model_validate(item) for item in payload]
        except ModelValidationError as exc:
            raise BackendError(f"Unexpected {model.__name__} payload") from exc

    @classmethod
    def _page(cls, model: type[M], response: httpx.Response) -> Page[M]:
        try:
            return _parse_page(cls._json(response), model.model_validate)
        except ModelValidationError as exc:
            raise BackendError(f"Unexpected {model.__name__} page payload") from exc

    async def upload_document(
        self,
        request: DocumentUploadRequest,
        *,
        filename: str,
        content: bytes,
        content_type: str = "application/pdf",
    ) -> Document:
        files = {
            "file": (filename, content, content_type),
            "request": (None, json.dumps(request.to_wire()), "application/json"),
        }
        response = await self._request("POST", "/documents", integration="documents", files=files)
        return self._model(Document, response)

    async def get_document(self, document_id: str) -> Document:
        response = await self._request(
            "GET", f"/documents/{document_id}", integration="documents", not_found=DocumentNotFoundError
        )
        return self._model(Document, response)

    async def list_documents(
        self, *, page: int = 0, page_size: int = 20, include_deleted: bool = False
    ) -> Page[Document]:
        params: dict[str, Any] = {"page": page, "size": page_size}
        if include_deleted:
            params["includeDeleted"] = "true"
        response = await self._request("GET", "/documents", integration="documents", params=params)
        return self._page(Document, response)

    async def update_metadata(self, document_id: str, metadata: dict[str, Any]) -> Document:
        response = await self._request(
            "PUT",
            f"/documents/{document_id}/metadata",
            integration="documents",
            not_found=DocumentNotFoundError,
            json=metadata,
        )
        return self._model(Document, response)

    async def list_versions(self, document_id: str) -> list[DocumentVersion]:
        response = await self._request(
            "GET",
            f"/documents/{document_id}/versions",
            integration="versions",
            not_found=DocumentNotFoundError,
        )
        versions = self._models(DocumentVersion, response)
        return sorted(versions, key=lambda version: version.version_number, reverse=True)

    async def upload_version(
        self,
        document_id: str,
        *,
        filename: str,
        content: bytes,
        content_type: str = "application/pdf",
    ) -> None:
        await self._request(
            "POST",
            f"/documents/{document_id}/versions",
            integration="versions",
            not_found=DocumentNotFoundError,
            files={"file": (filename, content, content_type)},
        )

    async def restore_version(self, document_id: str, version_number: int) -> None:
        await self._request(
            "POST",
            f"/documents/{document_id}/versions/{version_number}/restore",
            integration="versions",
            not_found=DocumentNotFoundError,
        )

    async def download_document(self, document_id: str) -> bytes:
        response = await self._request(
            "GET",
            f"/documents/{document_id}/download",
            integration="documents",
            not_found=DocumentNotFoundError,
        )
        return response.content

    async def soft_delete(self, document_id: str, reason: str | None = None) -> None:
        params = {"reason": reason} if reason else None
        await self._request(
            "DELETE",
            f"/documents/{document_id}",
            integration="documents",
            not_found=DocumentNotFoundError,
            params=params,
        )

    async def restore_document(self, document_id: str) -> None:
        await self._request(
            "POST",
            f"/documents/{document_id}/restore",
            integration="documents",
            not_found=DocumentNotFoundError,
        )

    async def hard_delete(self, document_id: str) -> None:
        await self._request(
            "DELETE",
            f"/documents/{document_id}/hard",
            integration="documents",
            not_found=DocumentNotFoundError,
        )

    async def place_legal_hold(self, request: LegalHoldRequest) -> LegalHold:
        response = await self._request(
            "POST",
            "/legal-holds",
            integration="legal_holds",
            not_found=DocumentNotFoundError,
            json=request.to_wire(),
        )
        return self._model(LegalHold, response)

    async def release_legal_hold(self, hold_id: str, reason: str | None = None) -> LegalHold:
        params = {"reason": reason} if reason else None
        response = await self._request(
            "DELETE",
            f"/legal-holds/{hold_id}",
            integration="legal_holds",
            not_found=LegalHoldNotFoundError,
            params=params,
        )
        return self._model(LegalHold, response)

    async def list_active_legal_holds(self, case_reference: str | None = None) -> list[LegalHold]:
        params = {"caseReference": case_reference} if case_reference else None
        response = await self._request("GET", "/legal-holds", integration="legal_holds", params=params)
        return self._models(LegalHold, response)

    async def legal_hold_history(self, document_id: str) -> list[LegalHold]:
        response = await self._request(
            "GET",
            f"/legal-holds/document/{document_id}",
            integration="legal_holds",
            not_found=DocumentNotFoundError,
        )
        return self._models(LegalHold, response)

    async def retention_counts(self) -> RetentionCounts:
        response = await self._request("GET", "/admin/retention/count", integration="retention")
        return self._model(RetentionCounts, response)

    async def process_retention(self) -> RetentionCleanupResult:
        response = await self._request("POST", "/admin/retention/process", integration="retention")
        if not response.content:
            return RetentionCleanupResult(status="accepted")
        return self._model(RetentionCleanupResult, response)

    async def set_retention(self, document_id: str, retention_days: int) -> None:
        await self._request(
            "POST",
            f"/documents/{document_id}/retention",
            integration="retention",
            not_found=DocumentNotFoundError,
            json=RetentionAssignment(retention_days=retention_days).to_wire(),
        )

    async def retention_status(self, document_id: str) -> RetentionStatus:
        response = await self._request(
            "GET",
            f"/documents/{document_id}/retention-status",
            integration="retention",
            not_found=DocumentNotFoundError,
        )
        return self._model(RetentionStatus, response)

    async def search(self, request: SearchRequest) -> Page[Document]:
        response = await self._request("POST", "/search", integration="search", json=request.to_wire())
        return self._page(Document, response)

    async def hybrid_search(self, query: str, *, page: int = 0, page_size: int = 20) -> Page[HybridSearchResult]:
        response = await self._request(
            "GET",
            "/search-hybrid",
            integration="search",
            params={"query": query, "page": page, "pageSize": page_size},
        )
        return self._page(HybridSearchResult, response)

    async def bulk_download(self, document_ids: list[str]) -> bytes:
        response = await self._request(
            "POST",
            "/search/bulk-download",
            integration="search",
            not_found=DocumentNotFoundError,
            json=BulkDownloadRequest(document_ids=document_ids).to_wire(),
        )
        return response.content

    async def list_document_types(self) -> list[DocumentType]:
        response = await self._request("GET", "/document-types", integration="document_types")
        return self._models(DocumentType, response)

    async def list_groups(self) -> list[Group]:
        response = await self._request("GET", "/groups", integration="groups")
        return self._models(Group, response)

    async def audit_logs(self, *, page: int = 0, page_size: int = 50) -> Page[AuditLog]:
        response = await self._request(
            "GET", "/audit/logs", integration="audit", params={"page": page, "size": page_size}
        )
        return self._page(AuditLog, response)

    async def document_audit_trail(
        self, document_id: str, *, page: int = 0, page_size: int = 50
    ) -> Page[AuditLog]:
        response = await self._request(
            "GET",
            f"/audit/logs/document/{document_id}",
            integration="audit",
            not_found=DocumentNotFoundError,
            params={"page": page, "size": page_size},
        )
        return self._page(AuditLog, response)

    async def export_audit(
        self, *, export_format: str = "csv", start_time: str | None = None, end_time: str | None = None
    ) -> bytes:
        params = {"format": export_format}
        if start_time:
            params["startTime"] = start_time
        if end_time:
            params["endTime"] = end_time
        response = await self._request("POST", "/audit/export", integration="audit", params=params)
        return response.content

    async def audit_log(self, log_id: str) -> AuditLog:
        response = await self._request("GET", f"/audit/logs/{log_id}", integration="audit")
        return self._model(AuditLog, response)

    async def user_audit_trail(self, user_id: str, *, page: int = 0, page_size: int = 50) -> Page[AuditLog]:
        response = await self._request(
            "GET",
            f"/audit/logs/user/{user_id}",
            integration="audit",
            params={"page": page, "size": page_size},
        )
        return self._page(AuditLog, response)

    async def audit_statistics(
        self, *, start_time: str | None = None, end_time: str | None = None
    ) -> AuditStatistics:
        params: dict[str, str] = {}
        if start_time:
            params["startTime"] = start_time
        if end_time:
            params["endTime"] = end_time
        response = await self._request("GET", "/audit/statistics", integration="audit", params=params)
        return self._model(AuditStatistics, response)
