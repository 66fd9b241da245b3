from __future__ import annotations

from datetime import datetime
from typing import Any, Generic, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


DOCUMENT_STATE_ACTIVE = "active"
DOCUMENT_STATE_SOFT_DELETED = "soft_deleted"
DOCUMENT_STATE_HARD_DELETED = "hard_deleted"


class WireModel(BaseModel):
    # The REST API speaks camelCase; Python callers use snake_case field names.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        # Drop unset optionals so partial requests stay partial on the wire.
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Document(WireModel):
    id: str
    tenant_id: str
    document_type_id: str
    current_version_number: int = Field(alias="currentVersion")
    metadata: dict[str, Any] = Field(default_factory=dict)
    blob_path: str
    size_bytes: int = Field(alias="fileSizeBytes")
    content_hash: str
    created_at: datetime
    created_by: str
    modified_at: datetime | None = None
    modified_by: str | None = None
    deleted_at: datetime | None = None
    deleted_by: str | None = None
    # Set by an explicit retention assignment; overrides the document type default.
    retention_expires_at: datetime | None = None

    @property
    def is_soft_deleted(self) -> bool:
        return self.deleted_at is not None


class DocumentVersion(WireModel):
    document_id: str
    version_number: int
    blob_path: str
    size_bytes: int = Field(alias="fileSizeBytes")
    content_hash: str
    created_by: str
    created_at: datetime


class DocumentUploadRequest(WireModel):
    document_type_id: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class LegalHold(WireModel):
    id: str
    tenant_id: str
    document_id: str
    case_reference: str
    reason: str
    placed_at: datetime
    placed_by: str
    released_at: datetime | None = None
    released_by: str | None = None
    release_reason: str | None = None

    @property
    def is_active(self) -> bool:
        return self.released_at is None


class LegalHoldRequest(WireModel):
    document_id: str
    case_reference: str
    reason: str


class RetentionStatus(WireModel):
    # Derived per read from document type, anchor time and hold state; never persisted.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    document_id: str
    document_type: str
    default_retention_days: int | None = None
    retention_expires_at: datetime | None = None
    days_until_retention: int | None = None
    has_active_legal_holds: bool = False
    # The server drops the "is" prefix from boolean getters; accept both spellings.
    is_eligible_for_hard_delete: bool = Field(
        default=False,
        validation_alias=AliasChoices("isEligibleForHardDelete", "eligibleForHardDelete"),
        serialization_alias="isEligibleForHardDelete",
    )
    is_soft_deleted: bool = Field(
        default=False,
        validation_alias=AliasChoices("isSoftDeleted", "softDeleted"),
        serialization_alias="isSoftDeleted",
    )


class RetentionCounts(WireModel):
    expired_documents: int = 0
    active_legal_holds: int = 0


class RetentionAssignment(WireModel):
    retention_days: int


class RetentionCleanupResult(WireModel):
    processed_count: int | None = None
    status: str | None = None


class DocumentType(WireModel):
    id: str
    tenant_id: str
    name: str
    display_name: str
    description: str = ""
    metadata_schema: dict[str, Any] = Field(default_factory=dict)
    allowed_groups: list[str] = Field(default_factory=list)
    retention_days: int | None = None
    active: bool = True


class Group(WireModel):
    id: str
    tenant_id: str
    name: str
    display_name: str
    description: str = ""
    parent_group_id: str | None = None


class AuditLog(WireModel):
    id: str
    tenant_id: str
    action: str
    entity_type: str
    entity_id: str
    user_id: str
    client_ip: str | None = None
    correlation_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


class AuditStatistics(WireModel):
    total: int = 0
    uploads: int = 0
    downloads: int = 0
    searches: int = 0


class BulkDownloadRequest(WireModel):
    document_ids: list[str] = Field(default_factory=list)


class SearchRequest(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    document_type: str | None = None
    metadata: dict[str, Any] | None = None
    date_from: str | None = None
    date_to: str | None = None
    include_deleted: bool | None = None
    page: int | None = None
    page_size: int | None = None


class HybridSearchResult(WireModel):
    chunk_id: str
    document_id: str
    sequence_number: int
    content: str
    token_count: int
    relevance_score: float
    search_type: str
    created_at: datetime


T = TypeVar("T")


class Page(WireModel, Generic[T]):
    results: list[T] = Field(default_factory=list)
    total_count: int = 0
    page: int = 0
    page_size: int = 0
    total_pages: int = 0
