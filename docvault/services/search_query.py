from __future__ import annotations

import logging
from typing import Any, Mapping

from docvault.core.config import get_settings
from docvault.core.errors import ValidationError
from docvault.domain.models import Document, HybridSearchResult, Page, SearchRequest
from docvault.providers.backend.base import DocumentBackend
from docvault.services.auth.roles import RoleResolver, require_session


logger = logging.getLogger(__name__)


QUERY_METADATA_KEY = "query"


def _coerce_filters(filters: SearchRequest | Mapping[str, Any] | None) -> SearchRequest:
    if filters is None:
        return SearchRequest()
    if isinstance(filters, SearchRequest):
        return filters
    return SearchRequest.model_validate(dict(filters))


def compose(free_text: str | None, filters: SearchRequest | Mapping[str, Any] | None = None) -> SearchRequest:
    # Merge free text into the filter metadata; never mutates the caller's filters.
    base = _coerce_filters(filters)
    metadata = dict(base.metadata or {})
    text = (free_text or "").strip()
    if text:
        metadata[QUERY_METADATA_KEY] = text
    return base.model_copy(update={"metadata": metadata or None})


class DocumentSearch:
    def __init__(self, backend: DocumentBackend, resolver: RoleResolver) -> None:
        self._backend = backend
        self._resolver = resolver

    async def search(
        self, free_text: str | None, filters: SearchRequest | Mapping[str, Any] | None = None
    ) -> Page[Document]:
        require_session(self._resolver)
        request = compose(free_text, filters)
        if request.page_size is None:
            request = request.model_copy(update={"page_size": get_settings().search_default_page_size})
        logger.debug("document_search document_type=%s page=%s", request.document_type, request.page)
        return await self._backend.search(request)

    async def hybrid(self, query: str, *, page: int = 0, page_size: int | None = None) -> Page[HybridSearchResult]:
        require_session(self._resolver)
        text = query.strip()
        if not text:
            raise ValidationError("Search query is required")
        return await self._backend.hybrid_search(
            text, page=page, page_size=page_size or get_settings().search_default_page_size
        )

    async def bulk_download(self, document_ids: list[str]) -> bytes:
        # Zip archive with one "<document id>.pdf" entry per requested document.
        require_session(self._resolver)
        ids = list(dict.fromkeys(item.strip() for item in document_ids if item and item.strip()))
        if not ids:
            raise ValidationError("At least one document id is required")
        payload = await self._backend.bulk_download(ids)
        logger.info("bulk_download documents=%s bytes=%s", len(ids), len(payload))
        return payload
