from __future__ import annotations

import io
import zipfile

import pytest

from docvault.core.errors import AuthenticationMissingError, DocumentNotFoundError, ValidationError
from docvault.domain.models import SearchRequest
from docvault.services.search_query import DocumentSearch, compose
from docvault.tests.utils.backend import INVOICE_TYPE, MEMO_TYPE, build_harness


def test_free_text_is_trimmed_into_query() -> None:
    request = compose("  policy  ", {})
    assert request.metadata == {"query": "policy"}


def test_blank_free_text_omits_metadata() -> None:
    request = compose("   ", {})
    assert request.metadata is None
    assert "metadata" not in request.to_wire()


def test_free_text_merges_with_existing_metadata() -> None:
    request = compose("invoice", {"metadata": {"region": "eu"}})
    assert request.metadata == {"region": "eu", "query": "invoice"}


def test_free_text_overwrites_previous_query() -> None:
    assert compose("new", {"metadata": {"query": "old"}}).metadata == {"query": "new"}
    assert compose("", {"metadata": {"query": "old"}}).metadata == {"query": "old"}


def test_compose_is_deterministic_and_leaves_input_untouched() -> None:
    filters = SearchRequest(document_type="invoice", metadata={"region": "eu"}, page=2, page_size=10)
    first = compose("q", filters)
    second = compose("q", filters)
    assert first == second
    assert filters.metadata == {"region": "eu"}
    assert (first.document_type, first.page, first.page_size) == ("invoice", 2, 10)


def test_other_fields_pass_through_from_wire_names() -> None:
    request = compose(
        None,
        {"documentType": "memo", "dateFrom": "2026-01-01", "dateTo": "2026-02-01", "includeDeleted": True},
    )
    assert request.to_wire() == {
        "documentType": "memo",
        "dateFrom": "2026-01-01",
        "dateTo": "2026-02-01",
        "includeDeleted": True,
    }


@pytest.mark.asyncio
async def test_document_search_applies_query_and_filters(tmp_path) -> None:
    harness = build_harness(tmp_path / "credentials.json")
    await harness.documents.upload(
        INVOICE_TYPE.id, filename="a.pdf", content=b"a", metadata={"customer": "Acme Corp", "region": "eu"}
    )
    await harness.documents.upload(
        INVOICE_TYPE.id, filename="b.pdf", content=b"b", metadata={"customer": "Globex", "region": "eu"}
    )
    memo = await harness.documents.upload(MEMO_TYPE.id, filename="c.pdf", content=b"c", metadata={"customer": "acme"})
    search = DocumentSearch(harness.backend, harness.resolver)

    by_text = await search.search("acme", {})
    assert by_text.total_count == 2

    by_type = await search.search("acme", {"document_type": "memo"})
    assert [document.id for document in by_type.results] == [memo.id]

    await harness.documents.soft_delete(memo.id)
    assert (await search.search("acme", {"document_type": "memo"})).total_count == 0
    assert (await search.search("acme", {"document_type": "memo", "include_deleted": True})).total_count == 1


@pytest.mark.asyncio
async def test_hybrid_search_matches_content(tmp_path) -> None:
    harness = build_harness(tmp_path / "credentials.json")
    document = await harness.documents.upload(
        INVOICE_TYPE.id, filename="a.pdf", content=b"quarterly revenue summary"
    )
    search = DocumentSearch(harness.backend, harness.resolver)
    result = await search.hybrid("  Revenue ")
    assert [item.document_id for item in result.results] == [document.id]
    with pytest.raises(ValidationError):
        await search.hybrid("   ")


@pytest.mark.asyncio
async def test_search_requires_session(tmp_path) -> None:
    harness = build_harness(tmp_path / "credentials.json", roles=None)
    with pytest.raises(AuthenticationMissingError):
        await DocumentSearch(harness.backend, harness.resolver).search("anything")


@pytest.mark.asyncio
async def test_bulk_download_zips_latest_content_per_document(tmp_path) -> None:
    harness = build_harness(tmp_path / "credentials.json")
    first = await harness.documents.upload(INVOICE_TYPE.id, filename="a.pdf", content=b"first v1")
    await harness.documents.new_version(first.id, filename="a.pdf", content=b"first v2")
    second = await harness.documents.upload(MEMO_TYPE.id, filename="b.pdf", content=b"second")

    search = DocumentSearch(harness.backend, harness.resolver)
    payload = await search.bulk_download([first.id, " ", second.id, first.id])
    with zipfile.ZipFile(io.BytesIO(payload)) as archive:
        assert archive.namelist() == [f"{first.id}.pdf", f"{second.id}.pdf"]
        assert archive.read(f"{first.id}.pdf") == b"first v2"


@pytest.mark.asyncio
async def test_bulk_download_rejects_empty_and_unknown_ids(tmp_path) -> None:
    harness = build_harness(tmp_path / "credentials.json")
    document = await harness.documents.upload(INVOICE_TYPE.id, filename="a.pdf", content=b"a")
    search = DocumentSearch(harness.backend, harness.resolver)
    with pytest.raises(ValidationError):
        await search.bulk_download(["", "  "])
    with pytest.raises(DocumentNotFoundError, match="Document not found: missing"):
        await search.bulk_download([document.id, "missing"])

    harness.store.logout()
    with pytest.raises(AuthenticationMissingError):
        await search.bulk_download([document.id])
