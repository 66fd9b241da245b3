from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError as ModelValidationError

from docvault.core.errors import AuthorizationDeniedError, DocumentNotFoundError, ValidationError
from docvault.services.auth.roles import ROLE_ADMINISTRATOR, ROLE_LEGAL_OFFICER
from docvault.services.retention import RetentionService, evaluate_retention
from docvault.tests.utils.backend import INVOICE_TYPE, MEMO_TYPE, build_harness


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _status(**overrides):
    params = dict(
        document_id="doc-1",
        document_type="invoice",
        default_retention_days=30,
        anchor=NOW - timedelta(days=10),
        now=NOW,
        has_active_legal_holds=False,
        is_soft_deleted=False,
    )
    params.update(overrides)
    return evaluate_retention(**params)


def test_days_until_retention_counts_partial_days_up() -> None:
    status = _status(anchor=NOW - timedelta(days=10, hours=1))
    assert status.retention_expires_at == NOW + timedelta(days=19, hours=23)
    assert status.days_until_retention == 20


def test_elapsed_retention_floors_at_zero() -> None:
    status = _status(anchor=NOW - timedelta(days=90))
    assert status.days_until_retention == 0


def test_active_hold_suspends_clock_and_blocks_eligibility() -> None:
    status = _status(anchor=NOW - timedelta(days=90), has_active_legal_holds=True, is_soft_deleted=True)
    assert status.days_until_retention is None
    assert status.retention_expires_at is not None
    assert not status.is_eligible_for_hard_delete


def test_soft_deleted_without_holds_is_eligible_before_expiry() -> None:
    status = _status(is_soft_deleted=True)
    assert status.days_until_retention == 20
    assert status.is_eligible_for_hard_delete


def test_active_document_is_never_eligible() -> None:
    assert not _status(anchor=NOW - timedelta(days=90)).is_eligible_for_hard_delete


def test_type_without_retention_has_no_expiry() -> None:
    status = _status(default_retention_days=None)
    assert status.retention_expires_at is None
    assert status.days_until_retention is None


def test_status_is_frozen() -> None:
    status = _status()
    with pytest.raises(ModelValidationError):
        status.is_soft_deleted = True


@pytest.mark.asyncio
async def test_release_restores_eligibility(tmp_path) -> None:
    harness = build_harness(tmp_path / "credentials.json")
    document = await harness.documents.upload(INVOICE_TYPE.id, filename="a.pdf", content=b"a")
    await harness.documents.soft_delete(document.id)
    hold_id = await harness.ledger.place(document.id, "CASE-1", "litigation")

    held = await harness.documents.retention_status(document.id)
    assert held.has_active_legal_holds
    assert held.days_until_retention is None
    assert not held.is_eligible_for_hard_delete

    await harness.ledger.release(hold_id, "case closed")
    released = await harness.documents.retention_status(document.id)
    assert released.is_eligible_for_hard_delete
    assert released.days_until_retention == 30
    assert released.document_type == "invoice"


@pytest.mark.asyncio
async def test_count_and_process_skip_held_documents(tmp_path) -> None:
    harness = build_harness(tmp_path / "credentials.json")
    free = await harness.documents.upload(INVOICE_TYPE.id, filename="a.pdf", content=b"a")
    held = await harness.documents.upload(INVOICE_TYPE.id, filename="b.pdf", content=b"b")
    await harness.documents.upload(MEMO_TYPE.id, filename="c.pdf", content=b"c")
    await harness.documents.soft_delete(free.id)
    await harness.documents.soft_delete(held.id)
    await harness.ledger.place(held.id, "CASE-2", "audit")
    harness.clock.advance(days=31)

    service = RetentionService(harness.backend, harness.resolver)
    counts = await service.count()
    assert counts.expired_documents == 2

    result = await service.process()
    assert result.processed_count == 1
    assert result.status == "completed"
    assert (await service.count()).expired_documents == 1


@pytest.mark.asyncio
async def test_admin_operations_require_administrator(tmp_path) -> None:
    harness = build_harness(tmp_path / "credentials.json", roles=[ROLE_LEGAL_OFFICER])
    service = RetentionService(harness.backend, harness.resolver)
    with pytest.raises(AuthorizationDeniedError):
        await service.count()
    with pytest.raises(AuthorizationDeniedError):
        await service.process()


@pytest.mark.asyncio
async def test_expiring_within_reports_soonest_first(tmp_path) -> None:
    harness = build_harness(tmp_path / "credentials.json", roles=[ROLE_ADMINISTRATOR])
    older = await harness.documents.upload(INVOICE_TYPE.id, filename="a.pdf", content=b"a")
    harness.clock.advance(days=10)
    newer = await harness.documents.upload(INVOICE_TYPE.id, filename="b.pdf", content=b"b")
    await harness.documents.upload(MEMO_TYPE.id, filename="c.pdf", content=b"c")
    harness.clock.advance(days=5)

    service = RetentionService(harness.backend, harness.resolver)
    documents = (await harness.documents.list_documents()).results
    types = await harness.documents.document_types()

    expiring = service.expiring_within(documents, types, [], days=30, now=harness.clock())
    assert [item.document.id for item in expiring] == [older.id, newer.id]
    assert [item.status.days_until_retention for item in expiring] == [15, 25]

    soon = service.expiring_within(documents, types, [], days=20, now=harness.clock())
    assert [item.document.id for item in soon] == [older.id]


def test_assigned_expiry_replaces_type_default() -> None:
    status = _status(default_retention_days=None, expires_at=NOW + timedelta(days=3, hours=1))
    assert status.retention_expires_at == NOW + timedelta(days=3, hours=1)
    assert status.days_until_retention == 4
    assert status.default_retention_days is None


class SetRetentionSpy:
    # Stands in for the backend when only the local checks matter.
    def __init__(self) -> None:
        self.calls: list[tuple[str, int]] = []

    async def set_retention(self, document_id: str, retention_days: int) -> None:
        self.calls.append((document_id, retention_days))


@pytest.mark.asyncio
@pytest.mark.parametrize("days", [-1, 36501, None, 2.5])
async def test_assign_rejects_out_of_range_days_locally(tmp_path, days) -> None:
    harness = build_harness(tmp_path / "credentials.json", roles=[ROLE_ADMINISTRATOR])
    spy = SetRetentionSpy()
    with pytest.raises(ValidationError):
        await RetentionService(spy, harness.resolver).assign("doc-1", days)
    assert spy.calls == []


@pytest.mark.asyncio
async def test_assign_sets_expiry_from_now(tmp_path) -> None:
    harness = build_harness(tmp_path / "credentials.json")
    document = await harness.documents.upload(MEMO_TYPE.id, filename="memo.pdf", content=b"m")
    harness.clock.advance(days=2)

    service = RetentionService(harness.backend, harness.resolver)
    await service.assign(document.id, 10)
    await service.assign(document.id, 0)
    await service.assign(document.id, 36500)
    await service.assign(document.id, 10)

    server = await service.status(document.id)
    assert server.retention_expires_at == harness.clock() + timedelta(days=10)
    assert server.days_until_retention == 10
    assert server.default_retention_days is None

    await harness.documents.refresh(document.id)
    local = await harness.documents.retention_status(document.id)
    assert local.retention_expires_at == server.retention_expires_at


@pytest.mark.asyncio
async def test_assign_refuses_deleted_and_unknown_documents(tmp_path) -> None:
    harness = build_harness(tmp_path / "credentials.json")
    document = await harness.documents.upload(INVOICE_TYPE.id, filename="a.pdf", content=b"a")
    await harness.documents.soft_delete(document.id)

    service = RetentionService(harness.backend, harness.resolver)
    with pytest.raises(ValidationError, match="Cannot set retention on deleted document"):
        await service.assign(document.id, 10)
    with pytest.raises(DocumentNotFoundError):
        await service.assign("missing", 10)


@pytest.mark.asyncio
async def test_assigned_expiry_drives_cleanup(tmp_path) -> None:
    harness = build_harness(tmp_path / "credentials.json")
    document = await harness.documents.upload(MEMO_TYPE.id, filename="memo.pdf", content=b"m")
    service = RetentionService(harness.backend, harness.resolver)
    await service.assign(document.id, 5)
    await harness.documents.soft_delete(document.id)

    assert (await service.count()).expired_documents == 0
    harness.clock.advance(days=5)
    assert (await service.count()).expired_documents == 1
    assert (await service.process()).processed_count == 1


@pytest.mark.asyncio
async def test_assign_requires_administrator(tmp_path) -> None:
    harness = build_harness(tmp_path / "credentials.json", roles=[ROLE_LEGAL_OFFICER])
    with pytest.raises(AuthorizationDeniedError):
        await RetentionService(harness.backend, harness.resolver).assign("doc-1", 10)
