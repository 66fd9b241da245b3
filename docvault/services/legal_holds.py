from __future__ import annotations

import logging
from typing import Iterable

from docvault.core.errors import HoldAlreadyReleasedError, ValidationError
from docvault.domain.models import LegalHold, LegalHoldRequest
from docvault.providers.backend.base import DocumentBackend
from docvault.services.auth.roles import ROLE_LEGAL_OFFICER, RoleResolver, require_role, require_session
from docvault.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


def _newest_first(holds: Iterable[LegalHold]) -> list[LegalHold]:
    return sorted(holds, key=lambda hold: hold.placed_at, reverse=True)


class LegalHoldLedger:
    """Client view of legal holds, kept in step with server acknowledgements.

    Holds are recorded locally only after the server accepts them, and a
    released hold is never modified again. ``has_active_legal_holds`` answers
    from the local view so lifecycle checks can run before any network call.
    """

    def __init__(self, backend: DocumentBackend, resolver: RoleResolver) -> None:
        self._backend = backend
        self._resolver = resolver
        self._holds: dict[str, LegalHold] = {}

    def _remember(self, holds: Iterable[LegalHold]) -> None:
        for hold in holds:
            known = self._holds.get(hold.id)
            if known is not None and not known.is_active:
                continue
            self._holds[hold.id] = hold

    def known_holds(self, document_id: str | None = None) -> list[LegalHold]:
        holds = list(self._holds.values())
        if document_id is not None:
            holds = [hold for hold in holds if hold.document_id == document_id]
        return _newest_first(holds)

    def has_active_legal_holds(self, document_id: str) -> bool:
        return any(hold.is_active for hold in self._holds.values() if hold.document_id == document_id)

    async def place(self, document_id: str, case_reference: str, reason: str) -> str:
        require_role(self._resolver, ROLE_LEGAL_OFFICER)
        if not case_reference or not case_reference.strip():
            raise ValidationError("Case reference is required")
        hold = await self._backend.place_legal_hold(
            LegalHoldRequest(document_id=document_id, case_reference=case_reference.strip(), reason=reason)
        )
        self._remember([hold])
        increment_counter("legal_holds_placed_total")
        logger.info(
            "legal_hold_placed hold_id=%s document_id=%s case_reference=%s",
            hold.id,
            document_id,
            hold.case_reference,
        )
        return hold.id

    async def release(self, hold_id: str, release_reason: str | None = None) -> LegalHold:
        require_role(self._resolver, ROLE_LEGAL_OFFICER)
        known = self._holds.get(hold_id)
        if known is not None and not known.is_active:
            raise HoldAlreadyReleasedError(f"Legal hold {hold_id} already released")
        released = await self._backend.release_legal_hold(hold_id, release_reason)
        self._holds[hold_id] = released
        increment_counter("legal_holds_released_total")
        logger.info("legal_hold_released hold_id=%s document_id=%s", hold_id, released.document_id)
        return released

    async def list_active(self, case_reference: str | None = None) -> list[LegalHold]:
        require_session(self._resolver)
        holds = await self._backend.list_active_legal_holds(case_reference or None)
        self._remember(holds)
        return _newest_first(hold for hold in holds if hold.is_active)

    async def history(self, document_id: str) -> list[LegalHold]:
        require_session(self._resolver)
        holds = await self._backend.legal_hold_history(document_id)
        self._remember(holds)
        return _newest_first(holds)

    async def place_many(self, document_ids: Iterable[str], case_reference: str, reason: str) -> list[str]:
        # Applied in order; the first failure stops the batch and earlier holds stay placed.
        return [await self.place(document_id, case_reference, reason) for document_id in document_ids]

    async def release_many(self, hold_ids: Iterable[str], release_reason: str | None = None) -> list[LegalHold]:
        return [await self.release(hold_id, release_reason) for hold_id in hold_ids]
