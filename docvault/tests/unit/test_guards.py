from __future__ import annotations

import base64

import pytest

from docvault.core.config import get_settings
from docvault.services.auth.guards import (
    GUARD_REDIRECTED,
    Destination,
    GuardDecision,
    evaluate_guards,
    navigate,
    resolve_destination,
    role_guard,
    session_guard,
)
from docvault.services.auth.roles import (
    ROLE_ADMINISTRATOR,
    ROLE_COMPLIANCE_OFFICER,
    ROLE_LEGAL_OFFICER,
    AuthorizationContext,
)
from docvault.tests.utils.tokens import make_token, raw_token


def _context(*roles: str) -> AuthorizationContext:
    return AuthorizationContext.from_token(make_token(roles=roles))


def test_missing_session_redirects_to_unauthorized() -> None:
    decision = navigate("documents", AuthorizationContext.from_token(None))
    assert decision.outcome == GUARD_REDIRECTED
    assert decision.redirect_to == "/unauthorized"
    assert decision.code == "AUTH_UNAUTHORIZED"


def test_undecodable_session_redirects_to_unauthorized() -> None:
    decision = navigate("admin/retention", AuthorizationContext.from_token("garbage"))
    assert decision.redirect_to == "/unauthorized"


def test_deeply_nested_payload_redirects_to_unauthorized() -> None:
    segment = base64.urlsafe_b64encode(b"[" * 3000 + b"]" * 3000).decode("ascii")
    decision = navigate("documents", AuthorizationContext.from_token(raw_token(segment)))
    assert decision.redirect_to == "/unauthorized"


def test_missing_role_redirects_to_forbidden() -> None:
    decision = navigate("admin/retention", _context(ROLE_LEGAL_OFFICER))
    assert not decision.allowed
    assert decision.redirect_to == "/forbidden"
    assert decision.code == "AUTH_FORBIDDEN"
    assert ROLE_ADMINISTRATOR in decision.reason


@pytest.mark.parametrize(
    ("path", "role"),
    [
        ("admin/document-types", ROLE_ADMINISTRATOR),
        ("admin/groups", ROLE_ADMINISTRATOR),
        ("/admin/audit-logs", ROLE_COMPLIANCE_OFFICER),
        ("legal/holds", ROLE_LEGAL_OFFICER),
        ("governance/traceability", ROLE_COMPLIANCE_OFFICER),
    ],
)
def test_role_routes_allow_matching_role(path: str, role: str) -> None:
    assert navigate(path, _context(role)).allowed
    other = {ROLE_ADMINISTRATOR, ROLE_LEGAL_OFFICER, ROLE_COMPLIANCE_OFFICER} - {role}
    assert navigate(path, _context(*other)).redirect_to == "/forbidden"


def test_session_routes_accept_any_signed_in_user() -> None:
    context = _context()
    for path in ("documents", "documents/upload", "documents/abc123", "documents/abc123/preview", "search"):
        assert navigate(path, context).allowed


def test_public_routes_skip_session_check() -> None:
    anonymous = AuthorizationContext.from_token(None)
    assert navigate("/unauthorized", anonymous).allowed
    assert navigate("forbidden", anonymous).allowed


def test_resolve_destination_matches_patterns_and_falls_back() -> None:
    assert resolve_destination("documents/42").path == "documents/:id"
    assert resolve_destination("/search?q=invoice").path == "search"
    assert resolve_destination("").path == "documents"
    assert resolve_destination("no/such/page").path == "documents"


def test_bypass_allows_role_routes() -> None:
    context = AuthorizationContext.from_token(None, bypass=True)
    assert navigate("admin/retention", context).allowed


def test_guards_stop_at_first_redirect() -> None:
    calls: list[str] = []

    def tracking_guard(destination: Destination, context: AuthorizationContext) -> GuardDecision:
        calls.append(destination.path)
        return session_guard(destination, context)

    def never_reached(destination: Destination, context: AuthorizationContext) -> GuardDecision:
        raise AssertionError("guard evaluated after redirect")

    destination = Destination("admin/retention", required_role=ROLE_ADMINISTRATOR)
    decision = evaluate_guards(destination, AuthorizationContext.from_token(None), (tracking_guard, never_reached))
    assert decision.redirect_to == "/unauthorized"
    assert calls == ["admin/retention"]


def test_guards_do_not_mutate_context() -> None:
    context = _context(ROLE_LEGAL_OFFICER)
    before = (context.roles, context.token, context.authenticated)
    role_guard(Destination("admin/groups", required_role=ROLE_ADMINISTRATOR), context)
    assert (context.roles, context.token, context.authenticated) == before


def test_redirect_targets_follow_settings(monkeypatch) -> None:
    monkeypatch.setenv("FORBIDDEN_ROUTE", "/denied")
    get_settings.cache_clear()
    assert navigate("legal/holds", _context()).redirect_to == "/denied"
