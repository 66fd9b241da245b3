from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import Callable

from docvault.core.config import get_settings
from docvault.core.errors import AuthenticationMissingError, AuthorizationDeniedError
from docvault.services.auth.roles import (
    ROLE_ADMINISTRATOR,
    ROLE_COMPLIANCE_OFFICER,
    ROLE_LEGAL_OFFICER,
    AuthorizationContext,
)


logger = logging.getLogger(__name__)


GUARD_ALLOWED = "allowed"
GUARD_REDIRECTED = "redirected"


@dataclass(frozen=True)
class Destination:
    path: str
    required_role: str | None = None
    requires_session: bool = True


@dataclass(frozen=True)
class GuardDecision:
    outcome: str
    redirect_to: str | None = None
    code: str | None = None
    reason: str | None = None

    @property
    def allowed(self) -> bool:
        return self.outcome == GUARD_ALLOWED


Guard = Callable[[Destination, AuthorizationContext], GuardDecision]

ALLOW = GuardDecision(outcome=GUARD_ALLOWED)


def session_guard(destination: Destination, context: AuthorizationContext) -> GuardDecision:
    # Missing or undecodable sessions go to the sign-in prompt.
    if not destination.requires_session or context.authenticated:
        return ALLOW
    return GuardDecision(
        outcome=GUARD_REDIRECTED,
        redirect_to=get_settings().unauthorized_route,
        code=AuthenticationMissingError.code,
        reason=AuthenticationMissingError.reason,
    )


def role_guard(destination: Destination, context: AuthorizationContext) -> GuardDecision:
    # Missing roles redirect to a forbidden page rather than blocking silently.
    if destination.required_role is None or context.has_role(destination.required_role):
        return ALLOW
    return GuardDecision(
        outcome=GUARD_REDIRECTED,
        redirect_to=get_settings().forbidden_route,
        code=AuthorizationDeniedError.code,
        reason=f"{AuthorizationDeniedError.reason}: {destination.required_role} required",
    )


DEFAULT_GUARDS: tuple[Guard, ...] = (session_guard, role_guard)


def evaluate_guards(
    destination: Destination,
    context: AuthorizationContext,
    guards: tuple[Guard, ...] = DEFAULT_GUARDS,
) -> GuardDecision:
    # Guards run in order and the first redirect wins; none of them touch session state.
    for guard in guards:
        decision = guard(destination, context)
        if not decision.allowed:
            logger.info(
                "navigation_redirected path=%s to=%s code=%s",
                destination.path,
                decision.redirect_to,
                decision.code,
            )
            return decision
    return ALLOW


ROUTES: tuple[Destination, ...] = (
    Destination("unauthorized", requires_session=False),
    Destination("forbidden", requires_session=False),
    Destination("documents"),
    Destination("documents/upload"),
    Destination("documents/:id"),
    Destination("documents/:id/preview"),
    Destination("search"),
    Destination("admin/document-types", required_role=ROLE_ADMINISTRATOR),
    Destination("admin/groups", required_role=ROLE_ADMINISTRATOR),
    Destination("admin/retention", required_role=ROLE_ADMINISTRATOR),
    Destination("admin/audit-logs", required_role=ROLE_COMPLIANCE_OFFICER),
    Destination("legal/holds", required_role=ROLE_LEGAL_OFFICER),
    Destination("governance/version-history", required_role=ROLE_COMPLIANCE_OFFICER),
    Destination("governance/traceability", required_role=ROLE_COMPLIANCE_OFFICER),
    Destination("governance/retrieval-audit", required_role=ROLE_COMPLIANCE_OFFICER),
)


def _pattern(path: str) -> re.Pattern[str]:
    parts = [r"[^/]+" if part.startswith(":") else re.escape(part) for part in path.split("/")]
    return re.compile("^" + "/".join(parts) + "$")


_ROUTE_PATTERNS = [(_pattern(route.path), route) for route in ROUTES]


def resolve_destination(path: str) -> Destination:
    # Empty and unknown paths fall back to the document list.
    fallback = get_settings().default_route.strip("/")
    requested = path.split("?", 1)[0].strip().strip("/")
    for candidate in (requested, fallback):
        for pattern, route in _ROUTE_PATTERNS:
            if candidate and pattern.match(candidate):
                return route
    return Destination(fallback)


def navigate(path: str, context: AuthorizationContext) -> GuardDecision:
    return evaluate_guards(resolve_destination(path), context)
