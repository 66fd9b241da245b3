from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from functools import lru_cache
import json
import logging
from typing import Any

from docvault.core.config import get_settings
from docvault.core.errors import AuthenticationMissingError, AuthorizationDeniedError
from docvault.services.auth.credentials import CredentialStore, get_credential_store


logger = logging.getLogger(__name__)


ROLE_ADMINISTRATOR = "administrator"
ROLE_LEGAL_OFFICER = "legal_officer"
ROLE_COMPLIANCE_OFFICER = "compliance_officer"

KNOWN_ROLES = frozenset({ROLE_ADMINISTRATOR, ROLE_LEGAL_OFFICER, ROLE_COMPLIANCE_OFFICER})

# Payload segments longer than this are rejected before decoding.
MAX_PAYLOAD_SEGMENT_CHARS = 65536


def _b64url_decode(segment: str) -> bytes:
    padded = segment + "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


@lru_cache(maxsize=64)
def _decode_claims_cached(token: str) -> tuple[tuple[str, Any], ...] | None:
    parts = token.split(".")
    if len(parts) < 2 or not parts[1] or len(parts[1]) > MAX_PAYLOAD_SEGMENT_CHARS:
        return None
    try:
        payload = json.loads(_b64url_decode(parts[1]).decode("utf-8"))
    except (ValueError, UnicodeError, binascii.Error, RecursionError):
        # Deeply nested payloads exhaust the decoder stack and count as garbage too.
        return None
    if not isinstance(payload, dict):
        return None
    # Frozen pairs keep the cached value immutable across callers.
    return tuple(payload.items())


def decode_claims(token: str | None) -> dict[str, Any] | None:
    # Read the token's claim payload without verifying it; the server verifies signatures.
    if not token:
        return None
    pairs = _decode_claims_cached(token)
    if pairs is None:
        return None
    return dict(pairs)


def _roles_from_claims(claims: dict[str, Any] | None) -> frozenset[str]:
    if not claims:
        return frozenset()
    roles = claims.get("roles")
    if not isinstance(roles, list):
        return frozenset()
    return frozenset(role for role in roles if isinstance(role, str))


def _require_role_name(role: str) -> str:
    if not isinstance(role, str) or not role.strip():
        raise ValueError("Role name must be a non-empty string")
    return role.strip()


@dataclass(frozen=True)
class AuthorizationContext:
    # Built once per token and passed to every authorization decision.
    token: str | None = field(default=None, repr=False)
    roles: frozenset[str] = frozenset()
    subject: str | None = None
    tenant_id: str | None = None
    session_present: bool = False
    enforcement_bypassed: bool = False

    @classmethod
    def from_token(cls, token: str | None, *, bypass: bool = False) -> AuthorizationContext:
        claims = decode_claims(token)
        subject = claims.get("sub") if claims else None
        tenant_id = claims.get("tenantId", claims.get("tenant_id")) if claims else None
        return cls(
            token=token or None,
            roles=_roles_from_claims(claims),
            subject=subject if isinstance(subject, str) else None,
            tenant_id=tenant_id if isinstance(tenant_id, str) else None,
            session_present=bool(token),
            enforcement_bypassed=bypass,
        )

    @property
    def authenticated(self) -> bool:
        # A stored token that cannot be decoded counts as no session at all.
        if self.enforcement_bypassed:
            return True
        return self.session_present and decode_claims(self.token) is not None

    def has_role(self, role: str) -> bool:
        name = _require_role_name(role)
        if self.enforcement_bypassed:
            return True
        return name in self.roles


class RoleResolver:
    def __init__(self, store: CredentialStore | None = None, *, bypass: bool | None = None) -> None:
        self._store = store or get_credential_store()
        self._bypass = get_settings().auth_dev_bypass if bypass is None else bypass
        self._cached: AuthorizationContext | None = None
        if self._bypass:
            logger.warning("auth_dev_bypass_enabled role and session checks are disabled")

    def context(self) -> AuthorizationContext:
        # Rebuild only when the stored token changes.
        token = self._store.snapshot().token
        cached = self._cached
        if cached is not None and cached.token == token:
            return cached
        context = AuthorizationContext.from_token(token, bypass=self._bypass)
        self._cached = context
        return context

    def is_authenticated(self) -> bool:
        return self.context().authenticated

    def has_role(self, role: str) -> bool:
        return self.context().has_role(role)


def require_session(resolver: RoleResolver) -> AuthorizationContext:
    # Fail before any network call when there is no usable session.
    context = resolver.context()
    if not context.authenticated:
        raise AuthenticationMissingError()
    return context


def require_role(resolver: RoleResolver, role: str) -> AuthorizationContext:
    context = require_session(resolver)
    if not context.has_role(role):
        raise AuthorizationDeniedError(f"{role} role required")
    return context


def require_any_role(resolver: RoleResolver, *roles: str) -> AuthorizationContext:
    context = require_session(resolver)
    if not any(context.has_role(role) for role in roles):
        raise AuthorizationDeniedError(f"One of {', '.join(roles)} roles required")
    return context
