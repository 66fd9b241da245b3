from __future__ import annotations


class DocVaultError(Exception):
    """Base error for docvault."""

    code = "DOCVAULT_ERROR"
    reason = "unexpected document service error"

    def __init__(self, message: str | None = None, *, reason: str | None = None) -> None:
        if reason is not None:
            self.reason = reason
        super().__init__(message or self.reason)


class AuthenticationMissingError(DocVaultError):
    """No session is present; the user must sign in."""

    code = "AUTH_UNAUTHORIZED"
    reason = "sign-in required"


class MalformedCredentialError(AuthenticationMissingError):
    """Stored token cannot be decoded; handled exactly like a missing session."""

    code = "AUTH_MALFORMED_TOKEN"
    reason = "credential could not be decoded"


class AuthorizationDeniedError(DocVaultError):
    """Session present but its roles do not cover the request."""

    code = "AUTH_FORBIDDEN"
    reason = "insufficient role for this operation"


class CredentialStorageError(DocVaultError):
    """Durable credential storage could not be read or written."""

    code = "CREDENTIAL_STORAGE_FAILED"
    reason = "credential storage unavailable"


class PolicyViolationError(DocVaultError):
    """Operation rejected by a lifecycle or governance rule; never retried."""

    code = "POLICY_VIOLATION"
    reason = "operation not permitted by policy"


class LegalHoldActiveError(PolicyViolationError):
    code = "LEGAL_HOLD_ACTIVE"
    reason = "active legal hold prevents permanent deletion"


class InvalidTransitionError(PolicyViolationError):
    code = "INVALID_STATE_TRANSITION"
    reason = "operation not permitted in the document's current state"


class RecoveryWindowExceededError(PolicyViolationError):
    code = "RECOVERY_WINDOW_EXCEEDED"
    reason = "recovery window exceeded"


class RetentionNotExpiredError(PolicyViolationError):
    code = "RETENTION_NOT_EXPIRED"
    reason = "document retention period has not expired"


class HoldAlreadyReleasedError(PolicyViolationError):
    code = "LEGAL_HOLD_ALREADY_RELEASED"
    reason = "legal hold already released"


class ConcurrentModificationError(PolicyViolationError):
    """Server rejected a write because another session changed the entity first."""

    code = "CONCURRENT_MODIFICATION"
    reason = "document was modified by another session"


class NotFoundError(DocVaultError):
    code = "NOT_FOUND"
    reason = "resource not found"


class DocumentNotFoundError(NotFoundError):
    code = "DOCUMENT_NOT_FOUND"
    reason = "document not found"


class LegalHoldNotFoundError(NotFoundError):
    code = "LEGAL_HOLD_NOT_FOUND"
    reason = "legal hold not found"


class ValidationError(DocVaultError):
    code = "VALIDATION_FAILED"
    reason = "request failed validation"


class TransientNetworkError(DocVaultError):
    """Network, timeout or 5xx failure; retry policy belongs to the caller."""

    code = "NETWORK_UNAVAILABLE"
    reason = "document service unavailable"


class BackendError(DocVaultError):
    """Unexpected response from the document service."""

    code = "BACKEND_ERROR"

    def __init__(self, message: str | None = None, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BackendConfigError(DocVaultError):
    """Settings select a backend that does not exist."""

    code = "BACKEND_CONFIG_INVALID"
    reason = "document backend is not configured"
