"""Typed exceptions for auth failures.

The distinctions below exist for the audit trail and operator logs only.
HTTP handlers collapse them to a generic success (link requests) or a
generic failure (verification).
"""


class AuthError(Exception):
    """Base class for authentication/authorization errors."""


class InvalidRequestError(AuthError):
    """Malformed input (e.g. email syntax). Maps to HTTP 400."""


class SecurityError(AuthError):
    """Request rejected by a security control. Always surfaced generically."""


class CsrfError(SecurityError):
    """CSRF token missing or not matching the session's token."""


class CredentialError(AuthError):
    """A presented bearer secret is not usable."""


class InvalidTokenError(CredentialError):
    """
    Token is invalid, expired, or already used.

    This is the only credential error allowed to leave the service layer;
    its message is safe to show to end users.
    """

    def __init__(self, message: str = "Invalid or expired link"):
        super().__init__(message)


class SecretNotFoundError(CredentialError):
    """No secret matches the presented bearer value."""


class SecretExpiredError(CredentialError):
    """Secret exists but its expires_at has passed."""


class SecretAlreadyConsumedError(CredentialError):
    """Single-use secret was already consumed (replay or lost race)."""


class IntegrityError(CredentialError):
    """Storage state changed underneath an atomic operation."""


class ConsumeRaceError(IntegrityError):
    """Secret disappeared between lookup and consumption claim."""


class DependencyError(AuthError):
    """
    An external collaborator (email transport, account store) failed.

    Logged with detail for operators; end users get a generic message.
    """


class SessionExpiredError(AuthError):
    """Session has expired and user must re-authenticate."""
