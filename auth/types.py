"""Pydantic models for auth domain."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, EmailStr, Field


class AdminAccount(BaseModel):
    """An admin account as supplied by the account store."""

    id: int
    email: EmailStr
    username: str | None = None
    is_active: bool = True
    last_login_at: datetime | None = None

    model_config = {"from_attributes": True}


class SecretKind(str, Enum):
    """Consumption policy family of a bearer secret."""

    MAGIC_LINK = "magic_link"  # single use
    REMEMBER_ME = "remember_me"  # multi use until expiry or revoke


class SecretRecord(BaseModel):
    """
    Persisted view of a bearer secret.

    The raw bearer value is never part of this model - only its hash.
    """

    id: str = Field(..., description="Opaque row id, never sent to clients")
    kind: SecretKind
    secret_hash: str
    subject: str = Field(..., description="Email (magic link) or admin id (remember me)")
    issued_at: datetime
    expires_at: datetime
    consumed_at: datetime | None = None
    last_used_at: datetime | None = None
    origin_ip: str | None = None
    user_agent: str | None = None


class IssuedSecret(BaseModel):
    """Returned exactly once at issuance; the only place the bearer value exists."""

    secret_id: str
    bearer_value: str
    expires_at: datetime


class Session(BaseModel):
    """
    A server-side session.

    admin_account_id is None for the anonymous session that carries the
    CSRF token between the verification landing page and its POST.
    """

    token: str = Field(..., description="Session token (opaque string)")
    admin_account_id: int | None = None
    csrf_token: str
    created_at: datetime
    expires_at: datetime
    last_activity_at: datetime
    login_time: datetime | None = None
    login_ip: str | None = None
    flash: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.admin_account_id is not None


class MagicLinkRequest(BaseModel):
    """
    Request payload for magic link.

    Email syntax is checked by the service so malformed input maps to a
    400 with the generic message rather than a schema error.
    """

    email: str = Field(..., max_length=320)


class RateLimitDecision(str, Enum):
    """Outcome of RateLimiter.check_and_record."""

    ALLOWED = "allowed"
    BLOCKED = "blocked"


class RequestLinkResult(BaseModel):
    """Externally visible result of a magic link request. Same for every path."""

    success: bool = True
    message: str = "If your email is registered, you will receive a magic link"


class VerifiedLogin(BaseModel):
    """Result of a successful magic link verification."""

    account: AdminAccount
    session: Session
    remember_me: IssuedSecret | None = None
