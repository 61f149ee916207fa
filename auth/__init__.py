"""Passwordless admin authentication: magic links, remember-me, sessions."""

from auth.exceptions import (
    AuthError,
    InvalidRequestError,
    SecurityError,
    CsrfError,
    CredentialError,
    InvalidTokenError,
    SecretNotFoundError,
    SecretExpiredError,
    SecretAlreadyConsumedError,
    IntegrityError,
    ConsumeRaceError,
    DependencyError,
    SessionExpiredError,
)
from auth.types import (
    AdminAccount,
    SecretKind,
    SecretRecord,
    IssuedSecret,
    Session,
    MagicLinkRequest,
    RateLimitDecision,
    RequestLinkResult,
    VerifiedLogin,
)
from auth.config import AuthConfig
from auth.database import AdminAccountStore
from auth.secret_store import SecretStore
from auth.rate_limiter import RateLimiter
from auth.security_logger import SecurityLogger, SecurityEvent, AuditOutcome
from auth.session import SessionManager, SessionEstablisher
from auth.notifications import EmailRenderer, LoginNotifier
from auth.remember_me import RememberMeService
from auth.magic_link import MagicLinkService
from auth.security_middleware import AuthMiddleware
from auth.api import create_auth_router
