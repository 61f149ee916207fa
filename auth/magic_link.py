"""Magic link service - short-lived, single-use login links.

Per link: Requested -> Issued -> {Consumed | Expired | Superseded}.

Enumeration resistance: request_link() returns the same result, and takes
at least config.min_response_ms, whether the email is registered,
unregistered or rate limited. Only malformed input (400) and a failed
email send (generic failure) differ, and neither reveals registration.
"""

import hmac
import logging
import secrets
import time
from datetime import datetime, timedelta
from urllib.parse import urlencode

import redis
from email_validator import EmailNotValidError, validate_email

from clients.email_client import EmailGatewayClient, EmailGatewayError
from auth.config import AuthConfig
from auth.database import AdminAccountStore
from auth.exceptions import (
    ConsumeRaceError,
    CredentialError,
    CsrfError,
    DependencyError,
    InvalidRequestError,
    InvalidTokenError,
    SecretAlreadyConsumedError,
    SecretExpiredError,
    SecretNotFoundError,
)
from auth.notifications import EmailRenderer, LoginNotifier
from auth.rate_limiter import RateLimiter, normalize_email
from auth.remember_me import RememberMeService
from auth.secret_store import SecretStore
from auth.security_logger import AuditOutcome, SecurityEvent, SecurityLogger
from auth.session import SessionEstablisher
from auth.types import (
    IssuedSecret,
    RateLimitDecision,
    RequestLinkResult,
    SecretKind,
    VerifiedLogin,
)
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class MagicLinkService:
    """Orchestrates magic link issuance and verification.

    Handles:
    - Link requests (rate limited, enumeration resistant)
    - Verification (CSRF gate, atomic single-use consumption)
    - Session hand-off, optional remember-me, login notification
    """

    VERIFY_PATH = "/admin/verify-magic-link"

    # Internal failure reason -> (audit event, detail reason)
    _CREDENTIAL_FAILURES = {
        SecretNotFoundError: (SecurityEvent.MAGIC_LINK_NOT_FOUND, "not_found"),
        SecretExpiredError: (SecurityEvent.MAGIC_LINK_EXPIRED, "expired"),
        SecretAlreadyConsumedError: (SecurityEvent.MAGIC_LINK_ALREADY_USED, "already_consumed"),
        ConsumeRaceError: (SecurityEvent.MAGIC_LINK_ALREADY_USED, "lost_race"),
    }

    def __init__(
        self,
        config: AuthConfig,
        secret_store: SecretStore,
        rate_limiter: RateLimiter,
        account_store: AdminAccountStore,
        session_establisher: SessionEstablisher,
        email_client: EmailGatewayClient,
        renderer: EmailRenderer,
        notifier: LoginNotifier,
        security_logger: SecurityLogger,
        remember_me: RememberMeService | None = None,
    ):
        self._config = config
        self._secret_store = secret_store
        self._rate_limiter = rate_limiter
        self._account_store = account_store
        self._session_establisher = session_establisher
        self._email_client = email_client
        self._renderer = renderer
        self._notifier = notifier
        self._security_logger = security_logger
        self._remember_me = remember_me

    def build_login_url(self, bearer_value: str, remember_me: bool = False) -> str:
        """URL of the GET landing page carrying the raw bearer value."""
        query = {"token": bearer_value}
        if remember_me:
            query["remember"] = "1"
        return f"{self._config.app_base_url.rstrip('/')}{self.VERIFY_PATH}?{urlencode(query)}"

    def request_link(
        self,
        email: str,
        ip_address: str,
        user_agent: str | None,
        remember_me: bool = False,
    ) -> RequestLinkResult:
        """Request a magic link for email.

        Flow:
        1. Validate email syntax (fail fast, 400)
        2. Check per-email / per-IP rate limits (blocked -> generic success)
        3. Look up the admin account
        4. Prepare link and email bodies (always, for timing parity)
        5. Existing admin: supersede old links, store new one, send email
        6. Unknown email: log and return generic success

        Raises:
            InvalidRequestError: Malformed email.
            DependencyError: Account store or email transport failed.
        """
        started = time.monotonic()
        try:
            return self._request_link(email, ip_address, user_agent, remember_me)
        finally:
            self._pad_response(started)

    def _pad_response(self, started: float) -> None:
        remaining = self._config.min_response_ms / 1000 - (time.monotonic() - started)
        if remaining > 0:
            time.sleep(remaining)

    def _request_link(
        self,
        email: str,
        ip_address: str,
        user_agent: str | None,
        remember_me: bool,
    ) -> RequestLinkResult:
        email = normalize_email(email or "")

        try:
            validate_email(email, check_deliverability=False)
        except EmailNotValidError as e:
            self._security_logger.log(
                SecurityEvent.MAGIC_LINK_INVALID_REQUEST,
                AuditOutcome.FAILED,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"reason": "malformed_email", "error": str(e)},
            )
            raise InvalidRequestError("Unable to process request") from None

        if self._rate_limiter.check_and_record(email, ip_address) is RateLimitDecision.BLOCKED:
            self._security_logger.log(
                SecurityEvent.RATE_LIMIT_EXCEEDED,
                AuditOutcome.BLOCKED,
                email=email,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"retry_after_seconds": self._rate_limiter.retry_after_seconds()},
            )
            return RequestLinkResult()

        try:
            account = self._account_store.get_by_email(email)
        except DependencyError:
            self._security_logger.log(
                SecurityEvent.ACCOUNT_LOOKUP_FAILED,
                AuditOutcome.FAILED,
                email=email,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            raise

        if account is None or not account.is_active:
            # Same preparation work as the real path, nothing stored or sent
            decoy = secrets.token_hex(SecretStore.TOKEN_BYTES)
            self._renderer.magic_link_email(self.build_login_url(decoy, remember_me), _decoy_expiry(self._config))

            self._security_logger.log(
                SecurityEvent.MAGIC_LINK_REQUESTED_NONEXISTENT_EMAIL,
                AuditOutcome.SUCCESS,
                subject_id=account.id if account else None,
                email=email,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"reason": "inactive"} if account else None,
            )
            return RequestLinkResult()

        superseded = self._secret_store.revoke_all_for(SecretKind.MAGIC_LINK, email)
        issued = self._secret_store.issue(
            SecretKind.MAGIC_LINK,
            email,
            ttl_seconds=self._config.magic_link_ttl_seconds,
            origin_ip=ip_address,
            user_agent=user_agent,
        )
        rendered = self._renderer.magic_link_email(
            self.build_login_url(issued.bearer_value, remember_me),
            issued.expires_at,
        )

        try:
            self._email_client.send(
                to=account.email,
                subject=rendered.subject,
                html_body=rendered.html_body,
                text_body=rendered.text_body,
            )
        except EmailGatewayError as e:
            logger.error(f"Magic link email for admin {account.id} failed: {e}")
            # The user never received it; don't leave a live link behind
            self._secret_store.revoke(SecretKind.MAGIC_LINK, issued.bearer_value)
            self._security_logger.log(
                SecurityEvent.MAGIC_LINK_EMAIL_FAILED,
                AuditOutcome.FAILED,
                subject_id=account.id,
                email=email,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"error": str(e)},
            )
            raise DependencyError("Email delivery failed") from e

        self._security_logger.log(
            SecurityEvent.MAGIC_LINK_SENT,
            AuditOutcome.SUCCESS,
            subject_id=account.id,
            email=email,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"superseded": superseded, "secret_id": issued.secret_id},
        )
        return RequestLinkResult()

    def verify_link(
        self,
        bearer_value: str,
        csrf_token: str | None,
        session_csrf_token: str | None,
        ip_address: str | None,
        user_agent: str | None,
        previous_session_token: str | None = None,
        remember_me: bool = False,
    ) -> VerifiedLogin:
        """Verify a submitted magic link and establish a session.

        Only the POST handler may call this; the GET landing page must not.

        Flow:
        1. Constant-time CSRF check (fail closed before touching the store)
        2. Atomically consume the secret
        3. Re-resolve the admin account
        4. Establish session, record login, optional remember-me
        5. Queue login notification (best effort)

        Raises:
            CsrfError: CSRF token missing or mismatched.
            InvalidTokenError: Any credential failure.
            DependencyError: A backing store was unreachable before the
                session existed. Audited; nothing is established.
        """
        if not _csrf_matches(csrf_token, session_csrf_token):
            self._security_logger.log(
                SecurityEvent.CSRF_FAILURE,
                AuditOutcome.FAILED,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            raise CsrfError("Security validation failed")

        record = self._consume(bearer_value, ip_address, user_agent)

        try:
            account = self._account_store.get_by_email(record.subject)
        except DependencyError:
            self._security_logger.log(
                SecurityEvent.ACCOUNT_LOOKUP_FAILED,
                AuditOutcome.FAILED,
                email=record.subject,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"stage": "verify"},
            )
            raise

        if account is None or not account.is_active:
            self._security_logger.log(
                SecurityEvent.MAGIC_LINK_NO_ADMIN_ACCOUNT,
                AuditOutcome.FAILED,
                subject_id=account.id if account else None,
                email=record.subject,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"reason": "inactive" if account else "missing"},
            )
            raise InvalidTokenError()

        try:
            session = self._session_establisher.establish(account.id, ip_address, previous_session_token)
        except redis.RedisError as e:
            logger.error(f"Session store unavailable establishing session for admin {account.id}: {e}")
            self._security_logger.log(
                SecurityEvent.MAGIC_LINK_VERIFICATION_ERROR,
                AuditOutcome.FAILED,
                subject_id=account.id,
                email=account.email,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"error": type(e).__name__, "stage": "session"},
            )
            raise DependencyError("Session store unavailable") from e

        # From here on the admin is logged in; the remaining steps are best effort
        try:
            self._account_store.update_last_login(account.id)
        except DependencyError:
            logger.warning(f"Could not record last login for admin {account.id}")

        try:
            self._rate_limiter.reset(account.email)
        except redis.RedisError as e:
            logger.warning(f"Could not reset rate limit counters for admin {account.id}: {e}")

        self._security_logger.log(
            SecurityEvent.ADMIN_LOGIN_SUCCESS,
            AuditOutcome.SUCCESS,
            subject_id=account.id,
            email=account.email,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self._security_logger.log(
            SecurityEvent.SESSION_CREATED,
            AuditOutcome.SUCCESS,
            subject_id=account.id,
            email=account.email,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"via": "magic_link"},
        )

        issued_remember_me: IssuedSecret | None = None
        if remember_me and self._remember_me is not None:
            try:
                issued_remember_me = self._remember_me.issue(account.id, ip_address, user_agent)
            except redis.RedisError as e:
                logger.warning(f"Remember-me credential not issued for admin {account.id}: {e}")
                self._security_logger.log(
                    SecurityEvent.REMEMBER_ME_ISSUED,
                    AuditOutcome.FAILED,
                    subject_id=account.id,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    details={"error": type(e).__name__},
                )

        self._notifier.notify(account, session.login_time, ip_address, user_agent)

        return VerifiedLogin(account=account, session=session, remember_me=issued_remember_me)

    def _consume(self, bearer_value: str, ip_address: str | None, user_agent: str | None):
        """validate_and_consume with every failure audited and made generic."""
        try:
            if not bearer_value:
                raise SecretNotFoundError("Empty bearer value")
            return self._secret_store.validate_and_consume(SecretKind.MAGIC_LINK, bearer_value)
        except CredentialError as e:
            event, reason = self._CREDENTIAL_FAILURES.get(
                type(e), (SecurityEvent.MAGIC_LINK_NOT_FOUND, "unknown")
            )
            self._security_logger.log(
                event,
                AuditOutcome.FAILED,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"reason": reason},
            )
            raise InvalidTokenError() from None
        except redis.RedisError as e:
            logger.error(f"Secret store unavailable during verification: {e}")
            self._security_logger.log(
                SecurityEvent.MAGIC_LINK_VERIFICATION_ERROR,
                AuditOutcome.FAILED,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"error": type(e).__name__},
            )
            raise DependencyError("Secret store unavailable") from e


def _csrf_matches(submitted: str | None, expected: str | None) -> bool:
    if not submitted or not expected:
        return False
    return hmac.compare_digest(submitted.encode("utf-8"), expected.encode("utf-8"))


def _decoy_expiry(config: AuthConfig) -> datetime:
    return now_utc() + timedelta(seconds=config.magic_link_ttl_seconds)
