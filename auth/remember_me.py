"""Long-lived "remember me" auto-login credential.

Shares SecretStore with magic links but with the opposite consumption
policy: validation never consumes. A remember-me secret ends only when
its expires_at passes or it is revoked (logout, revoke-all).
"""

import logging

from auth.config import AuthConfig
from auth.database import AdminAccountStore
from auth.exceptions import InvalidTokenError, SecretExpiredError, SecretNotFoundError
from auth.secret_store import SecretStore
from auth.security_logger import AuditOutcome, SecurityEvent, SecurityLogger
from auth.session import SessionEstablisher
from auth.types import AdminAccount, IssuedSecret, SecretKind, SecretRecord, Session

logger = logging.getLogger(__name__)


class RememberMeService:
    """Issue, validate and revoke remember-me credentials."""

    def __init__(
        self,
        config: AuthConfig,
        secret_store: SecretStore,
        account_store: AdminAccountStore,
        session_establisher: SessionEstablisher,
        security_logger: SecurityLogger,
    ):
        self._config = config
        self._secret_store = secret_store
        self._account_store = account_store
        self._session_establisher = session_establisher
        self._security_logger = security_logger

    def issue(
        self,
        admin_account_id: int,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> IssuedSecret:
        """Issue a credential after a successful primary login."""
        issued = self._secret_store.issue(
            SecretKind.REMEMBER_ME,
            str(admin_account_id),
            ttl_seconds=self._config.remember_me_ttl_seconds,
            origin_ip=ip_address,
            user_agent=user_agent,
        )

        self._security_logger.log(
            SecurityEvent.REMEMBER_ME_ISSUED,
            AuditOutcome.SUCCESS,
            subject_id=admin_account_id,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"expires_at": issued.expires_at.isoformat()},
        )
        return issued

    def validate(
        self,
        bearer_value: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AdminAccount:
        """Resolve a presented credential to its admin account.

        Does not consume the secret.

        Raises:
            InvalidTokenError: Caller must clear the remember-me cookie.
        """
        try:
            record = self._secret_store.lookup(SecretKind.REMEMBER_ME, bearer_value)
        except (SecretNotFoundError, SecretExpiredError) as e:
            reason = "expired" if isinstance(e, SecretExpiredError) else "not_found"
            self._log_invalid(reason, ip_address, user_agent)
            raise InvalidTokenError() from None

        account = self._account_store.get_by_id(int(record.subject))

        if account is None or not account.is_active:
            # Account gone or disabled: the credential is dead weight
            self._secret_store.revoke(SecretKind.REMEMBER_ME, bearer_value)
            self._log_invalid(
                "account_missing" if account is None else "account_inactive",
                ip_address,
                user_agent,
                subject_id=int(record.subject),
            )
            raise InvalidTokenError()

        return account

    def restore_session(
        self,
        bearer_value: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
        previous_token: str | None = None,
    ) -> tuple[AdminAccount, Session]:
        """Validate the credential and establish a fresh session from it.

        Raises:
            InvalidTokenError: Caller must clear the remember-me cookie.
        """
        account = self.validate(bearer_value, ip_address, user_agent)
        session = self._session_establisher.establish(account.id, ip_address, previous_token)

        self._security_logger.log(
            SecurityEvent.REMEMBER_ME_LOGIN_SUCCESS,
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
            details={"via": "remember_me"},
        )
        return account, session

    def revoke(self, bearer_value: str, ip_address: str | None = None) -> bool:
        """Revoke one credential (logout). Safe with unknown values."""
        revoked = self._secret_store.revoke(SecretKind.REMEMBER_ME, bearer_value)
        if revoked:
            self._security_logger.log(
                SecurityEvent.REMEMBER_ME_REVOKED,
                AuditOutcome.SUCCESS,
                ip_address=ip_address,
            )
        return revoked

    def revoke_all(self, admin_account_id: int, ip_address: str | None = None) -> int:
        """Log out every remembered device of an admin."""
        count = self._secret_store.revoke_all_for(SecretKind.REMEMBER_ME, str(admin_account_id))
        self._security_logger.log(
            SecurityEvent.REMEMBER_ME_REVOKED,
            AuditOutcome.SUCCESS,
            subject_id=admin_account_id,
            ip_address=ip_address,
            details={"scope": "all", "count": count},
        )
        return count

    def list_devices(self, admin_account_id: int) -> list[SecretRecord]:
        """Active remember-me credentials for an admin, newest first."""
        return self._secret_store.list_active_for(SecretKind.REMEMBER_ME, str(admin_account_id))

    def _log_invalid(
        self,
        reason: str,
        ip_address: str | None,
        user_agent: str | None,
        subject_id: int | None = None,
    ) -> None:
        logger.info(f"Remember-me credential rejected: {reason}")
        self._security_logger.log(
            SecurityEvent.REMEMBER_ME_INVALID,
            AuditOutcome.FAILED,
            subject_id=subject_id,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"reason": reason},
        )
