"""Session token lifecycle management.

Sessions are stored in Valkey with TTL matching session expiry.
Token format is cryptographically random (secrets.token_urlsafe).

Two flavours share one record shape:
- anonymous: created by the verification landing page to bind a CSRF token
  (and carry a flash message) before anyone is logged in
- authenticated: created only by SessionEstablisher after a credential
  has been proven
"""

import logging
import secrets
from datetime import timedelta

from clients.valkey_client import ValkeyClient
from auth.config import AuthConfig
from auth.types import Session
from auth.exceptions import SessionExpiredError
from utils.timezone import now_utc, parse_iso

logger = logging.getLogger(__name__)


class SessionManager:
    """Session token lifecycle management.

    Authenticated sessions slide: each validation pushes expiry forward.
    """

    KEY_PREFIX = "session:"

    def __init__(self, valkey: ValkeyClient, config: AuthConfig):
        self._valkey = valkey
        self._config = config

    def _key(self, token: str) -> str:
        """Generate Valkey key for session token."""
        return f"{self.KEY_PREFIX}{token}"

    def _lifetime(self, authenticated: bool) -> timedelta:
        if authenticated:
            return timedelta(hours=self._config.session_expiry_hours)
        return timedelta(minutes=self._config.anonymous_session_minutes)

    def _save(self, session: Session) -> None:
        ttl = int((session.expires_at - now_utc()).total_seconds())
        self._valkey.set_json(
            self._key(session.token),
            session.model_dump(mode="json", exclude={"token"}),
            expire_seconds=max(ttl, 1),
        )

    def create_session(
        self,
        admin_account_id: int | None = None,
        login_ip: str | None = None,
    ) -> Session:
        """Create a new session with a fresh token and CSRF token."""
        now = now_utc()
        authenticated = admin_account_id is not None

        session = Session(
            token=secrets.token_urlsafe(32),
            admin_account_id=admin_account_id,
            csrf_token=secrets.token_hex(32),
            created_at=now,
            expires_at=now + self._lifetime(authenticated),
            last_activity_at=now,
            login_time=now if authenticated else None,
            login_ip=login_ip if authenticated else None,
        )
        self._save(session)
        return session

    def get_session(self, token: str | None) -> Session | None:
        """Load a session (anonymous or authenticated) without extending it."""
        if not token:
            return None

        data = self._valkey.get_json(self._key(token))
        if data is None:
            return None

        for field in ("created_at", "expires_at", "last_activity_at", "login_time"):
            if data.get(field):
                data[field] = parse_iso(data[field])

        session = Session(token=token, **data)

        # Belt and suspenders - Valkey TTL should handle this
        if now_utc() > session.expires_at:
            self._valkey.delete(self._key(token))
            return None

        return session

    def get_or_create_session(self, token: str | None) -> Session:
        """Reuse the caller's session if still alive, else start an anonymous one."""
        session = self.get_session(token)
        if session is None:
            session = self.create_session()
        return session

    def ensure_csrf_token(self, token: str | None) -> Session:
        """Session for the landing page, guaranteed to carry a CSRF token."""
        session = self.get_or_create_session(token)
        if not session.csrf_token:
            session = session.model_copy(update={"csrf_token": secrets.token_hex(32)})
            self._save(session)
        return session

    def validate_session(self, token: str) -> Session:
        """Validate an authenticated session and extend it.

        Raises:
            SessionExpiredError: If token unknown, expired or not logged in.
        """
        session = self.get_session(token)

        if session is None or not session.is_authenticated:
            raise SessionExpiredError("Session not found or expired")

        now = now_utc()
        updated = session.model_copy(
            update={
                "expires_at": now + self._lifetime(True),
                "last_activity_at": now,
            }
        )
        self._save(updated)
        return updated

    def set_flash(self, token: str, message: str) -> None:
        """Attach a one-shot message shown on the next page."""
        session = self.get_session(token)
        if session is None:
            return
        self._save(session.model_copy(update={"flash": message}))

    def pop_flash(self, token: str | None) -> str | None:
        """Read and clear the pending flash message."""
        session = self.get_session(token)
        if session is None or session.flash is None:
            return None
        self._save(session.model_copy(update={"flash": None}))
        return session.flash

    def revoke_session(self, token: str) -> None:
        """Revoke session (logout).

        Safe to call with nonexistent token.
        """
        self._valkey.delete(self._key(token))


class SessionEstablisher:
    """The single point where proof of credential becomes an authenticated session."""

    def __init__(self, session_manager: SessionManager):
        self._session_manager = session_manager

    def establish(
        self,
        admin_account_id: int,
        ip_address: str | None,
        previous_token: str | None = None,
    ) -> Session:
        """Create an authenticated session under a new identifier.

        The previous (possibly attacker-planted) session token is revoked
        so it can never be upgraded into a logged-in session.
        """
        if previous_token:
            self._session_manager.revoke_session(previous_token)

        session = self._session_manager.create_session(
            admin_account_id=admin_account_id,
            login_ip=ip_address,
        )
        logger.info(f"Session established for admin {admin_account_id}")
        return session
