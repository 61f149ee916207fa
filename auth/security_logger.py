"""Security event logging for the auth audit trail.

Append-only log to the security_events table. Rows are never updated or
deleted here; retention is handled outside this service.

Writes are fire-and-forget: a failing insert is reported through the
application logger and never interrupts a login.
"""

import logging
from enum import Enum
from typing import Any

from clients.postgres_client import PostgresClient
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class SecurityEvent(Enum):
    """Auth security event types."""

    # Issuance
    MAGIC_LINK_SENT = "magic_link_sent"
    MAGIC_LINK_EMAIL_FAILED = "magic_link_email_failed"
    MAGIC_LINK_REQUESTED_NONEXISTENT_EMAIL = "magic_link_requested_nonexistent_email"
    MAGIC_LINK_INVALID_REQUEST = "magic_link_invalid_request"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    ACCOUNT_LOOKUP_FAILED = "account_lookup_failed"

    # Verification
    CSRF_FAILURE = "csrf_failure"
    MAGIC_LINK_NOT_FOUND = "magic_link_not_found"
    MAGIC_LINK_EXPIRED = "magic_link_expired"
    MAGIC_LINK_ALREADY_USED = "magic_link_already_used"
    MAGIC_LINK_NO_ADMIN_ACCOUNT = "magic_link_no_admin_account"
    MAGIC_LINK_VERIFICATION_ERROR = "magic_link_verification_error"
    ADMIN_LOGIN_SUCCESS = "admin_login_success"
    LOGIN_NOTIFICATION_FAILED = "login_notification_failed"

    # Sessions
    SESSION_CREATED = "session_created"
    SESSION_REVOKED = "session_revoked"

    # Remember me
    REMEMBER_ME_ISSUED = "remember_me_issued"
    REMEMBER_ME_LOGIN_SUCCESS = "remember_me_login_success"
    REMEMBER_ME_INVALID = "remember_me_invalid"
    REMEMBER_ME_REVOKED = "remember_me_revoked"


class AuditOutcome(Enum):
    """Result recorded with each event."""

    SUCCESS = "success"
    FAILED = "failed"
    BLOCKED = "blocked"


class SecurityLogger:
    """Append-only security event logger."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    def log(
        self,
        event: SecurityEvent,
        outcome: AuditOutcome,
        subject_id: int | None = None,
        email: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Log security event to database. Never raises."""
        try:
            self._db.execute_returning(
                """INSERT INTO security_events
                   (event_type, outcome, subject_id, email, ip_address, user_agent, details, created_at)
                   VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                   RETURNING id""",
                (
                    event.value,
                    outcome.value,
                    subject_id,
                    email,
                    ip_address,
                    user_agent,
                    details if details else None,
                    now_utc(),
                ),
            )
        except Exception:
            logger.exception(f"Failed to write security event {event.value} ({outcome.value})")

    def get_recent_events(
        self,
        email: str | None = None,
        subject_id: int | None = None,
        event_type: SecurityEvent | None = None,
        limit: int = 100,
    ) -> list[dict]:
        """Query recent security events with optional filters, newest first."""
        conditions = []
        params = []

        if email:
            conditions.append("email = %s")
            params.append(email)

        if subject_id is not None:
            conditions.append("subject_id = %s")
            params.append(subject_id)

        if event_type:
            conditions.append("event_type = %s")
            params.append(event_type.value)

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        params.append(limit)

        return self._db.execute(
            f"""SELECT id, event_type, outcome, subject_id, email, ip_address,
                       user_agent, details, created_at
                FROM security_events
                WHERE {where_clause}
                ORDER BY created_at DESC, id DESC
                LIMIT %s""",
            tuple(params),
        )
