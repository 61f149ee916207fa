"""Admin account lookup for authentication.

The admin_users table belongs to the surrounding admin application; this
module only reads it (and stamps last_login). Emails are compared
case-insensitively. Database failures surface as DependencyError.
"""

import logging
from contextlib import contextmanager

import psycopg2

from clients.postgres_client import PostgresClient
from auth.exceptions import DependencyError
from auth.types import AdminAccount
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

_ACCOUNT_COLUMNS = "id, email, username, is_active, last_login AS last_login_at"


@contextmanager
def _account_store_errors(operation: str):
    try:
        yield
    except psycopg2.Error as e:
        logger.error(f"Admin account store failed during {operation}: {e}")
        raise DependencyError("Account store unavailable") from e


class AdminAccountStore:
    """Database operations on admin accounts."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    def get_by_email(self, email: str) -> AdminAccount | None:
        """Find admin by email (case-insensitive)."""
        with _account_store_errors("get_by_email"):
            row = self._db.execute_single(
                f"""SELECT {_ACCOUNT_COLUMNS}
                    FROM admin_users WHERE lower(email) = lower(%s)
                    LIMIT 1""",
                (email,),
            )
        if row is None:
            return None
        return AdminAccount(**row)

    def get_by_id(self, account_id: int) -> AdminAccount | None:
        """Find admin by id."""
        with _account_store_errors("get_by_id"):
            row = self._db.execute_single(
                f"SELECT {_ACCOUNT_COLUMNS} FROM admin_users WHERE id = %s",
                (account_id,),
            )
        if row is None:
            return None
        return AdminAccount(**row)

    def update_last_login(self, account_id: int) -> None:
        """Update last_login to current time."""
        with _account_store_errors("update_last_login"):
            self._db.execute_returning(
                "UPDATE admin_users SET last_login = %s WHERE id = %s RETURNING id",
                (now_utc(), account_id),
            )
