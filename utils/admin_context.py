"""Propagate the authenticated admin through the call stack using contextvars.

This is what downstream admin screens read instead of a global session:
the auth middleware sets it after validating the session cookie.
"""

from contextlib import contextmanager
from contextvars import ContextVar

_current_admin_id: ContextVar[int | None] = ContextVar("current_admin_id", default=None)


def get_current_admin_id() -> int:
    """
    Get the authenticated admin account id from context.

    Raises RuntimeError if no admin context is set - calling admin-only
    code outside an authenticated request is a bug.
    """
    admin_id = _current_admin_id.get()
    if admin_id is None:
        raise RuntimeError(
            "No admin context set. This usually means you're calling "
            "admin-scoped code outside of an authenticated request."
        )
    return admin_id


def set_current_admin_id(admin_id: int) -> None:
    """Set current admin id. Called by auth middleware."""
    _current_admin_id.set(admin_id)


def clear_current_admin_id() -> None:
    """
    Clear admin context.

    Must be called in a finally block to prevent context leakage
    between requests.
    """
    _current_admin_id.set(None)


@contextmanager
def admin_context(admin_id: int):
    """
    Temporarily act as an admin (tests, maintenance scripts).

    Example:
        with admin_context(7):
            assert get_current_admin_id() == 7
    """
    previous = _current_admin_id.get()
    set_current_admin_id(admin_id)
    try:
        yield
    finally:
        if previous is None:
            clear_current_admin_id()
        else:
            set_current_admin_id(previous)
