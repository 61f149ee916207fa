"""Utility modules for cross-cutting concerns."""

from utils.timezone import now_utc, to_utc, format_local, parse_iso
from utils.admin_context import (
    get_current_admin_id,
    set_current_admin_id,
    clear_current_admin_id,
    admin_context,
)
