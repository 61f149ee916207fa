"""Tests for utils/admin_context.py - admin identity propagation via contextvars."""

import pytest

from utils.admin_context import (
    admin_context,
    clear_current_admin_id,
    get_current_admin_id,
    set_current_admin_id,
)


class TestGetCurrentAdminId:
    def test_raises_without_set(self):
        """Admin-scoped code outside an authenticated request is a bug."""
        with pytest.raises(RuntimeError, match="No admin context"):
            get_current_admin_id()


class TestSetAndClear:
    def test_set_then_get(self):
        set_current_admin_id(7)
        assert get_current_admin_id() == 7

    def test_clear_then_get_raises(self):
        set_current_admin_id(7)
        clear_current_admin_id()
        with pytest.raises(RuntimeError):
            get_current_admin_id()


class TestAdminContextManager:
    def test_sets_and_clears(self):
        with admin_context(7):
            assert get_current_admin_id() == 7

        with pytest.raises(RuntimeError):
            get_current_admin_id()

    def test_restores_previous(self):
        with admin_context(7):
            with admin_context(12):
                assert get_current_admin_id() == 12
            assert get_current_admin_id() == 7

    def test_clears_on_exception(self):
        with pytest.raises(ValueError):
            with admin_context(7):
                raise ValueError("test exception")

        with pytest.raises(RuntimeError):
            get_current_admin_id()
