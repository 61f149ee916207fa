"""Tests for auth/config.py - Auth configuration with validation."""

import pytest
from pydantic import ValidationError

from auth.config import AuthConfig


class TestAuthConfigDefaults:
    """Tests that AuthConfig has sensible defaults."""

    def test_magic_link_defaults(self):
        config = AuthConfig()
        assert config.magic_link_ttl_minutes == 5
        assert config.magic_link_ttl_seconds == 300
        assert config.min_response_ms == 800

    def test_remember_me_default(self):
        config = AuthConfig()
        assert config.remember_me_ttl_days == 30
        assert config.remember_me_ttl_seconds == 30 * 86400

    def test_rate_limit_defaults(self):
        config = AuthConfig()
        assert config.rate_limit_max_attempts_per_email == 5
        assert config.rate_limit_max_attempts_per_ip == 20
        assert config.rate_limit_window_minutes == 15
        assert config.rate_limit_hourly_max_per_email == 8
        assert config.rate_limit_hourly_max_per_ip == 40

    def test_cookies_secure_by_default(self):
        config = AuthConfig()
        assert config.secure_cookies is True
        assert config.session_cookie_name != config.remember_me_cookie_name


class TestAuthConfigValidation:
    """Tests that AuthConfig enforces validation bounds."""

    @pytest.mark.parametrize("minutes", [0, 61])
    def test_magic_link_ttl_bounds(self, minutes):
        with pytest.raises(ValidationError):
            AuthConfig(magic_link_ttl_minutes=minutes)

    def test_session_expiry_min_bound(self):
        with pytest.raises(ValidationError):
            AuthConfig(session_expiry_hours=0)

    def test_response_padding_bounds(self):
        with pytest.raises(ValidationError):
            AuthConfig(min_response_ms=-1)

    def test_hourly_ip_ceiling_not_below_window(self):
        with pytest.raises(ValidationError, match="rate_limit_hourly_max_per_ip"):
            AuthConfig(rate_limit_max_attempts_per_ip=50, rate_limit_hourly_max_per_ip=40)

    def test_hourly_equal_to_window_allowed(self):
        config = AuthConfig(rate_limit_max_attempts_per_email=8, rate_limit_hourly_max_per_email=8)
        assert config.rate_limit_hourly_max_per_email == 8
