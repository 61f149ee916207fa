"""Tests for RateLimiter - magic link request throttling."""

from datetime import timedelta
from unittest.mock import Mock

import pytest
import redis

from auth.rate_limiter import RateLimiter, normalize_email
from auth.config import AuthConfig
from auth.types import RateLimitDecision
from clients.valkey_client import ValkeyClient

IP = "203.0.113.9"
ALLOWED = RateLimitDecision.ALLOWED
BLOCKED = RateLimitDecision.BLOCKED


@pytest.fixture
def rate_limiter(valkey, config, clock):
    """RateLimiter with default limits: 5/email/15min, 8/email/hour."""
    return RateLimiter(valkey, config)


def attempts(limiter, count, email="user@example.com", ip=IP):
    return [limiter.check_and_record(email, ip) for _ in range(count)]


class TestCheckAndRecord:
    """Test rate limit checking and recording."""

    def test_first_attempt_allowed(self, rate_limiter):
        assert rate_limiter.check_and_record("user@example.com", IP) is ALLOWED

    def test_within_limit_allowed(self, rate_limiter, config):
        results = attempts(rate_limiter, config.rate_limit_max_attempts_per_email)
        assert results == [ALLOWED] * config.rate_limit_max_attempts_per_email

    def test_attempt_after_limit_blocked(self, rate_limiter, config):
        attempts(rate_limiter, config.rate_limit_max_attempts_per_email)
        assert rate_limiter.check_and_record("user@example.com", IP) is BLOCKED

    def test_different_emails_tracked_separately(self, rate_limiter, config):
        attempts(rate_limiter, config.rate_limit_max_attempts_per_email + 1, email="user1@example.com")
        assert rate_limiter.check_and_record("user2@example.com", IP) is ALLOWED

    def test_emails_normalized(self, rate_limiter, config):
        attempts(rate_limiter, config.rate_limit_max_attempts_per_email, email="  CASE@example.com ")
        assert rate_limiter.check_and_record("case@EXAMPLE.com", IP) is BLOCKED

    def test_email_limit_applies_across_ips(self, rate_limiter, config):
        for n in range(config.rate_limit_max_attempts_per_email):
            rate_limiter.check_and_record("user@example.com", f"198.51.100.{n}")
        assert rate_limiter.check_and_record("user@example.com", "198.51.100.200") is BLOCKED

    def test_ip_limit_applies_across_emails(self, rate_limiter, config):
        for n in range(config.rate_limit_max_attempts_per_ip):
            assert rate_limiter.check_and_record(f"user{n}@example.com", IP) is ALLOWED
        assert rate_limiter.check_and_record("fresh@example.com", IP) is BLOCKED

    def test_missing_ip_shares_one_bucket(self, rate_limiter, config):
        for n in range(config.rate_limit_max_attempts_per_ip):
            rate_limiter.check_and_record(f"user{n}@example.com", None)
        assert rate_limiter.check_and_record("fresh@example.com", None) is BLOCKED

    def test_blocked_attempts_still_count(self, rate_limiter, valkey, config):
        attempts(rate_limiter, config.rate_limit_max_attempts_per_email + 3)
        assert rate_limiter.get_remaining_attempts("user@example.com", IP) == 0

    def test_fails_closed_when_store_unavailable(self, config, clock):
        valkey = Mock(spec=ValkeyClient)
        valkey.record_event.side_effect = redis.ConnectionError("down")
        limiter = RateLimiter(valkey, config)

        assert limiter.check_and_record("user@example.com", IP) is BLOCKED


class TestWindows:
    """Test fixed window rollover and the hourly ceiling."""

    def test_next_window_allows_one_more(self, rate_limiter, clock, config):
        """(N+1)th attempt blocked, first attempt of the next window allowed."""
        limit = config.rate_limit_max_attempts_per_email
        assert attempts(rate_limiter, limit) == [ALLOWED] * limit
        assert rate_limiter.check_and_record("user@example.com", IP) is BLOCKED

        clock.advance(minutes=config.rate_limit_window_minutes)

        assert rate_limiter.check_and_record("user@example.com", IP) is ALLOWED

    def test_boundary_burst_capped_by_hourly_ceiling(self, rate_limiter, clock, config):
        """5 at 10:14:59 plus a fresh window at 10:15:00 yields 8 in total, not 10."""
        clock.advance(minutes=14, seconds=59)
        assert attempts(rate_limiter, 5) == [ALLOWED] * 5

        clock.advance(seconds=1)
        burst = attempts(rate_limiter, 5)

        assert burst == [ALLOWED, ALLOWED, ALLOWED, BLOCKED, BLOCKED]
        assert 5 + burst.count(ALLOWED) == config.rate_limit_hourly_max_per_email

    def test_burst_across_clock_hour_capped(self, rate_limiter, clock, config):
        """Window and clock hour both roll at 11:00:00; the ceiling still holds."""
        clock.advance(minutes=59, seconds=59)
        assert attempts(rate_limiter, 5) == [ALLOWED] * 5

        clock.advance(seconds=1)
        burst = attempts(rate_limiter, 5)

        assert burst == [ALLOWED, ALLOWED, ALLOWED, BLOCKED, BLOCKED]
        assert 5 + burst.count(ALLOWED) == config.rate_limit_hourly_max_per_email

    def test_ceiling_holds_with_window_not_dividing_hour(self, valkey, clock):
        """Seven-minute windows: any rolling hour still sees at most the ceiling."""
        config = AuthConfig(rate_limit_window_minutes=7)
        limiter = RateLimiter(valkey, config)

        allowed_at = []
        for _ in range(8):
            for result in attempts(limiter, 5):
                if result is ALLOWED:
                    allowed_at.append(clock.now)
            clock.advance(minutes=7)

        assert len(allowed_at) == config.rate_limit_hourly_max_per_email
        assert allowed_at[-1] - allowed_at[0] < timedelta(hours=1)

    def test_ceiling_slides_rather_than_resets(self, rate_limiter, clock):
        """Attempts from 10:30 still count at 11:10."""
        clock.advance(minutes=30)
        attempts(rate_limiter, 5)
        clock.advance(minutes=15)
        attempts(rate_limiter, 3)

        clock.advance(minutes=25)
        assert rate_limiter.check_and_record("user@example.com", IP) is BLOCKED

        clock.advance(minutes=20)
        assert rate_limiter.check_and_record("user@example.com", IP) is ALLOWED

    def test_hourly_ceiling_resets_next_hour(self, rate_limiter, clock):
        attempts(rate_limiter, 5)
        clock.advance(minutes=15)
        attempts(rate_limiter, 5)
        clock.advance(minutes=45)

        assert rate_limiter.check_and_record("user@example.com", IP) is ALLOWED

    def test_counter_keys_expire(self, rate_limiter, valkey):
        rate_limiter.check_and_record("user@example.com", IP)

        keys = list(valkey.scan_keys("ratelimit:magic_link:*"))
        assert len(keys) == 4
        for key in keys:
            assert 0 < valkey.ttl(key) <= 3600

    def test_retry_after_counts_down_to_rollover(self, rate_limiter, clock):
        clock.advance(minutes=10)
        assert rate_limiter.retry_after_seconds() == 300


class TestRemainingAndReset:
    """Test remaining-attempt reporting and reset."""

    def test_remaining_attempts_starts_at_window_limit(self, rate_limiter, config):
        assert rate_limiter.get_remaining_attempts("new@example.com", IP) == config.rate_limit_max_attempts_per_email

    def test_remaining_attempts_decrements(self, rate_limiter, config):
        attempts(rate_limiter, 2)
        assert rate_limiter.get_remaining_attempts("user@example.com", IP) == config.rate_limit_max_attempts_per_email - 2

    def test_reset_clears_email_counters(self, rate_limiter, config):
        attempts(rate_limiter, config.rate_limit_max_attempts_per_email + 1)

        rate_limiter.reset("USER@example.com")

        assert rate_limiter.check_and_record("user@example.com", IP) is ALLOWED

    def test_reset_keeps_ip_counters(self, rate_limiter, config):
        for n in range(config.rate_limit_max_attempts_per_ip):
            rate_limiter.check_and_record(f"user{n}@example.com", IP)

        rate_limiter.reset("user0@example.com")

        assert rate_limiter.check_and_record("user0@example.com", IP) is BLOCKED


class TestNormalizeEmail:
    def test_strips_and_lowercases(self):
        assert normalize_email("  Admin@Example.COM\n") == "admin@example.com"


class TestConfigGuards:
    def test_hourly_ceiling_below_window_rejected(self):
        with pytest.raises(ValueError):
            AuthConfig(rate_limit_max_attempts_per_email=10, rate_limit_hourly_max_per_email=5)
