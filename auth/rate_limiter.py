"""Rate limiting for magic link requests.

Two independent dimensions are tracked in Valkey:

- per normalized email (one address cannot be flooded from many IPs)
- per client IP (one IP cannot spray many addresses)

Each dimension has a configurable fixed-window quota plus a ceiling over
any rolling hour. A fresh window grants its full quota immediately, so a
burst straddling a window boundary could see two windows' worth of
attempts; the rolling ceiling is kept as a sorted-set log of attempt
times, so it has no boundary of its own and caps that burst wherever the
window edges fall.

Everything is recorded inside one MULTI/EXEC before comparing, so two
concurrent requests can never both slip under a cap.
"""

import logging

import redis

from clients.valkey_client import ValkeyClient
from auth.config import AuthConfig
from auth.types import RateLimitDecision
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    """Canonical form used for rate limiting, secret subjects and lookups."""
    return email.strip().lower()


class RateLimiter:
    """Rate limiting for magic link requests using Valkey."""

    KEY_PREFIX = "ratelimit:magic_link:"
    HOUR_SECONDS = 3600

    def __init__(self, valkey: ValkeyClient, config: AuthConfig):
        self._valkey = valkey
        self._config = config
        self._window_seconds = config.rate_limit_window_minutes * 60

    def _window_key(self, dimension: str, value: str) -> str:
        """Counter key, e.g. ratelimit:magic_link:email:a@b.c:w:1934567."""
        bucket = int(now_utc().timestamp()) // self._window_seconds
        return f"{self.KEY_PREFIX}{dimension}:{value}:w:{bucket}"

    def _hour_key(self, dimension: str, value: str) -> str:
        """Rolling-hour log key, e.g. ratelimit:magic_link:ip:1.2.3.4:h."""
        return f"{self.KEY_PREFIX}{dimension}:{value}:h"

    def _limits(self, email: str, ip_address: str) -> tuple[dict[str, int], dict[str, int]]:
        """Window counter limits and rolling-hour log limits, keyed by Valkey key."""
        email = normalize_email(email)
        ip_address = ip_address or "unknown"
        config = self._config

        windows = {
            self._window_key("email", email): config.rate_limit_max_attempts_per_email,
            self._window_key("ip", ip_address): config.rate_limit_max_attempts_per_ip,
        }
        hours = {
            self._hour_key("email", email): config.rate_limit_hourly_max_per_email,
            self._hour_key("ip", ip_address): config.rate_limit_hourly_max_per_ip,
        }
        return windows, hours

    def check_and_record(self, email: str, ip_address: str) -> RateLimitDecision:
        """Record one issuance attempt and decide whether to allow it.

        Blocked attempts still count, so hammering keeps the caller blocked
        for the rest of the window.

        Fails closed: if Valkey is unreachable the attempt is blocked.
        """
        windows, hours = self._limits(email, ip_address)

        try:
            counts = self._valkey.record_event(
                counters={key: self._window_seconds for key in windows},
                logs={key: self.HOUR_SECONDS for key in hours},
                timestamp=now_utc().timestamp(),
            )
        except redis.RedisError as e:
            logger.error(f"Rate limit store unavailable, blocking request: {e}")
            return RateLimitDecision.BLOCKED

        for key, limit in {**windows, **hours}.items():
            if counts[key] > limit:
                logger.info(f"Rate limit hit on {key.split(':')[2]} dimension")
                return RateLimitDecision.BLOCKED

        return RateLimitDecision.ALLOWED

    def retry_after_seconds(self) -> int:
        """Seconds until the current window rolls over (at least 1)."""
        elapsed = int(now_utc().timestamp()) % self._window_seconds
        return max(self._window_seconds - elapsed, 1)

    def get_remaining_attempts(self, email: str, ip_address: str) -> int:
        """Remaining attempts before any counter for this pair blocks."""
        windows, hours = self._limits(email, ip_address)
        used = [
            int(value) if value is not None else 0
            for value in self._valkey.get_many(list(windows))
        ]
        used += self._valkey.count_recent(list(hours), now_utc().timestamp() - self.HOUR_SECONDS)

        limits = list(windows.values()) + list(hours.values())
        return max(min(limit - count for limit, count in zip(limits, used)), 0)

    def reset(self, email: str) -> None:
        """Clear per-email counters (e.g. after a successful login)."""
        email = normalize_email(email)
        self._valkey.delete(self._window_key("email", email), self._hour_key("email", email))
