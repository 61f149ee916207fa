"""
Valkey (Redis-compatible) client for secrets, sessions and rate limiting.

Thin wrapper around redis-py. Connection URL from Vault.
Fail-fast: raises on connection failure, never returns fallback values.

Only native atomic primitives are exposed for shared state (INCR, HSETNX,
MULTI/EXEC pipelines) - the service runs as several stateless replicas, so
application-level locks would not help.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Iterator

import redis

logger = logging.getLogger(__name__)


class ValkeyClient:
    """
    Redis-compatible client for Valkey.

    Usage:
        client = ValkeyClient("redis://localhost:6379/0")
        client.set("key", "value", expire_seconds=300)
        value = client.get("key")  # Returns None if missing
    """

    def __init__(self, url: str, socket_timeout: float = 5.0):
        """
        Initialize Valkey connection.

        Args:
            url: Redis-compatible connection URL (e.g., redis://localhost:6379/0)
            socket_timeout: Per-command timeout in seconds

        Raises:
            redis.ConnectionError: If connection fails
        """
        self._client = redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        # Verify connectivity immediately (fail-fast)
        self._client.ping()
        logger.info("ValkeyClient connected")

    def ping(self) -> bool:
        """
        Health check.

        Returns True if Valkey responds.
        Raises redis.ConnectionError if unreachable.
        """
        self._client.ping()
        return True

    def get(self, key: str) -> str | None:
        """
        Get value by key.

        Returns None if key doesn't exist (not an error).
        """
        return self._client.get(key)

    def set(self, key: str, value: str, expire_seconds: int | None = None) -> None:
        """Set key to value, optionally with expiration."""
        if expire_seconds is not None:
            self._client.setex(key, expire_seconds, value)
        else:
            self._client.set(key, value)

    def delete(self, *keys: str) -> int:
        """Delete keys. Returns how many existed."""
        if not keys:
            return 0
        return self._client.delete(*keys)

    def ttl(self, key: str) -> int:
        """
        Get remaining TTL in seconds.

        Returns:
            -2 if key doesn't exist
            -1 if key has no expiration
            Positive int: remaining seconds
        """
        return self._client.ttl(key)

    def record_event(
        self,
        counters: dict[str, int],
        logs: dict[str, int],
        timestamp: float,
    ) -> dict[str, int]:
        """
        Atomically count one event in fixed-window counters and sliding logs.

        Counters are INCR + EXPIRE. Logs are sorted sets scored by event
        time: entries at or before timestamp - window are trimmed, the new
        event is added and the remaining entries counted. Everything runs
        in one MULTI/EXEC.

        Args:
            counters: Mapping of counter key -> expire_seconds
            logs: Mapping of sorted-set key -> window_seconds
            timestamp: Event time in epoch seconds

        Returns:
            Mapping of key -> events counted (counter value or log size)
        """
        member = f"{timestamp:.6f}:{uuid.uuid4().hex}"
        pipe = self._client.pipeline(transaction=True)
        for key, expire_seconds in counters.items():
            pipe.incr(key)
            pipe.expire(key, expire_seconds)
        for key, window_seconds in logs.items():
            pipe.zremrangebyscore(key, "-inf", timestamp - window_seconds)
            pipe.zadd(key, {member: timestamp})
            pipe.zcard(key)
            pipe.expire(key, window_seconds)
        results = pipe.execute()

        # Counters yield (INCR, EXPIRE); logs yield (ZREM, ZADD, ZCARD, EXPIRE)
        split = 2 * len(counters)
        counts = dict(zip(counters.keys(), results[0:split:2]))
        counts.update(zip(logs.keys(), results[split + 2::4]))
        return counts

    def count_recent(self, keys: list[str], since: float) -> list[int]:
        """Entries scored strictly after `since` in each sorted set."""
        if not keys:
            return []
        pipe = self._client.pipeline(transaction=False)
        for key in keys:
            pipe.zcount(key, f"({since}", "+inf")
        return pipe.execute()

    def get_many(self, keys: list[str]) -> list[str | None]:
        """Fetch several plain values in one round trip."""
        if not keys:
            return []
        return self._client.mget(keys)

    def store_hash(
        self,
        key: str,
        mapping: dict[str, str],
        expire_seconds: int,
        index_key: str | None = None,
    ) -> None:
        """
        Write a hash with TTL, optionally registering it in an index set.

        Hash write, TTL and index registration happen in one MULTI/EXEC so
        a reader never observes a record without its expiry.
        """
        pipe = self._client.pipeline(transaction=True)
        pipe.hset(key, mapping=mapping)
        pipe.expire(key, expire_seconds)
        if index_key is not None:
            pipe.sadd(index_key, key)
        pipe.execute()
        # Index lives at least as long as its newest member
        if index_key is not None and self._client.ttl(index_key) < expire_seconds:
            self._client.expire(index_key, expire_seconds)

    def get_hash(self, key: str) -> dict[str, str] | None:
        """Get all hash fields. Returns None if key doesn't exist."""
        data = self._client.hgetall(key)
        return data or None

    def set_hash_field_if_absent(self, key: str, field: str, value: str) -> bool:
        """
        HSETNX: set field only if it is not already present.

        Returns True for exactly one caller when several race on the
        same field - this is the single-use claim primitive.
        """
        return bool(self._client.hsetnx(key, field, value))

    def set_members(self, key: str) -> set[str]:
        """Return all members of a set (empty if missing)."""
        return self._client.smembers(key)

    def remove_members(self, key: str, *members: str) -> int:
        """Remove members from a set. Returns count removed."""
        if not members:
            return 0
        return self._client.srem(key, *members)

    def scan_keys(self, pattern: str) -> Iterator[str]:
        """Iterate keys matching pattern without blocking the server (SCAN)."""
        return self._client.scan_iter(match=pattern, count=500)

    def set_json(self, key: str, value: dict | list, expire_seconds: int | None = None) -> None:
        """Set key to JSON-serialized value."""
        json_str = json.dumps(value)
        self.set(key, json_str, expire_seconds)

    def get_json(self, key: str) -> dict | list | None:
        """
        Get and deserialize JSON value.

        Returns None if key doesn't exist.
        Raises ValueError if value is not valid JSON.
        """
        value = self.get(key)
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in key '{key}': {e}")

    def close(self) -> None:
        """Close the connection."""
        self._client.close()
        logger.info("ValkeyClient closed")
