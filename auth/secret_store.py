"""Hashed bearer secret storage with atomic single-use consumption.

Secrets live in Valkey as hashes keyed by the SHA-256 of the bearer value:

    secret:{kind}:{sha256(bearer)}          -> record fields, TTL = secret TTL
    secret:{kind}:subject:{subject}         -> set of record keys (index)

The raw bearer value is returned once from issue() and never stored.
Consumption is claimed with HSETNX on the consumed_at field: among any
number of concurrent callers exactly one sets the field, everyone else
sees it already present.
"""

import hashlib
import logging
import secrets
from datetime import timedelta
from uuid import uuid4

from clients.valkey_client import ValkeyClient
from auth.types import IssuedSecret, SecretKind, SecretRecord
from auth.exceptions import (
    ConsumeRaceError,
    SecretAlreadyConsumedError,
    SecretExpiredError,
    SecretNotFoundError,
)
from utils.timezone import now_utc, parse_iso

logger = logging.getLogger(__name__)


class SecretStore:
    """Issue, validate, consume and revoke opaque bearer secrets."""

    KEY_PREFIX = "secret:"
    TOKEN_BYTES = 32  # 256 bits

    _DATETIME_FIELDS = ("issued_at", "expires_at", "consumed_at", "last_used_at")

    def __init__(self, valkey: ValkeyClient):
        self._valkey = valkey

    @staticmethod
    def hash_bearer(bearer_value: str) -> str:
        """One-way hash used as the storage key."""
        return hashlib.sha256(bearer_value.encode("utf-8")).hexdigest()

    def _key(self, kind: SecretKind, secret_hash: str) -> str:
        return f"{self.KEY_PREFIX}{kind.value}:{secret_hash}"

    def _index_key(self, kind: SecretKind, subject: str) -> str:
        return f"{self.KEY_PREFIX}{kind.value}:subject:{subject}"

    def _load(self, key: str) -> SecretRecord | None:
        """Read a record; partial hashes (left behind by a lost race) count as missing."""
        data = self._valkey.get_hash(key)
        if data is None or "subject" not in data:
            return None

        values = dict(data)
        for field in self._DATETIME_FIELDS:
            if values.get(field):
                values[field] = parse_iso(values[field])
            else:
                values.pop(field, None)
        return SecretRecord(**values)

    def issue(
        self,
        kind: SecretKind,
        subject: str,
        ttl_seconds: int,
        origin_ip: str | None = None,
        user_agent: str | None = None,
    ) -> IssuedSecret:
        """Generate a bearer secret and persist only its hash.

        Returns:
            IssuedSecret carrying the raw bearer value - the only copy.
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        bearer_value = secrets.token_hex(self.TOKEN_BYTES)
        secret_hash = self.hash_bearer(bearer_value)
        now = now_utc()
        expires_at = now + timedelta(seconds=ttl_seconds)
        secret_id = uuid4().hex

        mapping = {
            "id": secret_id,
            "kind": kind.value,
            "secret_hash": secret_hash,
            "subject": subject,
            "issued_at": now.isoformat(),
            "expires_at": expires_at.isoformat(),
        }
        if origin_ip:
            mapping["origin_ip"] = origin_ip
        if user_agent:
            mapping["user_agent"] = user_agent[:512]

        self._valkey.store_hash(
            self._key(kind, secret_hash),
            mapping,
            expire_seconds=ttl_seconds,
            index_key=self._index_key(kind, subject),
        )

        return IssuedSecret(
            secret_id=secret_id,
            bearer_value=bearer_value,
            expires_at=expires_at,
        )

    def validate_and_consume(self, kind: SecretKind, bearer_value: str) -> SecretRecord:
        """Validate a single-use secret and atomically mark it consumed.

        Raises:
            SecretNotFoundError: No such secret (never issued, revoked, evicted).
            SecretExpiredError: expires_at has passed.
            SecretAlreadyConsumedError: Consumed earlier or by a concurrent caller.
            ConsumeRaceError: Secret vanished between lookup and claim.
        """
        key = self._key(kind, self.hash_bearer(bearer_value))
        record = self._load(key)

        if record is None:
            raise SecretNotFoundError("No secret for bearer value")

        if record.consumed_at is not None:
            raise SecretAlreadyConsumedError("Secret already consumed")

        now = now_utc()
        if now >= record.expires_at:
            raise SecretExpiredError("Secret expired")

        if not self._valkey.set_hash_field_if_absent(key, "consumed_at", now.isoformat()):
            raise SecretAlreadyConsumedError("Secret consumed by a concurrent request")

        # HSETNX recreates a deleted key; a record without subject means we
        # claimed a ghost left by a concurrent revoke or eviction.
        if self._load(key) is None:
            self._valkey.delete(key)
            raise ConsumeRaceError("Secret disappeared during consumption")

        return record.model_copy(update={"consumed_at": now})

    def lookup(self, kind: SecretKind, bearer_value: str) -> SecretRecord:
        """Validate a multi-use secret without consuming it.

        Stamps last_used_at for the device list.

        Raises:
            SecretNotFoundError: No such secret.
            SecretExpiredError: expires_at has passed.
        """
        key = self._key(kind, self.hash_bearer(bearer_value))
        record = self._load(key)

        if record is None:
            raise SecretNotFoundError("No secret for bearer value")

        now = now_utc()
        if now >= record.expires_at:
            raise SecretExpiredError("Secret expired")

        # Re-assert the TTL with the write so a concurrent revoke can only
        # leave behind a partial hash that expires on schedule.
        remaining = int((record.expires_at - now).total_seconds()) + 1
        self._valkey.store_hash(key, {"last_used_at": now.isoformat()}, expire_seconds=remaining)

        return record.model_copy(update={"last_used_at": now})

    def revoke(self, kind: SecretKind, bearer_value: str) -> bool:
        """Delete one secret. Returns True if it existed."""
        key = self._key(kind, self.hash_bearer(bearer_value))
        record = self._load(key)
        deleted = self._valkey.delete(key) > 0
        if record is not None:
            self._valkey.remove_members(self._index_key(kind, record.subject), key)
        return deleted

    def revoke_all_for(self, kind: SecretKind, subject: str) -> int:
        """Invalidate every outstanding (unconsumed) secret for a subject.

        Consumed magic link records are left in place until their TTL so a
        replay is still recognised as such in the audit log.

        Returns:
            Number of secrets revoked.
        """
        index_key = self._index_key(kind, subject)
        revoked = []

        for key in self._valkey.set_members(index_key):
            record = self._load(key)
            if record is not None and record.consumed_at is not None:
                continue
            if record is not None:
                revoked.append(key)
            self._valkey.delete(key)
            self._valkey.remove_members(index_key, key)

        if revoked:
            logger.info(f"Revoked {len(revoked)} outstanding {kind.value} secret(s)")
        return len(revoked)

    def list_active_for(self, kind: SecretKind, subject: str) -> list[SecretRecord]:
        """Unexpired, unconsumed secrets for a subject, newest first."""
        now = now_utc()
        active = []

        for key in self._valkey.set_members(self._index_key(kind, subject)):
            record = self._load(key)
            if record is None or record.consumed_at is not None:
                continue
            if now >= record.expires_at:
                continue
            active.append(record)

        return sorted(active, key=lambda r: r.issued_at, reverse=True)

    def purge_expired(self, kind: SecretKind) -> int:
        """Delete expired records and prune dangling index entries.

        Valkey TTLs already evict most records; this sweep bounds the index
        sets and catches anything whose TTL was lost. Only touches secrets
        already past expires_at, so it is safe alongside live traffic.

        Returns:
            Number of secrets purged.
        """
        now = now_utc()
        purged = 0

        for index_key in self._valkey.scan_keys(f"{self.KEY_PREFIX}{kind.value}:subject:*"):
            for key in self._valkey.set_members(index_key):
                record = self._load(key)
                if record is not None and now < record.expires_at:
                    continue
                self._valkey.delete(key)
                self._valkey.remove_members(index_key, key)
                purged += 1

        logger.info(f"Purged {purged} expired {kind.value} secret(s)")
        return purged
