"""Periodic sweep of stale secret index entries.

Valkey evicts expired secret records on its own (their key TTL equals the
secret TTL); what it cannot evict is the per-subject index membership
pointing at them. Run from cron:

    python -m auth.cleanup
"""

import logging

from clients.valkey_client import ValkeyClient
from clients.vault_client import get_valkey_url
from auth.secret_store import SecretStore
from auth.types import SecretKind

logger = logging.getLogger(__name__)


def run_cleanup(secret_store: SecretStore) -> dict[str, int]:
    """Purge expired secrets of every kind. Returns purged count per kind."""
    purged = {}
    for kind in SecretKind:
        purged[kind.value] = secret_store.purge_expired(kind)
    logger.info(f"Secret cleanup finished: {purged}")
    return purged


def main() -> None:
    valkey = ValkeyClient(get_valkey_url())
    try:
        run_cleanup(SecretStore(valkey))
    finally:
        valkey.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    main()
