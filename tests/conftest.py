"""Shared test fixtures for the admin auth test suite.

Valkey is an in-process fakeredis server (real command semantics,
including MULTI/EXEC and HSETNX). Postgres and the email gateway are
mocks; audit events are read back from the mocked execute_returning calls.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import Mock

import fakeredis
import pytest
from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from auth.config import AuthConfig
from auth.database import AdminAccountStore
from auth.security_logger import SecurityLogger
from auth.types import AdminAccount
from clients.email_client import EmailGatewayClient
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from utils.admin_context import clear_current_admin_id


# =============================================================================
# TEST ADMIN CONSTANTS
# =============================================================================

ADMIN_ID = 7
ADMIN_EMAIL = "admin@example.com"
UNKNOWN_EMAIL = "nobody@example.com"

# Start of a 15-minute window and of a clock hour
T0 = datetime(2026, 3, 2, 10, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable stand-in for utils.timezone.now_utc."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)

    def set(self, moment: datetime) -> None:
        self.now = moment


class AuditTrail:
    """Read back security events written through a mocked PostgresClient."""

    def __init__(self, postgres: Mock):
        self._postgres = postgres

    def rows(self) -> list[tuple]:
        """Parameter tuples of written events, in order."""
        return [
            call.args[1]
            for call in self._postgres.execute_returning.call_args_list
            if "security_events" in call.args[0]
        ]

    def events(self) -> list[str]:
        """Event type values, in order."""
        return [row[0] for row in self.rows()]

    def outcome_of(self, event_type: str) -> str:
        for row in self.rows():
            if row[0] == event_type:
                return row[1]
        raise AssertionError(f"{event_type} not audited; got {self.events()}")

    def details_of(self, event_type: str) -> dict | None:
        for row in self.rows():
            if row[0] == event_type:
                return row[6]
        raise AssertionError(f"{event_type} not audited; got {self.events()}")


# =============================================================================
# CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_admin_context():
    """Ensure clean admin context before and after each test."""
    clear_current_admin_id()
    yield
    clear_current_admin_id()


@pytest.fixture
def clock(monkeypatch):
    """Freeze now_utc() for every module that reads the clock."""
    frozen = FrozenClock(T0)
    for module in (
        "auth.secret_store",
        "auth.rate_limiter",
        "auth.session",
        "auth.magic_link",
        "auth.security_logger",
        "auth.database",
    ):
        monkeypatch.setattr(f"{module}.now_utc", frozen)
    return frozen


# =============================================================================
# CONFIG
# =============================================================================


@pytest.fixture
def config():
    """Default limits, no response padding, cookies usable over plain HTTP."""
    return AuthConfig(
        min_response_ms=0,
        secure_cookies=False,
        app_base_url="https://admin.example.com",
    )


# =============================================================================
# VALKEY FIXTURES
# =============================================================================


@pytest.fixture
def fake_server():
    return fakeredis.FakeServer()


@pytest.fixture
def valkey(monkeypatch, fake_server):
    """ValkeyClient backed by a fresh in-process fakeredis server."""
    monkeypatch.setattr(
        "clients.valkey_client.redis.from_url",
        lambda url, **kwargs: fakeredis.FakeRedis(server=fake_server, decode_responses=True),
    )
    client = ValkeyClient("redis://fake:6379/0")
    yield client
    client.close()


# =============================================================================
# DATABASE / EMAIL FIXTURES
# =============================================================================


@pytest.fixture
def postgres():
    """Mock PostgresClient; SecurityLogger writes land in execute_returning."""
    mock = Mock(spec=PostgresClient)
    mock.execute_returning.return_value = [{"id": 1}]
    mock.execute.return_value = []
    return mock


@pytest.fixture
def security_logger(postgres):
    return SecurityLogger(postgres)


@pytest.fixture
def admin_account():
    return AdminAccount(id=ADMIN_ID, email=ADMIN_EMAIL, username="root", is_active=True)


@pytest.fixture
def account_store(admin_account):
    """Mock account store knowing exactly one admin."""
    mock = Mock(spec=AdminAccountStore)
    mock.get_by_email.side_effect = lambda email: admin_account if email.lower() == ADMIN_EMAIL else None
    mock.get_by_id.side_effect = lambda account_id: admin_account if account_id == ADMIN_ID else None
    mock.update_last_login.return_value = None
    return mock


@pytest.fixture
def email_client():
    """Mock email client - no actual emails sent in tests."""
    mock = Mock(spec=EmailGatewayClient)
    mock.send.return_value = None
    return mock


@pytest.fixture
def audit(postgres):
    return AuditTrail(postgres)
