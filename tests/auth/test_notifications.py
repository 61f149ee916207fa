"""Tests for EmailRenderer and LoginNotifier."""

from datetime import datetime, timezone

import pytest

from auth.config import AuthConfig
from auth.notifications import EmailRenderer, LoginNotifier, classify_device
from auth.types import AdminAccount
from clients.email_client import EmailGatewayError

T0 = datetime(2026, 3, 2, 10, 0, 0, tzinfo=timezone.utc)

IP = "198.51.100.4"
IPHONE_UA = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15"
LOGIN_URL = "https://admin.example.com/admin/verify-magic-link?token=abc123"


@pytest.fixture
def renderer(config):
    return EmailRenderer(config)


@pytest.fixture
def notifier(config, renderer, email_client, security_logger):
    notifier = LoginNotifier(config, renderer, email_client, security_logger)
    yield notifier
    notifier.shutdown()


class TestClassifyDevice:
    @pytest.mark.parametrize(
        "user_agent, expected",
        [
            (IPHONE_UA, "iPhone"),
            ("Mozilla/5.0 (iPad; CPU OS 16_0 like Mac OS X)", "iPad"),
            ("Mozilla/5.0 (Linux; Android 14; Pixel 8)", "Android"),
            ("Mozilla/5.0 (Windows NT 10.0; Win64; x64)", "Windows"),
            ("Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0)", "macOS"),
            ("Mozilla/5.0 (X11; CrOS x86_64 15633.69.0)", "ChromeOS"),
            ("Mozilla/5.0 (X11; Linux x86_64)", "Linux"),
            ("curl/8.4.0", "Unknown Device"),
            (None, "Unknown Device"),
            ("", "Unknown Device"),
        ],
    )
    def test_labels(self, user_agent, expected):
        assert classify_device(user_agent) == expected


class TestMagicLinkEmail:
    def test_both_bodies_carry_link_and_expiry(self, renderer):
        email = renderer.magic_link_email(LOGIN_URL, T0)

        assert email.subject == "Magic Link Login - Admin Portal"
        for body in (email.html_body, email.text_body):
            assert "2026-03-02 10:00 AM UTC" in body
            assert "5 minutes" in body
        assert LOGIN_URL in email.text_body
        assert 'href="https://admin.example.com/admin/verify-magic-link?token=abc123"' in email.html_body

    def test_html_escapes_url(self, renderer):
        email = renderer.magic_link_email("https://admin.example.com/x?a=1&b=<2>", T0)

        assert "&amp;b=&lt;2&gt;" in email.html_body
        assert "a=1&b=<2>" in email.text_body

    def test_display_timezone(self):
        renderer = EmailRenderer(AuthConfig(display_timezone="America/New_York"))

        email = renderer.magic_link_email(LOGIN_URL, T0)

        assert "2026-03-02 05:00 AM EST" in email.text_body


class TestLoginNotificationEmail:
    def test_details_rendered(self, renderer, admin_account):
        email = renderer.login_notification_email(admin_account, T0, IP, IPHONE_UA)

        assert email.subject == "New admin login - Admin Portal"
        for body in (email.html_body, email.text_body):
            assert "Hello root" in body
            assert IP in body
            assert "iPhone" in body
            assert "2026-03-02 10:00 AM UTC" in body

    def test_missing_ip_and_username(self, renderer):
        account = AdminAccount(id=9, email="ops@example.com")

        email = renderer.login_notification_email(account, T0, None, None)

        assert "Hello Admin" in email.text_body
        assert "unknown" in email.text_body
        assert "Unknown Device" in email.text_body


class TestVerifyPage:
    def test_hidden_fields_and_nonce(self, renderer):
        html = renderer.verify_page(
            token="tok123",
            csrf_token="csrf456",
            action_url="/admin/verify-magic-link",
            csp_nonce="n0nce",
            remember_me=True,
        )

        assert 'action="/admin/verify-magic-link"' in html
        assert 'name="token" value="tok123"' in html
        assert 'name="csrf_token" value="csrf456"' in html
        assert 'name="remember_me" value="1"' in html
        assert '<script nonce="n0nce">' in html
        assert 'method="POST"' in html

    def test_token_is_escaped(self, renderer):
        html = renderer.verify_page('"><script>', "c", "/admin/verify-magic-link", "n")

        assert '"><script>' not in html
        assert 'name="remember_me" value="0"' in html


class TestLoginNotifier:
    def test_sends_notification(self, notifier, email_client, admin_account, audit):
        sent = notifier.notify(admin_account, T0, IP, IPHONE_UA).result(timeout=5)

        assert sent is True
        kwargs = email_client.send.call_args.kwargs
        assert kwargs["to"] == admin_account.email
        assert kwargs["subject"] == "New admin login - Admin Portal"
        assert audit.events() == []

    def test_failure_is_audited_not_raised(self, notifier, email_client, admin_account, audit):
        email_client.send.side_effect = EmailGatewayError("gateway down")

        sent = notifier.notify(admin_account, T0, IP, IPHONE_UA).result(timeout=5)

        assert sent is False
        assert audit.events() == ["login_notification_failed"]
        assert audit.outcome_of("login_notification_failed") == "failed"
        assert audit.details_of("login_notification_failed") == {"error": "gateway down"}
