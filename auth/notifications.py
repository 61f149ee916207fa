"""Email and landing page rendering, plus background login notifications.

Templates live in auth/templates and are rendered with jinja2; HTML
templates are autoescaped, plain text ones are not.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime

from jinja2 import Environment, PackageLoader, select_autoescape

from clients.email_client import EmailGatewayClient, EmailGatewayError
from auth.config import AuthConfig
from auth.security_logger import AuditOutcome, SecurityEvent, SecurityLogger
from auth.types import AdminAccount
from utils.timezone import format_local

logger = logging.getLogger(__name__)


@dataclass
class RenderedEmail:
    """Subject plus both bodies, ready for the email transport."""

    subject: str
    html_body: str
    text_body: str


def classify_device(user_agent: str | None) -> str:
    """Coarse device label for notifications. Mobile checks run first
    because iOS user agents also mention Mac OS X."""
    if not user_agent:
        return "Unknown Device"

    checks = (
        ("iPhone", "iPhone"),
        ("iPad", "iPad"),
        ("Android", "Android"),
        ("Windows", "Windows"),
        ("Mac", "macOS"),
        ("CrOS", "ChromeOS"),
        ("Linux", "Linux"),
    )
    for marker, label in checks:
        if marker in user_agent:
            return label
    return "Unknown Device"


class EmailRenderer:
    """Render auth emails and the verification landing page."""

    def __init__(self, config: AuthConfig):
        self._config = config
        self._env = Environment(
            loader=PackageLoader("auth", "templates"),
            autoescape=select_autoescape(enabled_extensions=("html",), default=False),
        )

    def _render(self, name: str, **context) -> str:
        return self._env.get_template(name).render(app_name=self._config.app_name, **context)

    def magic_link_email(self, login_url: str, expires_at: datetime) -> RenderedEmail:
        context = {
            "login_url": login_url,
            "expires_at": format_local(expires_at, self._config.display_timezone),
            "ttl_minutes": self._config.magic_link_ttl_minutes,
        }
        return RenderedEmail(
            subject=f"Magic Link Login - {self._config.app_name}",
            html_body=self._render("magic_link_email.html", **context),
            text_body=self._render("magic_link_email.txt", **context),
        )

    def login_notification_email(
        self,
        account: AdminAccount,
        login_time: datetime,
        ip_address: str | None,
        user_agent: str | None,
    ) -> RenderedEmail:
        context = {
            "username": account.username,
            "login_time": format_local(login_time, self._config.display_timezone),
            "ip_address": ip_address or "unknown",
            "device": classify_device(user_agent),
        }
        return RenderedEmail(
            subject=f"New admin login - {self._config.app_name}",
            html_body=self._render("login_notification.html", **context),
            text_body=self._render("login_notification.txt", **context),
        )

    def verify_page(
        self,
        token: str,
        csrf_token: str,
        action_url: str,
        csp_nonce: str,
        remember_me: bool = False,
    ) -> str:
        return self._render(
            "verify_magic_link.html",
            token=token,
            csrf_token=csrf_token,
            action_url=action_url,
            csp_nonce=csp_nonce,
            remember_me=remember_me,
        )


def _report_unexpected_failure(future: Future) -> None:
    error = future.exception()
    if error is not None:
        logger.error("Login notification crashed", exc_info=error)


class LoginNotifier:
    """Best-effort "new login" emails sent off the request path.

    Failures are logged and audited; they never affect the login itself.
    """

    def __init__(
        self,
        config: AuthConfig,
        renderer: EmailRenderer,
        email_client: EmailGatewayClient,
        security_logger: SecurityLogger,
    ):
        self._renderer = renderer
        self._email_client = email_client
        self._security_logger = security_logger
        self._executor = ThreadPoolExecutor(
            max_workers=config.notification_workers,
            thread_name_prefix="login-notify",
        )

    def _send(
        self,
        account: AdminAccount,
        login_time: datetime,
        ip_address: str | None,
        user_agent: str | None,
    ) -> bool:
        try:
            email = self._renderer.login_notification_email(account, login_time, ip_address, user_agent)
            self._email_client.send(
                to=account.email,
                subject=email.subject,
                html_body=email.html_body,
                text_body=email.text_body,
            )
            return True
        except (EmailGatewayError, ValueError) as e:
            logger.warning(f"Login notification for admin {account.id} failed: {e}")
            self._security_logger.log(
                SecurityEvent.LOGIN_NOTIFICATION_FAILED,
                AuditOutcome.FAILED,
                subject_id=account.id,
                email=account.email,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"error": str(e)},
            )
            return False

    def notify(
        self,
        account: AdminAccount,
        login_time: datetime,
        ip_address: str | None,
        user_agent: str | None,
    ) -> Future:
        """Queue the notification. The returned future resolves to True if sent."""
        future = self._executor.submit(self._send, account, login_time, ip_address, user_agent)
        future.add_done_callback(_report_unexpected_failure)
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
