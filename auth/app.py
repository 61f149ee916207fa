"""Application factory for the admin auth service.

Infrastructure secrets come from Vault unless clients are passed in
(tests inject fakes).
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from clients.email_client import EmailGatewayClient
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from clients.vault_client import get_database_url, get_email_config, get_valkey_url
from auth.api import create_auth_router
from auth.config import AuthConfig
from auth.database import AdminAccountStore
from auth.magic_link import MagicLinkService
from auth.notifications import EmailRenderer, LoginNotifier
from auth.rate_limiter import RateLimiter
from auth.remember_me import RememberMeService
from auth.secret_store import SecretStore
from auth.security_logger import SecurityLogger
from auth.security_middleware import AuthMiddleware
from auth.session import SessionEstablisher, SessionManager
from api.errors import register_error_handlers
from api.middleware import RequestIDMiddleware

logger = logging.getLogger(__name__)


def create_app(
    config: AuthConfig | None = None,
    valkey: ValkeyClient | None = None,
    postgres: PostgresClient | None = None,
    email_client: EmailGatewayClient | None = None,
) -> FastAPI:
    """Wire clients, services, router and middleware into a FastAPI app."""
    config = config or AuthConfig()
    valkey = valkey or ValkeyClient(get_valkey_url())
    postgres = postgres or PostgresClient(get_database_url())
    email_client = email_client or EmailGatewayClient(**get_email_config())

    security_logger = SecurityLogger(postgres)
    account_store = AdminAccountStore(postgres)
    secret_store = SecretStore(valkey)
    session_manager = SessionManager(valkey, config)
    establisher = SessionEstablisher(session_manager)
    renderer = EmailRenderer(config)
    notifier = LoginNotifier(config, renderer, email_client, security_logger)

    remember_me = RememberMeService(
        config, secret_store, account_store, establisher, security_logger
    )
    magic_links = MagicLinkService(
        config=config,
        secret_store=secret_store,
        rate_limiter=RateLimiter(valkey, config),
        account_store=account_store,
        session_establisher=establisher,
        email_client=email_client,
        renderer=renderer,
        notifier=notifier,
        security_logger=security_logger,
        remember_me=remember_me,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        notifier.shutdown(wait=True)
        valkey.close()
        postgres.close()

    app = FastAPI(title=f"{config.app_name} auth", lifespan=lifespan)

    # Added last runs first: request id wraps auth
    app.add_middleware(AuthMiddleware, session_manager=session_manager, remember_me_service=remember_me, config=config)
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    app.include_router(
        create_auth_router(
            config=config,
            magic_link_service=magic_links,
            session_manager=session_manager,
            remember_me_service=remember_me,
            renderer=renderer,
            security_logger=security_logger,
        )
    )

    @app.get("/health")
    async def health():
        return {"status": "ok", "valkey": valkey.ping()}

    app.state.magic_links = magic_links
    app.state.remember_me = remember_me
    app.state.session_manager = session_manager
    app.state.notifier = notifier

    logger.info("Admin auth app created")
    return app
