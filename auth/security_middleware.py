"""Security middleware for FastAPI - session validation and admin context."""

import logging

import redis
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from auth.api import clear_auth_cookie, get_client_ip, set_session_cookie
from auth.config import AuthConfig
from auth.exceptions import DependencyError, InvalidTokenError, SessionExpiredError
from auth.remember_me import RememberMeService
from auth.session import SessionManager
from api.base import error_response, ErrorCodes
from utils.admin_context import set_current_admin_id, clear_current_admin_id

logger = logging.getLogger(__name__)


def _unauthorized(code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content=error_response(code, message).model_dump(mode="json"),
    )


def _unavailable() -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content=error_response(
            ErrorCodes.SERVICE_UNAVAILABLE,
            "Service temporarily unavailable",
        ).model_dump(mode="json"),
    )


class AuthMiddleware(BaseHTTPMiddleware):
    """Middleware that validates the admin session and sets admin context.

    For protected routes:
    1. Extracts session token from the session cookie
    2. Validates session via SessionManager (sliding expiry)
    3. No live session but a remember-me cookie: restores a fresh session
       through RememberMeService and sets the new session cookie
    4. Sets admin_id in request.state and admin context
    5. Clears context after request completes

    Public paths bypass authentication entirely.
    """

    PUBLIC_PATHS = [
        "/admin/request-magic-link",
        "/admin/verify-magic-link",
        "/admin/logout",
        "/admin/login",
        "/admin/flash",
        "/health",
        "/docs",
        "/openapi.json",
    ]

    def __init__(
        self,
        app,
        session_manager: SessionManager,
        remember_me_service: RememberMeService,
        config: AuthConfig,
    ):
        super().__init__(app)
        self._session_manager = session_manager
        self._remember_me = remember_me_service
        self._config = config

    def _is_public_path(self, path: str) -> bool:
        """Exact match, or a sub-path below a public path (/docs/...)."""
        for public_path in self.PUBLIC_PATHS:
            if path == public_path or path.startswith(public_path + "/"):
                return True
        return False

    async def dispatch(self, request: Request, call_next):
        """Process request through middleware."""
        path = request.url.path

        # Skip auth for public paths
        if self._is_public_path(path):
            return await call_next(request)

        session_token = request.cookies.get(self._config.session_cookie_name)
        remember_token = request.cookies.get(self._config.remember_me_cookie_name)

        session = None
        restored = False

        if session_token:
            try:
                session = self._session_manager.validate_session(session_token)
            except SessionExpiredError:
                session = None
            except redis.RedisError as e:
                logger.error(f"Session store unavailable: {e}")
                return _unavailable()

        if session is None and remember_token:
            try:
                _account, session = self._remember_me.restore_session(
                    remember_token,
                    ip_address=get_client_ip(request),
                    user_agent=request.headers.get("User-Agent"),
                    previous_token=session_token,
                )
                restored = True
            except InvalidTokenError:
                response = _unauthorized(ErrorCodes.SESSION_EXPIRED, "Session has expired")
                clear_auth_cookie(response, self._config.remember_me_cookie_name, self._config)
                return response
            except DependencyError:
                return _unavailable()
            except redis.RedisError as e:
                logger.error(f"Secret store unavailable restoring remember-me session: {e}")
                return _unavailable()

        if session is None:
            if session_token:
                return _unauthorized(ErrorCodes.SESSION_EXPIRED, "Session has expired")
            return _unauthorized(ErrorCodes.NOT_AUTHENTICATED, "Authentication required")

        set_current_admin_id(session.admin_account_id)
        request.state.admin_id = session.admin_account_id
        request.state.session = session

        try:
            response = await call_next(request)
        finally:
            # Always clear context
            clear_current_admin_id()

        if restored:
            set_session_cookie(response, session, self._config)
        return response
