"""HTTP routes for admin magic link authentication."""

import ipaddress
import logging
import secrets

from fastapi import APIRouter, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from auth.config import AuthConfig
from auth.exceptions import (
    CsrfError,
    DependencyError,
    InvalidRequestError,
    InvalidTokenError,
)
from auth.magic_link import MagicLinkService
from auth.notifications import EmailRenderer
from auth.remember_me import RememberMeService
from auth.security_logger import AuditOutcome, SecurityEvent, SecurityLogger
from auth.session import SessionManager
from auth.types import MagicLinkRequest, Session
from api.base import ErrorCodes, error_response, success_response

logger = logging.getLogger(__name__)

LOGIN_PATH = "/admin/login"
HOME_PATH = "/admin/"

GENERIC_REQUEST_ERROR = "Unable to process request"
GENERIC_RETRY_LATER = "Unable to process request. Please try again later."
GENERIC_LINK_ERROR = "Invalid or expired link"
CSRF_FLASH = "Security validation failed. Please request a new link."

_TRUTHY = {"1", "true", "on", "yes"}


def get_client_ip(request: Request) -> str | None:
    """Extract valid IP address from request, or None if invalid."""
    if not request.client:
        return None
    host = request.client.host
    try:
        ipaddress.ip_address(host)
        return host
    except ValueError:
        return None


def _is_truthy(value) -> bool:
    return str(value or "").strip().lower() in _TRUTHY


async def _read_body(request: Request) -> dict:
    """JSON or form payload as a plain dict; anything unparseable is empty."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}
    form = await request.form()
    return dict(form)


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _json_error(request: Request, status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_response(code, message, _request_id(request)).model_dump(mode="json"),
    )


def set_session_cookie(response: Response, session: Session, config: AuthConfig) -> None:
    """Set the session cookie with secure defaults."""
    response.set_cookie(
        key=config.session_cookie_name,
        value=session.token,
        httponly=True,
        secure=config.secure_cookies,
        samesite="lax",
        max_age=int((session.expires_at - session.created_at).total_seconds()),
    )


def set_remember_me_cookie(response: Response, bearer_value: str, config: AuthConfig) -> None:
    response.set_cookie(
        key=config.remember_me_cookie_name,
        value=bearer_value,
        httponly=True,
        secure=config.secure_cookies,
        samesite="lax",
        max_age=config.remember_me_ttl_seconds,
    )


def clear_auth_cookie(response: Response, key: str, config: AuthConfig) -> None:
    """Remove a cookie using the same security options it was set with."""
    response.delete_cookie(
        key=key,
        httponly=True,
        secure=config.secure_cookies,
        samesite="lax",
    )


def create_auth_router(
    config: AuthConfig,
    magic_link_service: MagicLinkService,
    session_manager: SessionManager,
    remember_me_service: RememberMeService,
    renderer: EmailRenderer,
    security_logger: SecurityLogger,
) -> APIRouter:
    """Create auth router with injected services."""
    router = APIRouter(prefix="/admin", tags=["auth"])

    @router.post("/request-magic-link")
    async def request_magic_link(request: Request):
        """Request magic link email.

        Always answers with the same success body, registered or not.
        Returns 400 only for malformed input.
        """
        body = await _read_body(request)
        ip_address = get_client_ip(request)
        user_agent = request.headers.get("User-Agent")

        try:
            payload = MagicLinkRequest(email=str(body.get("email") or ""))
        except ValidationError:
            return _json_error(request, 400, ErrorCodes.INVALID_REQUEST, GENERIC_REQUEST_ERROR)

        try:
            # Blocking: response padding sleeps, keep it off the event loop
            result = await run_in_threadpool(
                magic_link_service.request_link,
                payload.email,
                ip_address,
                user_agent,
                _is_truthy(body.get("remember_me")),
            )
        except InvalidRequestError:
            return _json_error(request, 400, ErrorCodes.INVALID_REQUEST, GENERIC_REQUEST_ERROR)
        except DependencyError:
            return _json_error(request, 503, ErrorCodes.SERVICE_UNAVAILABLE, GENERIC_RETRY_LATER)

        return success_response({"message": result.message}, _request_id(request))

    @router.get("/verify-magic-link")
    async def verify_magic_link_page(
        request: Request,
        token: str = Query(""),
        remember: str = Query(""),
    ):
        """Landing page for the emailed link.

        Renders an auto-submitting POST form bound to the caller's session
        CSRF token. Never consumes the link, so mail scanners prefetching
        the URL cannot burn it.
        """
        session = session_manager.ensure_csrf_token(request.cookies.get(config.session_cookie_name))

        if not token:
            session_manager.set_flash(session.token, GENERIC_LINK_ERROR)
            response = RedirectResponse(LOGIN_PATH, status_code=303)
            set_session_cookie(response, session, config)
            return response

        nonce = secrets.token_urlsafe(16)
        html = renderer.verify_page(
            token=token,
            csrf_token=session.csrf_token,
            action_url=MagicLinkService.VERIFY_PATH,
            csp_nonce=nonce,
            remember_me=_is_truthy(remember),
        )
        response = HTMLResponse(
            html,
            headers={
                "Content-Security-Policy": (
                    f"default-src 'none'; script-src 'nonce-{nonce}'; "
                    "style-src 'unsafe-inline'; form-action 'self'"
                ),
                "Referrer-Policy": "no-referrer",
                "Cache-Control": "no-store",
            },
        )
        set_session_cookie(response, session, config)
        return response

    @router.post("/verify-magic-link")
    async def verify_magic_link(request: Request):
        """Consume the link and log in.

        303 to the admin home on success, 303 to the login page with a
        flash message on any failure.
        """
        form = await request.form()
        ip_address = get_client_ip(request)
        user_agent = request.headers.get("User-Agent")
        session_token = request.cookies.get(config.session_cookie_name)
        current = session_manager.get_session(session_token)

        try:
            result = await run_in_threadpool(
                magic_link_service.verify_link,
                str(form.get("token") or ""),
                form.get("csrf_token"),
                current.csrf_token if current else None,
                ip_address,
                user_agent,
                session_token if current else None,
                _is_truthy(form.get("remember_me")),
            )
        except (CsrfError, InvalidTokenError, DependencyError) as e:
            if isinstance(e, CsrfError):
                message = CSRF_FLASH
            elif isinstance(e, DependencyError):
                message = GENERIC_RETRY_LATER
            else:
                message = GENERIC_LINK_ERROR

            flash_session = current or session_manager.create_session()
            session_manager.set_flash(flash_session.token, message)
            response = RedirectResponse(LOGIN_PATH, status_code=303)
            set_session_cookie(response, flash_session, config)
            return response

        response = RedirectResponse(HOME_PATH, status_code=303)
        set_session_cookie(response, result.session, config)
        if result.remember_me is not None:
            set_remember_me_cookie(response, result.remember_me.bearer_value, config)
        return response

    @router.get("/flash")
    async def get_flash(request: Request):
        """Pending flash message for the login page (read once)."""
        message = session_manager.pop_flash(request.cookies.get(config.session_cookie_name))
        return success_response({"message": message}, _request_id(request))

    @router.post("/logout")
    async def logout(request: Request):
        """Logout - revoke session and remember-me credential, clear cookies."""
        session_token = request.cookies.get(config.session_cookie_name)
        remember_token = request.cookies.get(config.remember_me_cookie_name)
        ip_address = get_client_ip(request)

        if session_token:
            session = session_manager.get_session(session_token)
            session_manager.revoke_session(session_token)
            if session is not None and session.is_authenticated:
                security_logger.log(
                    SecurityEvent.SESSION_REVOKED,
                    AuditOutcome.SUCCESS,
                    subject_id=session.admin_account_id,
                    ip_address=ip_address,
                    user_agent=request.headers.get("User-Agent"),
                )

        if remember_token:
            remember_me_service.revoke(remember_token, ip_address)

        body = success_response({"message": "Logged out successfully"}, _request_id(request))
        response = JSONResponse(content=body.model_dump(mode="json"))
        clear_auth_cookie(response, config.session_cookie_name, config)
        clear_auth_cookie(response, config.remember_me_cookie_name, config)
        return response

    @router.get("/me")
    async def get_current_admin(request: Request):
        """Get current authenticated admin.

        Requires authentication (middleware sets admin context).
        """
        if not hasattr(request.state, "admin_id"):
            return _json_error(request, 401, ErrorCodes.NOT_AUTHENTICATED, "Authentication required")

        session: Session = request.state.session
        return success_response({
            "admin_id": request.state.admin_id,
            "login_time": session.login_time,
            "expires_at": session.expires_at,
        }, _request_id(request))

    return router
