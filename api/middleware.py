"""Request-scoped middleware for API requests."""

import logging
import re
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)

# Accept an upstream id only if it is short and printable-safe
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9\-]{8,64}$")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns a request ID to every request and logs its outcome.

    A well-formed X-Request-ID from the proxy is reused so log lines
    correlate across hops; anything else is replaced with a fresh UUID.
    Query strings are never logged: the magic link carries its bearer
    value there.
    """

    async def dispatch(self, request: Request, call_next):
        incoming = request.headers.get("X-Request-ID", "")
        request_id = incoming if _REQUEST_ID_PATTERN.match(incoming) else str(uuid4())
        request.state.request_id = request_id

        started = time.monotonic()
        response = await call_next(request)
        elapsed_ms = (time.monotonic() - started) * 1000

        response.headers["X-Request-ID"] = request_id
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"({elapsed_ms:.0f}ms) request_id={request_id}"
        )
        return response
