"""Middleware: request ID injection, structured access logging, session cookies."""

import hashlib
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from raisetracker.config import settings
from raisetracker.core import auth
from raisetracker.core.errors import AuthenticationError, error_body

logger = logging.getLogger("raisetracker.access")

# Reachable without a session.
PUBLIC_PATHS = frozenset(
    {
        "/health",
        "/api/heartbeat",
        "/api/login",
        "/api/request-magic-link",
        "/api/validate-magic-link",
        "/api/forgot-password",
    }
)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject a unique request ID into each request and response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Structured access log: request_id, user_id (hashed), endpoint, status."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start = time.monotonic()
        response = await call_next(request)
        elapsed_ms = round((time.monotonic() - start) * 1000, 1)

        request_id = getattr(request.state, "request_id", "-")
        user_id_raw = getattr(request.state, "user_id", None)
        user_id = _hash_user_id(user_id_raw) if user_id_raw else "-"
        client_ip = request.client.host if request.client else "-"

        logger.info(
            "request_id=%s user=%s ip=%s method=%s path=%s status=%d elapsed_ms=%.1f",
            request_id,
            user_id,
            client_ip,
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )
        return response


class SessionMiddleware(BaseHTTPMiddleware):
    """Validate the session cookie, attach identity, and slide its expiry.

    When less than ``session_refresh_threshold_days`` remain, a replacement
    token expiring ``session_lifetime_days`` from now is set on the response.
    The old token stays valid until its own expiry.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path.rstrip("/") or "/"
        session = auth.read_session_token(request.cookies.get(settings.session_cookie_name))

        refreshed = None
        if session is not None:
            if session.remaining() < auth.refresh_threshold():
                refreshed = session = session.extended(auth.session_lifetime())
            request.state.session = session
            request.state.user_id = str(session.user_id)
        elif path.startswith("/api/") and path not in PUBLIC_PATHS:
            exc = AuthenticationError()
            return JSONResponse(
                status_code=exc.status_code,
                content=error_body(request, exc.status_code, exc.message),
            )

        response = await call_next(request)
        # Routes that set or clear the cookie themselves win.
        if refreshed is not None and not _sets_session_cookie(response):
            auth.set_session_cookie(response, refreshed)
        return response


def _sets_session_cookie(response: Response) -> bool:
    prefix = f"{settings.session_cookie_name}=".encode("latin-1")
    return any(
        name == b"set-cookie" and value.startswith(prefix)
        for name, value in response.raw_headers
    )


def _hash_user_id(uid: str) -> str:
    """Hash user ID for log privacy: first 12 chars of SHA-256."""
    return hashlib.sha256(str(uid).encode()).hexdigest()[:12]
