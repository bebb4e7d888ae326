"""In-memory login throttling.

POST /api/login → at most ``login_max_attempts`` per ``login_window_minutes``
per client address. A successful login clears the address's attempts.

No Redis required; suitable for a single instance.
"""

import threading
import time
from collections import defaultdict
from contextlib import contextmanager

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from raisetracker.config import settings
from raisetracker.core.errors import RATE_LIMIT_EXCEEDED, RateLimitedError, error_body

LOGIN_PATH = "/api/login"


class SlidingWindowLimiter:
    """Sliding-window attempt counter with one lock per key.

    Keys with no attempts left inside the window are forgotten, lock and all,
    by :meth:`sweep`; ``is_allowed`` runs a sweep at most once per window.
    """

    def __init__(self) -> None:
        # key -> list of monotonic timestamps
        self._hits: dict[str, list[float]] = defaultdict(list)
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._last_sweep = float("-inf")

    def _lock_for(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def _holding(self, key: str):
        while True:
            lock = self._lock_for(key)
            with lock:
                # A sweep may have retired this lock while we waited for it
                if self._locks.get(key) is lock:
                    yield
                    return

    def is_allowed(
        self, key: str, max_requests: int, window: float, now: float | None = None
    ) -> bool:
        """Record an attempt for ``key`` unless it is already at the limit."""
        now = time.monotonic() if now is None else now
        if now - self._last_sweep >= window:
            self.sweep(window, now)
        cutoff = now - window
        with self._holding(key):
            hits = [t for t in self._hits[key] if t > cutoff]
            if len(hits) >= max_requests:
                self._hits[key] = hits
                return False
            hits.append(now)
            self._hits[key] = hits
            return True

    def sweep(self, window: float, now: float | None = None) -> int:
        """Forget keys whose attempts have all left the window; return how many."""
        now = time.monotonic() if now is None else now
        cutoff = now - window
        removed = 0
        with self._registry_lock:
            self._last_sweep = now
            for key in list(self._hits):
                lock = self._locks.get(key)
                # Busy keys are in use, so not idle
                if lock is not None and not lock.acquire(blocking=False):
                    continue
                try:
                    if not any(t > cutoff for t in self._hits[key]):
                        del self._hits[key]
                        self._locks.pop(key, None)
                        removed += 1
                finally:
                    if lock is not None:
                        lock.release()
        return removed

    def clear(self, key: str) -> None:
        with self._holding(key):
            self._hits.pop(key, None)
            with self._registry_lock:
                self._locks.pop(key, None)

    def reset(self) -> None:
        with self._registry_lock:
            self._hits.clear()
            self._locks.clear()
            self._last_sweep = float("-inf")

    def __len__(self) -> int:
        return len(self._hits)


login_limiter = SlidingWindowLimiter()


def client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


class LoginRateLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if (
            settings.login_rate_limit_enabled
            and request.method == "POST"
            and request.url.path.rstrip("/") == LOGIN_PATH
        ):
            key = client_key(request)
            window = settings.login_window_minutes * 60
            if not login_limiter.is_allowed(key, settings.login_max_attempts, window):
                return _rate_limit_response(request)
            # Read by the login route to clear attempts on success
            request.state.rate_limit_key = key

        return await call_next(request)


def _rate_limit_response(request: Request) -> JSONResponse:
    exc = RateLimitedError()
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(request, exc.status_code, exc.message, RATE_LIMIT_EXCEEDED),
        headers={"Retry-After": str(settings.login_window_minutes * 60)},
    )
