"""Error taxonomy and structured JSON error responses.

Every error response has the same envelope:
``{"error": <message>, "code": <machine code or null>, "status_code", "request_id"}``.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("raisetracker.errors")

ETAG_MISMATCH = "ETAG_MISMATCH"
RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"


class AppError(Exception):
    """Base class for failures the client is expected to act on."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "Bad request"
    code: str | None = None

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthenticationError(AppError):
    """Missing, malformed, forged, expired or revoked credential.

    The message never says which; callers always see the same 401.
    """

    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"


class PermissionDeniedError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Admin access required"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ConflictError(AppError):
    """Stored version stamp no longer matches the caller's; reload and retry."""

    status_code = status.HTTP_409_CONFLICT
    default_message = "Data changed, please reload"
    code = ETAG_MISMATCH


class InvalidInputError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class RateLimitedError(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many login attempts. Please try again later."
    code = RATE_LIMIT_EXCEEDED


class TransientStorageError(Exception):
    """Persistence stayed unavailable after bounded retries."""


def error_body(
    request: Request, status_code: int, message: str, code: str | None = None
) -> dict:
    return {
        "error": message,
        "code": code,
        "status_code": status_code,
        "request_id": getattr(request.state, "request_id", None),
    }


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI app."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(request, exc.status_code, exc.message, exc.code),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(request, exc.status_code, str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        body = error_body(request, status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation error")
        body["errors"] = jsonable_errors(exc)
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=body)

    @app.exception_handler(TransientStorageError)
    async def transient_storage_handler(request: Request, exc: TransientStorageError):
        logger.error(
            "Storage unavailable request_id=%s path=%s: %s",
            getattr(request.state, "request_id", "-"),
            request.url.path,
            exc.__cause__ or exc,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body(
                request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error"
            ),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.exception(
            "Unhandled error request_id=%s path=%s",
            getattr(request.state, "request_id", "-"),
            request.url.path,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body(
                request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error"
            ),
        )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    # ctx may hold exception instances, which are not JSON serializable
    return [
        {key: value for key, value in err.items() if key != "ctx"}
        for err in exc.errors()
    ]
