"""
Error taxonomy for the auth core.

Every class is an ``HTTPException`` with a fixed status code so services
and dependencies can raise them directly, exactly like a plain
``HTTPException``.  The handlers at the bottom are registered by
``create_app`` and shape the JSON body:

    {"detail": "...", "retryAfter": 42}    # retryAfter only on 423 / 429

Unexpected exceptions never reach the client as a stack trace.  They are
logged and converted to a generic 500 (or 503 when the database is
unreachable).
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import InterfaceError, OperationalError

logger = logging.getLogger(__name__)


class AuthError(HTTPException):
    """Base class — subclasses pin the status code."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        detail: str,
        *,
        retry_after: int | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        headers = dict(headers or {})
        if retry_after is not None:
            headers["Retry-After"] = str(retry_after)
        super().__init__(status_code=self.status_code, detail=detail, headers=headers or None)
        self.retry_after = retry_after


class ValidationError(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidCredentials(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, detail: str = "Invalid credentials") -> None:
        super().__init__(detail)


class Unauthenticated(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, detail: str) -> None:
        super().__init__(detail, headers={"WWW-Authenticate": "Bearer"})


class Forbidden(AuthError):
    status_code = status.HTTP_403_FORBIDDEN


class InvalidToken(Forbidden):
    pass


class AccountLocked(AuthError):
    status_code = status.HTTP_423_LOCKED

    def __init__(self, retry_after: int) -> None:
        super().__init__(
            f"Account temporarily locked. Try again in {retry_after} seconds.",
            retry_after=retry_after,
        )


class TooManyAttempts(AuthError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, retry_after: int) -> None:
        super().__init__(
            f"Too many login attempts. Try again in {retry_after} seconds.",
            retry_after=retry_after,
        )


class ServiceUnavailable(AuthError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, detail: str = "Database connection failed") -> None:
        super().__init__(detail)


# ── Handlers ─────────────────────────────────────────────────────────


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    body: dict = {"detail": exc.detail}
    if exc.retry_after is not None:
        body["retryAfter"] = exc.retry_after
    return JSONResponse(status_code=exc.status_code, content=body, headers=exc.headers)


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed bodies are a 400, naming the first offending field."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body") or "body"
        detail = f"{field}: {first.get('msg', 'invalid value')}"
    else:
        detail = "Invalid request body"
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": detail})


async def database_unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Database unreachable during %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Service temporarily unavailable"},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error during %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


def register_exception_handlers(app) -> None:
    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(OperationalError, database_unavailable_handler)
    app.add_exception_handler(InterfaceError, database_unavailable_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
