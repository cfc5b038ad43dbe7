"""Error taxonomy and structured JSON error responses.

Every auth failure is a GatekeeperError carrying the HTTP status and the
user-facing message. Handlers render them as ``{success: false, message}``
plus the request id; nothing internal leaks into the body.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("gatekeeper")


class GatekeeperError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    message: str = "Request failed"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class MissingField(GatekeeperError):
    message = "Required field missing"


class DuplicateIdentity(GatekeeperError):
    status_code = status.HTTP_409_CONFLICT
    message = "User already exists"


class WeakPassword(GatekeeperError):
    message = "Password is too short"


class InvalidCredentials(GatekeeperError):
    """Unknown user, wrong password, or a malformed credential. Always generic."""

    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Invalid username or password"


class SessionNotFound(GatekeeperError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Invalid session"


class SessionExpired(GatekeeperError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Session expired"


class InvalidApiKey(GatekeeperError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Invalid API key"


class RevokedApiKey(GatekeeperError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "API key has been revoked"


class ExpiredApiKey(GatekeeperError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "API key has expired"


class MissingKeyName(GatekeeperError):
    message = "API key name is required"


class KeyNotFound(GatekeeperError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "API key not found"


class KeyAlreadyRevoked(GatekeeperError):
    status_code = status.HTTP_409_CONFLICT
    message = "API key already revoked"


class UnknownUser(GatekeeperError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "User not found"


class AuthenticationRequired(GatekeeperError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Authorization token required"


class Forbidden(GatekeeperError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "Admin privileges required"


def error_body(request: Request, status_code: int, message: str, **extra) -> dict:
    body = {
        "success": False,
        "status_code": status_code,
        "message": message,
        "request_id": getattr(request.state, "request_id", None),
    }
    body.update(extra)
    return body


def error_response(
    request: Request,
    status_code: int,
    message: str,
    *,
    headers: dict[str, str] | None = None,
    **extra,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_body(request, status_code, message, **extra),
        headers=headers,
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI app."""

    @app.exception_handler(GatekeeperError)
    async def gatekeeper_error_handler(request: Request, exc: GatekeeperError):
        return error_response(request, exc.status_code, exc.message)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return error_response(request, exc.status_code, str(exc.detail), headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return error_response(
            request,
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "Validation error",
            errors=jsonable_encoder(exc.errors()),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return error_response(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Internal server error",
        )
