"""Middleware: request ID injection, structured access logging, and the
gateway that authenticates and rate-limits every request."""

import hashlib
import logging
import time
import uuid

from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from gatekeeper.core.authenticator import AuthResult, extract_credentials
from gatekeeper.core.errors import error_response
from gatekeeper.core.logging import sanitize_for_logging

logger = logging.getLogger("gatekeeper.access")
gateway_logger = logging.getLogger("gatekeeper.auth")

API_KEY_REQUIRED_MESSAGE = (
    "API key required. Provide via Authorization: Bearer <key> or X-API-Key: <key> header"
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
            sanitize_for_logging(request.url.path),
            response.status_code,
            elapsed_ms,
        )
        return response


class GatewayMiddleware(BaseHTTPMiddleware):
    """Resolve identity, apply the rate limit, enforce credential rules.

    The database session used for authentication is closed before the
    downstream handler runs. A storage failure fails the request with 503;
    it never lets the request through. An exception from the handler
    becomes a 500 that still carries the rate-limit headers.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        services = request.app.state.services
        settings = services.settings
        authenticator = services.authenticator
        path = request.url.path.lower()
        client_host = request.client.host if request.client else None

        creds = extract_credentials(request.headers)
        try:
            async with services.session_factory() as db:
                result = await authenticator.authenticate(db, creds)
                await db.commit()
        except SQLAlchemyError:
            gateway_logger.exception("Authentication store unavailable")
            return error_response(request, 503, "Authentication service unavailable")

        request.state.identity = result.identity
        request.state.credentials = creds
        if result.identity.user_id is not None:
            request.state.user_id = str(result.identity.user_id)

        exempt = any(path.startswith(p) for p in settings.exempt_paths_list)

        decision = None
        if settings.rate_limit_enabled:
            # A bad credential on an exempt path is ignored, so it must not
            # buy a fresh bucket either; count it against the address.
            limited_as = AuthResult() if exempt and result.error is not None else result
            identifier = authenticator.rate_limit_identifier(
                limited_as, request.headers, client_host
            )
            decision = services.rate_limiter.hit(identifier)
            if not decision.allowed:
                gateway_logger.warning(
                    "Rate limit exceeded for: %s path=%s",
                    _loggable_identifier(identifier),
                    sanitize_for_logging(path),
                )
                return error_response(
                    request,
                    429,
                    decision.message,
                    headers=decision.headers,
                    retryAfter=decision.retry_after,
                )

        response = None if exempt else self._reject(request, path, result, settings)
        if response is None:
            try:
                response = await call_next(request)
            except Exception:
                gateway_logger.exception(
                    "Unhandled error on %s %s", request.method, sanitize_for_logging(path)
                )
                response = error_response(request, 500, "Internal server error")
        if decision is not None:
            response.headers.update(decision.headers)
        return response

    def _reject(self, request: Request, path: str, result: AuthResult, settings) -> Response | None:
        if result.error is not None:
            gateway_logger.warning(
                "Rejected credential for path=%s reason=%s",
                sanitize_for_logging(path),
                type(result.error).__name__,
            )
            return error_response(request, result.error.status_code, result.error.message)

        protected = settings.protected_paths_list
        requires_identity = not protected or any(path.startswith(p) for p in protected)
        if requires_identity and not result.identity.is_authenticated:
            gateway_logger.warning("Credentials missing for protected endpoint: %s", sanitize_for_logging(path))
            return error_response(request, 401, API_KEY_REQUIRED_MESSAGE)
        return None


def _loggable_identifier(identifier: str) -> str:
    # Never log even a prefix of someone's secret
    if identifier.startswith("key:"):
        return "key:***"
    return identifier


def _hash_user_id(uid: str) -> str:
    """Hash user ID for log privacy: first 12 chars of SHA-256."""
    return hashlib.sha256(str(uid).encode()).hexdigest()[:12]
