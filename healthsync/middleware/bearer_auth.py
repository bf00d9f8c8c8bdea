"""Static bearer-token middleware for FastAPI.

Every request except the OpenAPI document and the interactive docs must carry
``Authorization: Bearer <token>`` matching ``HEALTHSYNC_API_BEARER_TOKEN``.
Token comparison is constant-time.
"""

from __future__ import annotations

import hmac
import json
import logging
from typing import Any

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from healthsync.config import Settings, get_settings

logger = logging.getLogger("healthsync.auth")

# Paths that do not require authentication
PUBLIC_PATHS: set[str] = {
    "/health/openapi.json",
    "/health/docs",
    "/health/docs/oauth2-redirect",
}


def _is_public(path: str) -> bool:
    return path in PUBLIC_PATHS


def _error(status_code: int, message: str) -> Response:
    return Response(
        content=json.dumps({"error": message}),
        status_code=status_code,
        media_type="application/json",
    )


def token_matches(expected: str, actual: str) -> bool:
    return hmac.compare_digest(expected.encode("utf-8"), actual.encode("utf-8"))


class BearerAuthMiddleware(BaseHTTPMiddleware):
    """Reject requests whose bearer token does not match the configured one."""

    def __init__(self, app: Any, settings: Settings | None = None) -> None:
        super().__init__(app)
        self._settings = settings or get_settings()

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if _is_public(request.url.path):
            return await call_next(request)

        # OPTIONS requests pass through (CORS preflight)
        if request.method == "OPTIONS":
            return await call_next(request)

        expected = self._settings.api_bearer_token
        if not expected:
            logger.error("Rejecting %s: API bearer token is not configured", request.url.path)
            return _error(500, "API bearer token is not configured")

        auth_header = request.headers.get("Authorization")
        if not auth_header:
            return _error(401, "Missing Authorization header")

        scheme, _, token = auth_header.partition(" ")
        if scheme != "Bearer":
            return _error(401, "Authorization header must use Bearer token")

        token = token.strip()
        if not token:
            return _error(401, "Bearer token is required")

        if not token_matches(expected, token):
            logger.warning("Invalid bearer token on %s %s", request.method, request.url.path)
            return _error(403, "Invalid bearer token")

        return await call_next(request)
