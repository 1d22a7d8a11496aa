"""Rate limiting middleware for the HTTP layer.

Every request is gated by ``RateLimiter.admit`` before it reaches a route.
The admission key defaults to the client address; a ``key_func`` (for
example ``api_key_or_address``) may scope limits differently, falling back to
the address whenever it yields an empty key.

Rejections return 429::

    {"error": "rate_limit_exceeded",
     "message": "Too many requests, please try again later",
     "retry_after": 60}
"""

from __future__ import annotations

import hashlib
import logging
from typing import Callable

from fastapi import Request, status
from fastapi.responses import JSONResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from shortlink.rate_limiter import RateLimiter

__all__ = [
    "KeyFunc",
    "RateLimitMiddleware",
    "api_key_or_address",
    "client_address",
    "rate_limit_exceeded_response",
    "resolve_key",
]

logger = logging.getLogger(__name__)

KeyFunc = Callable[[Request], str]


def client_address(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def api_key_or_address(request: Request) -> str:
    """Key requests by their API key; empty when none was sent."""
    return request.headers.get("X-API-Key") or request.query_params.get("api_key") or ""


def _hash_limiter_key(key: str) -> str:
    """Hash the rate limit key for logging without exposing secrets."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def resolve_key(request: Request, key_func: KeyFunc | None = None) -> str:
    key = key_func(request) if key_func is not None else ""
    return key or client_address(request)


def rate_limit_exceeded_response(limiter: RateLimiter) -> JSONResponse:
    retry_after = limiter.retry_after_seconds
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "error": "rate_limit_exceeded",
            "message": "Too many requests, please try again later",
            "retry_after": retry_after,
        },
        headers={"Retry-After": str(retry_after)},
    )


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, limiter: RateLimiter, key_func: KeyFunc | None = None) -> None:
        super().__init__(app)
        self.limiter = limiter
        self.key_func = key_func

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        key = resolve_key(request, self.key_func)
        if self.limiter.admit(key):
            return await call_next(request)

        logger.warning(
            "rate_limit.exceeded",
            extra={
                "key_hash": _hash_limiter_key(key),
                "path": request.url.path,
                "retry_after_s": self.limiter.retry_after_seconds,
            },
        )
        return rate_limit_exceeded_response(self.limiter)
