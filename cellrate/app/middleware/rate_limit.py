"""Rate limiting middleware for ASGI applications.

Applies a Limiter per client: the hashed bearer API key when one is sent,
otherwise the hashed client IP. A store failure yields 503 rather than
letting the request through or rejecting it as rate limited.
"""

import hashlib
import math
from typing import Callable, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from cellrate.app.core.config import settings
from cellrate.app.core.logging import get_log_context, get_logger
from cellrate.app.services.gcra import Limiter, Result, get_limiter

logger = get_logger(__name__)

MAX_API_KEY_LENGTH = 512


def _rate_headers(result: Result) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(result.limit.burst),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(math.ceil(result.reset_after)),
    }
    if result.limited:
        headers["Retry-After"] = str(max(1, math.ceil(result.retry_after)))
    return headers


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce rate limits on requests.

    Rate limits are applied per API key if available, otherwise per IP.
    The limit for a client comes from the limiter's configuration, so
    per-key overrides apply to the derived client keys.
    """

    def __init__(
        self,
        app,
        limiter: Optional[Limiter] = None,
        key_func: Optional[Callable[[Request], str]] = None,
        trust_forwarded_for: Optional[bool] = None,
    ):
        super().__init__(app)
        if trust_forwarded_for is None:
            trust_forwarded_for = settings.rate_limit_trust_forwarded_for
        self._trust_forwarded_for = trust_forwarded_for
        self._limiter = limiter
        self._key_func = key_func or self._get_client_key

    @property
    def limiter(self) -> Limiter:
        if self._limiter is None:
            self._limiter = get_limiter()
        return self._limiter

    def _get_client_key(self, request: Request) -> str:
        """Get rate limit key for the request.

        Uses API key if available, otherwise falls back to IP address.
        The first X-Forwarded-For entry replaces the peer address only when
        trust_forwarded_for is set.
        Both are hashed with SHA-256 so raw keys and addresses never reach
        the store.

        Args:
            request: Incoming request

        Returns:
            Rate limit key string
        """
        auth = request.headers.get("Authorization", "")
        if auth.startswith("Bearer "):
            api_key = auth[7:].strip()
            key_hash = hashlib.sha256(api_key.encode()).hexdigest()[:32]
            return f"apikey:{key_hash}"

        forwarded = request.headers.get("X-Forwarded-For") if self._trust_forwarded_for else None
        if forwarded:
            client_ip = forwarded.split(",")[0].strip()
        else:
            client_ip = request.client.host if request.client else "unknown"

        ip_hash = hashlib.sha256(client_ip.encode()).hexdigest()[:32]
        return f"ip:{ip_hash}"

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting."""
        auth = request.headers.get("Authorization", "")
        if auth.startswith("Bearer ") and len(auth) - 7 > MAX_API_KEY_LENGTH:
            return JSONResponse(
                status_code=400,
                content={"detail": f"API key too long (max {MAX_API_KEY_LENGTH} characters)"},
            )

        key = self._key_func(request)
        try:
            result = await self.limiter.allow(key)
        except Exception as e:
            logger.error(
                f"Rate limit check failed: {e!r}",
                extra=get_log_context(key=key, path=request.url.path, method=request.method),
            )
            return JSONResponse(
                status_code=503,
                content={
                    "error": "rate_limiter_unavailable",
                    "message": "Rate limit state could not be checked. Please try again later.",
                },
            )

        headers = _rate_headers(result)
        if result.allowed == 0:
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": "Rate limit exceeded. Please try again later.",
                    "retry_after": result.retry_after,
                },
                headers=headers,
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response
