"""ASGI middleware for the limiter."""

from cellrate.app.middleware.rate_limit import RateLimitMiddleware

__all__ = ["RateLimitMiddleware"]
