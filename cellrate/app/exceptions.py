"""Custom exceptions for the limiter.

Transport failures from the Redis client are not wrapped: they reach the
caller as the client raised them.
"""


class RateLimitError(Exception):
    """Base class for limiter exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500

    def __init__(self, message: str = "Rate limiter error"):
        self.message = message
        super().__init__(message)


class InvalidLimitError(RateLimitError, ValueError):
    """Raised when a limit has a non-positive rate, burst or period.

    Raised at configuration time so a bad limit never reaches the store.
    """
    status_code = 500

    def __init__(self, detail: str = "Invalid rate limit"):
        self.detail = detail
        super().__init__(detail)


class MalformedResultError(RateLimitError):
    """Raised when the store returns a result the limiter cannot parse.

    This is a contract violation between the limiter and its store and is
    never interpreted as an allow or a deny.
    """
    status_code = 502

    def __init__(self, result: object = None, detail: str | None = None):
        self.result = result
        message = detail or f"Malformed rate limit result from store: {result!r}"
        super().__init__(message)
