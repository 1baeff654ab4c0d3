"""Rate limiting for the public HTTP endpoints using slowapi.

Only the OAuth callback is exposed to unauthenticated traffic, and every hit
on it costs a token endpoint round trip, so it is throttled per client address.
Limits are kept in process memory, which fits the single-process model.
"""

from fastapi import Request
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

CALLBACK_RATE_LIMIT = "10/minute"
RETRY_AFTER_SECONDS = 60

limiter = Limiter(key_func=get_remote_address)


def rate_limit_exceeded_handler(request: Request, exc: Exception) -> JSONResponse:
    limit = exc.detail if isinstance(exc, RateLimitExceeded) else None
    logger.warning(
        "Callback rate limit exceeded",
        extra={"path": request.url.path, "client": get_remote_address(request), "limit": limit},
    )
    return JSONResponse(
        status_code=429,
        content={"detail": "Too many requests. Please try again later."},
        headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
    )
