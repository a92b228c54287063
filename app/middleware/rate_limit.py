"""
Redis-backed fixed-window rate limiter middleware.

Shared across instances when Redis is configured; a no-op otherwise (the
slowapi decorators on the generation routes still apply per process).
"""
import hashlib
import time

import redis.asyncio as aioredis
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from app.services.redis_client import get_redis
from app.utils.logger import get_logger

logger = get_logger("rate_limit")

# Requests per window
AUTHENTICATED_LIMIT = 200
ANONYMOUS_LIMIT = 60
WINDOW_SECONDS = 60

EXEMPT_PATHS = frozenset({"/health", "/metrics", "/"})


def _identity(request: Request):
    authorization = request.headers.get("authorization")
    if authorization:
        digest = hashlib.sha256(authorization.encode("utf-8")).hexdigest()[:32]
        return f"seriouspeople:rl:session:{digest}", AUTHENTICATED_LIMIT
    client_ip = request.client.host if request.client else "unknown"
    return f"seriouspeople:rl:ip:{client_ip}", ANONYMOUS_LIMIT


class RedisRateLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if request.url.path in EXEMPT_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        r = get_redis()
        if r is None:
            return await call_next(request)

        key, limit = _identity(request)
        now = int(time.time())
        window_key = f"{key}:{now // WINDOW_SECONDS}"
        try:
            pipe = r.pipeline(transaction=True)
            pipe.incr(window_key)
            pipe.expire(window_key, WINDOW_SECONDS + 1)
            current_count = (await pipe.execute())[0]
        except (aioredis.RedisError, OSError) as exc:
            logger.debug("rate_limit.redis_error", extra={"error": str(exc)})
            return await call_next(request)

        reset = str(((now // WINDOW_SECONDS) + 1) * WINDOW_SECONDS)
        if current_count > limit:
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded. Try again shortly."},
                headers={
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": reset,
                    "Retry-After": str(WINDOW_SECONDS),
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(max(0, limit - current_count))
        response.headers["X-RateLimit-Reset"] = reset
        return response
