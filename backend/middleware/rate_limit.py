"""
Rate Limiting Middleware

Redis-backed sliding window rate limiter.
General endpoints: 100 req/min per IP.
Auth endpoints: 10 req/min per IP.
"""

import logging
import time

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from backend.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

# Rate limit defaults
GENERAL_LIMIT = 100  # requests per minute
AUTH_LIMIT = 10  # requests per minute for auth endpoints
WINDOW_SECONDS = 60


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding window rate limiter using Redis."""

    def __init__(self, app):
        super().__init__(app)
        self._redis = None

    def _get_redis(self):
        """Lazy-init Redis client. Connections open on first command."""
        if self._redis is None:
            import redis.asyncio as aioredis

            self._redis = aioredis.from_url(
                settings.redis_url,
                decode_responses=True,
            )
        return self._redis

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if not settings.rate_limit_enabled or request.url.path.startswith("/health"):
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        path = request.url.path

        is_auth = "/auth/" in path or path.endswith("/auth")
        limit = AUTH_LIMIT if is_auth else GENERAL_LIMIT
        prefix = "rl:auth" if is_auth else "rl:general"
        key = f"{prefix}:{client_ip}"

        try:
            now = time.time()
            window_start = now - WINDOW_SECONDS

            pipe = self._get_redis().pipeline()
            # Remove old entries outside the window
            pipe.zremrangebyscore(key, 0, window_start)
            # Count current entries
            pipe.zcard(key)
            # Add this request
            pipe.zadd(key, {str(now): now})
            # Set expiry on the key
            pipe.expire(key, WINDOW_SECONDS + 1)
            results = await pipe.execute()
        except (RedisError, OSError):
            logger.warning("Rate limiter unavailable, allowing request", exc_info=True)
            return await call_next(request)

        request_count = results[1]
        if request_count >= limit:
            logger.warning(f"Rate limit exceeded for {client_ip} on {path}")
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded"},
                headers={"Retry-After": str(WINDOW_SECONDS)},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(max(0, limit - request_count - 1))
        return response
