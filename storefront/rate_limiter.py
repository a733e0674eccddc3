"""Redis-backed rate limiter."""
import logging
import time
from typing import Optional, Tuple
import redis
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from storefront.auth import decode_session_token
from storefront.monitoring import rate_limit_exceeded_counter

logger = logging.getLogger(__name__)


class RedisRateLimiter(BaseHTTPMiddleware):
    """
    Distributed rate limiter using Redis sorted sets.

    Implements dual-tier sliding window rate limiting:
    - Per IP: higher limit, since many customers can share one address
    - Per user: lower limit for authenticated sessions

    The Redis client is read from ``app.state.redis_client`` on each request.
    Requests are allowed when no client is attached or Redis is unavailable.
    """

    def __init__(
        self,
        app,
        requests_per_minute_ip: int = 1000,
        requests_per_minute_user: int = 120,
        window_seconds: int = 60
    ):
        """
        Initialize Redis-backed rate limiter.

        Args:
            app: ASGI application
            requests_per_minute_ip: Max requests per IP per window
            requests_per_minute_user: Max requests per user per window
            window_seconds: Sliding window size in seconds
        """
        super().__init__(app)
        self.requests_per_minute_ip = requests_per_minute_ip
        self.requests_per_minute_user = requests_per_minute_user
        self.window_seconds = window_seconds

    def _check_rate_limit(
        self,
        redis_client: redis.Redis,
        key: str,
        limit: int,
        window: int
    ) -> Tuple[bool, int]:
        """
        Check rate limit using Redis sorted set (sliding window).

        Algorithm:
        1. Remove timestamps older than window
        2. Count requests in window
        3. Add current request
        4. Set TTL

        Args:
            redis_client: Redis connection
            key: Redis key for this limit (e.g., "rate:ip:192.168.1.1")
            limit: Maximum requests allowed
            window: Time window in seconds

        Returns:
            Tuple of (is_allowed, current_count)
        """
        try:
            current_time = time.time()
            window_start = current_time - window

            pipe = redis_client.pipeline()
            pipe.zremrangebyscore(key, 0, window_start)
            pipe.zcard(key)
            pipe.zadd(key, {str(current_time): current_time})
            pipe.expire(key, window + 1)
            results = pipe.execute()

            # Count BEFORE adding current request
            count = results[1]
            return count < limit, count + 1

        except redis.RedisError as e:
            logger.error(f"Redis rate limit error: {e}")
            # Fail open: allow request if Redis is unavailable
            return True, 0

    def _reject(self, limit_type: str, limit: int) -> JSONResponse:
        rate_limit_exceeded_counter.add(1, {"limit_type": limit_type})
        return JSONResponse(
            status_code=429,
            content={"detail": f"Rate limit exceeded for {limit_type}. Maximum {limit} requests per minute."},
            headers={"Retry-After": str(self.window_seconds)}
        )

    @staticmethod
    def _user_id(request: Request) -> Optional[str]:
        auth_header = request.headers.get("authorization")
        if auth_header and auth_header.startswith("Bearer "):
            session = decode_session_token(auth_header.split(" ", 1)[1])
            if session is not None:
                return session.user_id
        return None

    async def dispatch(self, request: Request, call_next):
        """
        Process request with Redis-backed dual-tier rate limiting.

        Args:
            request: Incoming request
            call_next: Next middleware in chain

        Returns:
            Response or 429 if rate limited
        """
        redis_client = getattr(request.app.state, "redis_client", None)
        if redis_client is None:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        if "x-forwarded-for" in request.headers:
            client_ip = request.headers["x-forwarded-for"].split(",")[0].strip()

        ip_allowed, ip_count = self._check_rate_limit(
            redis_client,
            f"rate:ip:{client_ip}",
            self.requests_per_minute_ip,
            self.window_seconds
        )
        if not ip_allowed:
            logger.warning(
                f"Rate limit exceeded for IP {client_ip}: "
                f"{ip_count}/{self.requests_per_minute_ip} requests"
            )
            return self._reject("IP", self.requests_per_minute_ip)

        user_id = self._user_id(request)
        if user_id:
            user_allowed, user_count = self._check_rate_limit(
                redis_client,
                f"rate:user:{user_id}",
                self.requests_per_minute_user,
                self.window_seconds
            )
            if not user_allowed:
                logger.warning(
                    f"Rate limit exceeded for user {user_id}: "
                    f"{user_count}/{self.requests_per_minute_user} requests"
                )
                return self._reject("user", self.requests_per_minute_user)

        return await call_next(request)
