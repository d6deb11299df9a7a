"""
Fixed-window rate limiter for the Commerce service.
"""

import time
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from shared.errors import RateLimitError
from shared.logging import get_logger, get_request_id
from shared.metrics import MetricsCollector
from ..cache.redis_cache import RedisCache


class FixedWindowRateLimiter:
    """Distributed fixed-window request counter using Redis INCR."""

    def __init__(self, cache: RedisCache, max_requests: int = 100, window_seconds: int = 900,
                 clock=time.time):
        self.cache = cache
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self.logger = get_logger("commerce.rate_limiter")

    def _make_key(self, client_id: str, window: int) -> str:
        """Generate rate limit key."""
        return f"rate_limit:{client_id}:{window}"

    def _allow(self, reset_in: int, error: Optional[str] = None) -> Dict[str, Any]:
        result = {
            "allowed": True,
            "current_count": 0,
            "limit": self.max_requests,
            "remaining": self.max_requests,
            "reset_in_seconds": reset_in,
        }
        if error:
            result["error"] = error
        return result

    async def check_rate_limit(self, client_id: str) -> Dict[str, Any]:
        """Count one request for ``client_id`` in the current window."""
        now = self.clock()
        window = int(now // self.window_seconds)
        reset_in = max(1, int((window + 1) * self.window_seconds - now))

        redis_client = self.cache.client
        if redis_client is None:
            return self._allow(reset_in, "Redis unavailable")

        key = self._make_key(client_id, window)
        try:
            current_count = await redis_client.incr(key)
            if current_count == 1:
                await redis_client.expire(key, self.window_seconds)
        except Exception as e:
            self.logger.error("Rate limit check error", client_id=client_id, error=str(e))
            return self._allow(reset_in, str(e))

        return {
            "allowed": current_count <= self.max_requests,
            "current_count": current_count,
            "limit": self.max_requests,
            "remaining": max(0, self.max_requests - current_count),
            "reset_in_seconds": reset_in,
        }


class RateLimitMiddleware:
    """Applies the limiter to ``/api`` requests, keyed by client IP."""

    def __init__(self, rate_limiter: FixedWindowRateLimiter, metrics: Optional[MetricsCollector] = None,
                 path_prefix: str = "/api/"):
        self.rate_limiter = rate_limiter
        self.metrics = metrics
        self.path_prefix = path_prefix
        self.logger = get_logger("commerce.rate_limit_middleware")

    def applies_to(self, request: Request) -> bool:
        return request.url.path.startswith(self.path_prefix)

    async def check_request(self, request: Request) -> Dict[str, Any]:
        """Check rate limit for request."""
        return await self.rate_limiter.check_rate_limit(self._get_client_id(request))

    async def dispatch(self, request: Request, call_next):
        if not self.applies_to(request):
            return await call_next(request)

        result = await self.check_request(request)
        headers = {
            "X-RateLimit-Limit": str(result["limit"]),
            "X-RateLimit-Remaining": str(result["remaining"]),
            "X-RateLimit-Reset": str(result["reset_in_seconds"]),
        }

        if not result["allowed"]:
            self.logger.warning(
                "Rate limit exceeded",
                client_id=self._get_client_id(request),
                path=request.url.path,
                count=result["current_count"]
            )
            if self.metrics:
                self.metrics.increment_counter("rate_limit_hits_total", endpoint=request.url.path)
            body = RateLimitError().to_response(get_request_id()).model_dump(exclude_none=True)
            headers["Retry-After"] = str(result["reset_in_seconds"])
            return JSONResponse(status_code=429, content=body, headers=headers)

        response = await call_next(request)
        response.headers.update(headers)
        return response

    def _get_client_id(self, request: Request) -> str:
        """Extract client ID from request."""
        forwarded_for = request.headers.get('X-Forwarded-For')
        if forwarded_for:
            return forwarded_for.split(',')[0].strip()

        real_ip = request.headers.get('X-Real-IP')
        if real_ip:
            return real_ip

        return request.client.host if request.client else 'unknown'
