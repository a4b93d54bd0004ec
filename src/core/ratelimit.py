"""Rate limiting for generation endpoints using Upstash Redis.

Provides distributed sliding-window rate limiting backed by Upstash's
serverless Redis service. Requests are bucketed per authenticated user when
a valid bearer token is present, otherwise per client IP. Falls back to
allowing requests if Upstash is not configured (development/test).
"""

from __future__ import annotations

import logging
import time
import uuid
from functools import lru_cache
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status

from core.config import Settings, get_settings
from core.exceptions import UnauthenticatedError
from core.security import decode_token


if TYPE_CHECKING:
    from upstash_ratelimit import Ratelimit

logger = logging.getLogger(__name__)

# Paths that bypass rate limiting (health checks, etc.)
RATE_LIMIT_BYPASS_PATHS: set[str] = {
    "/api/v1/health",
    "/api/v1/health/",
}


@lru_cache
def get_ratelimiter() -> Ratelimit | None:
    """Create and cache the rate limiter instance.

    Returns None if Upstash is not configured, allowing the application
    to run without rate limiting in development/test environments.
    """
    from upstash_ratelimit import Ratelimit, SlidingWindow
    from upstash_redis import Redis

    settings = get_settings()

    if not settings.UPSTASH_REDIS_REST_URL or not settings.UPSTASH_REDIS_REST_TOKEN:
        logger.warning(
            "Upstash Redis not configured. Rate limiting is disabled. "
            "Set UPSTASH_REDIS_REST_URL and UPSTASH_REDIS_REST_TOKEN to enable."
        )
        return None

    try:
        redis = Redis(
            url=settings.UPSTASH_REDIS_REST_URL,
            token=settings.UPSTASH_REDIS_REST_TOKEN,
        )
        ratelimit = Ratelimit(
            redis=redis,
            limiter=SlidingWindow(
                max_requests=settings.RATE_LIMIT_REQUESTS,
                window=settings.RATE_LIMIT_WINDOW_SECONDS,
            ),
            prefix="prepstream:ratelimit",
        )
        logger.info(
            "Rate limiting enabled: %d requests per %d seconds",
            settings.RATE_LIMIT_REQUESTS,
            settings.RATE_LIMIT_WINDOW_SECONDS,
        )
        return ratelimit
    except Exception as e:
        logger.error("Failed to initialize rate limiter: %s", e)
        return None


def _get_client_identifier(request: Request) -> str:
    """Extract the rate-limit bucket for a request.

    Prefers the authenticated subject so users behind one NAT do not share a
    bucket; otherwise uses X-Forwarded-For (reverse proxies) or the direct
    client IP.
    """
    authorization = request.headers.get("Authorization")
    if authorization and authorization.lower().startswith("bearer "):
        try:
            token_data = decode_token(authorization[7:].strip())
        except UnauthenticatedError:
            token_data = None
        if token_data is not None and token_data.sub:
            return f"user:{token_data.sub}"

    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain (original client)
        return forwarded_for.split(",")[0].strip()

    if request.client and request.client.host:
        return request.client.host

    # Unidentifiable clients each get their own bucket
    return f"unknown:{uuid.uuid4()}"


async def check_rate_limit(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
) -> None:
    """FastAPI dependency to enforce rate limits on endpoints.

    Raises HTTPException with 429 status if rate limit is exceeded.
    Bypasses rate limiting for health check endpoints and when
    Upstash is not configured.

    Usage:
        @router.post("/generate", dependencies=[Depends(check_rate_limit)])
        async def generate(...): ...
    """
    path = request.url.path
    if path in RATE_LIMIT_BYPASS_PATHS:
        return

    ratelimiter = get_ratelimiter()
    if ratelimiter is None:
        return

    identifier = _get_client_identifier(request)

    try:
        response = ratelimiter.limit(identifier)

        if not response.allowed:
            current_time_ms = int(time.time() * 1000)
            retry_after = max(1, (response.reset - current_time_ms) // 1000)
            logger.warning(
                "Rate limit exceeded for %s on %s. Reset in %d seconds.",
                identifier,
                path,
                retry_after,
            )
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests. Please try again later.",
                headers={
                    "Retry-After": str(retry_after),
                    "X-RateLimit-Limit": str(settings.RATE_LIMIT_REQUESTS),
                    "X-RateLimit-Remaining": str(response.remaining),
                },
            )
    except HTTPException:
        raise
    except Exception as e:
        # Log but don't block requests if rate limiting fails
        logger.error("Rate limit check failed: %s", e)
