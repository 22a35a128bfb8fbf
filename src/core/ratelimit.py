"""Per-client rate limiting for consulting endpoints using Upstash Redis.

Generation calls are the expensive part of this service, so the consulting
routes depend on ``check_rate_limit``. When Upstash is not configured
(development/test) every request is allowed.
"""

from __future__ import annotations

import hashlib
import logging
import time
import uuid
from functools import lru_cache
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status

from core.config import Settings, get_settings


if TYPE_CHECKING:
    from upstash_ratelimit import Ratelimit

logger = logging.getLogger(__name__)

RATE_LIMIT_PREFIX = "ai-master-architect:ratelimit"

RATE_LIMIT_BYPASS_PATHS: set[str] = {
    "/",
    "/api/v1/health",
    "/api/v1/health/",
}


@lru_cache
def get_ratelimiter() -> Ratelimit | None:
    """Create and cache the sliding-window limiter, or None when unconfigured."""
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
        ratelimit = Ratelimit(
            redis=Redis(
                url=settings.UPSTASH_REDIS_REST_URL,
                token=settings.UPSTASH_REDIS_REST_TOKEN,
            ),
            limiter=SlidingWindow(
                max_requests=settings.RATE_LIMIT_REQUESTS,
                window=settings.RATE_LIMIT_WINDOW_SECONDS,
            ),
            prefix=RATE_LIMIT_PREFIX,
        )
    except Exception as e:
        logger.error("Failed to initialize rate limiter: %s", e)
        return None

    logger.info(
        "Rate limiting enabled: %d requests per %d seconds",
        settings.RATE_LIMIT_REQUESTS,
        settings.RATE_LIMIT_WINDOW_SECONDS,
    )
    return ratelimit


def _get_client_identifier(request: Request) -> str:
    """Identify the caller: first X-Forwarded-For hop, else the peer address.

    Unidentifiable callers get a one-off bucket so they never share a quota.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return f"unknown:{uuid.uuid4()}"


def _bucket_key(identifier: str, path: str) -> str:
    # Hash so raw client addresses never reach Redis keys
    digest = hashlib.sha256(identifier.encode("utf-8")).hexdigest()[:16]
    return f"{path}:{digest}"


def _retry_after_seconds(reset_ms: int) -> int:
    now_ms = int(time.time() * 1000)
    return max(1, (reset_ms - now_ms) // 1000)


async def check_rate_limit(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
) -> None:
    """FastAPI dependency raising 429 when the caller exhausted its window.

    Limiter failures are logged and the request is allowed through.
    """
    path = request.url.path
    if path in RATE_LIMIT_BYPASS_PATHS:
        return

    ratelimiter = get_ratelimiter()
    if ratelimiter is None:
        return

    try:
        response = ratelimiter.limit(_bucket_key(_get_client_identifier(request), path))
    except Exception as e:
        logger.error("Rate limit check failed: %s", e)
        return

    if response.allowed:
        return

    retry_after = _retry_after_seconds(response.reset)
    logger.warning(
        "Rate limit exceeded on %s. Reset in %d seconds.", path, retry_after
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
