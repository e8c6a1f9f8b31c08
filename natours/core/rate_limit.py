"""Rate limiting stage for the request pipeline.

This module wires the rate limiting adapter into the HTTP layer.

Design goals:
- Minimal coupling: the stage depends on the abstract limiter only.
- Swap-friendly: storage backend can be replaced (e.g., Redis) behind an
  abstract interface.
- Scoped: only paths under the configured prefix (``/api``) are counted.

Rate limiting strategy:
- Fixed window per client address, opened by the client's first request.
- If the address is unavailable (e.g., behind an unconfigured proxy), all
  such requests share the ``ip:unknown`` identity instead of failing.
"""

from __future__ import annotations

import hashlib
import logging

from starlette.datastructures import MutableHeaders
from starlette.requests import Request

from natours.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult
from natours.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from natours.core.config import AppSettings
from natours.core.errors import RateLimitAppError
from natours.core.pipeline import CONTINUE, Fail, RequestContext, StageResult, path_in_scope

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT = "unknown"


def build_rate_limiter(app_settings: AppSettings) -> AbstractRateLimiter:
    """Create the limiter owning the per-client counters of one app."""
    return InMemoryFixedWindowRateLimiter(
        limit=app_settings.rate_limit_max,
        window_seconds=app_settings.rate_limit_window_seconds,
    )


def client_identity(request: Request, *, trust_proxy: bool = False) -> str:
    """Build the limiter key for the current request.

    Args:
        request: Incoming request.
        trust_proxy: Use the first ``X-Forwarded-For`` hop when present.

    Returns:
        str: Namespaced limiter key.
    """

    if trust_proxy:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return f"ip:{first_hop}"

    client_host = request.client.host if request.client and request.client.host else UNKNOWN_CLIENT
    return f"ip:{client_host}"


def _hash_limiter_key(key: str) -> str:
    """Hash the rate limit key for logging without exposing client addresses."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


class RateLimitStage:
    """Count requests per client and reject the ones over the limit.

    When the limit is exceeded the stage fails with a 429 ``RateLimitAppError``
    carrying the configured message; the request never reaches the routers.
    """

    name = "rate_limit"

    def __init__(self, limiter: AbstractRateLimiter, app_settings: AppSettings) -> None:
        self.limiter = limiter
        self.enabled = app_settings.rate_limit_enabled
        self.prefix = app_settings.rate_limit_prefix
        self.message = app_settings.rate_limit_message
        self.include_headers = app_settings.rate_limit_include_headers
        self.trust_proxy = app_settings.trust_proxy
        self.window_ms = app_settings.rate_limit_window_ms

    async def __call__(self, ctx: RequestContext) -> StageResult:
        if not self.enabled or not path_in_scope(ctx.path, self.prefix):
            return CONTINUE

        key = client_identity(ctx.request, trust_proxy=self.trust_proxy)
        result = self.limiter.consume(key)

        if self.include_headers:
            ctx.on_response_start(lambda headers, status_code: _add_limit_headers(headers, result))

        if result.allowed:
            logger.debug(
                "rate_limit.allowed",
                extra={
                    "key_hash": _hash_limiter_key(key),
                    "limit": result.limit,
                    "remaining": result.remaining,
                    "window_ms": self.window_ms,
                },
            )
            return CONTINUE

        retry_after = result.retry_after_seconds or 0
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "key_hash": _hash_limiter_key(key),
                "limit": result.limit,
                "window_ms": self.window_ms,
                "retry_after_s": retry_after,
            },
        )
        return Fail(
            RateLimitAppError(
                message=self.message,
                details={"limit": result.limit, "retry_after": retry_after},
            )
        )


def _add_limit_headers(headers: MutableHeaders, result: RateLimitResult) -> None:
    headers["X-RateLimit-Limit"] = str(result.limit)
    headers["X-RateLimit-Remaining"] = str(result.remaining)
    headers["X-RateLimit-Reset"] = str(result.reset_at)
    if not result.allowed and result.retry_after_seconds is not None:
        headers["Retry-After"] = str(result.retry_after_seconds)
