"""Request context stages: correlation id, access logging and request time.

These stages never short-circuit. They attach per-request data to the
pipeline context and register hooks that run when the response starts or
when the request is finished.

- ``RequestIdStage`` accepts an incoming X-Request-ID header or generates a
  UUID, stores it in contextvars for log correlation and echoes it (with the
  total duration) in the response headers.
- ``RequestLoggerStage`` writes one access line per request in development.
- ``RequestTimeStage`` stamps ``request.state.request_time``.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from starlette.datastructures import MutableHeaders

from natours.core.logging import clear_request_id, set_request_id
from natours.core.pipeline import CONTINUE, RequestContext, StageResult

access_logger = logging.getLogger("natours.access")


class RequestIdStage:
    """Request ID generation and propagation.

    If the client provides the configured header (X-Request-ID by default),
    that value is used. Otherwise, a new UUID is generated. The ID is stored
    in contextvars so every log line of the request carries it, and is
    cleared once the request is finished to prevent context leaks.

    Example:
        >>> # Request arrives with custom ID
        >>> # Headers: {"X-Request-ID": "req-abc-123"}
        >>> # Response includes:
        >>> # {"X-Request-ID": "req-abc-123", "X-Request-Duration-ms": "45.67"}
    """

    name = "request_id"

    def __init__(self, header_name: str = "X-Request-ID") -> None:
        self.header_name = header_name

    async def __call__(self, ctx: RequestContext) -> StageResult:
        request_id = ctx.request.headers.get(self.header_name) or str(uuid.uuid4())
        set_request_id(request_id)
        ctx.state["request_id"] = request_id

        def add_headers(headers: MutableHeaders, status_code: int) -> None:
            headers[self.header_name] = request_id
            headers.setdefault("X-Request-Duration-ms", f"{ctx.elapsed_ms:.2f}")

        ctx.on_response_start(add_headers)
        ctx.on_complete(lambda status_code: clear_request_id())
        return CONTINUE


class RequestLoggerStage:
    """Development access log: ``GET /api/v1/tours 200 3.21 ms``.

    Disabled stages are a no-op so the pipeline order stays the same in every
    environment.
    """

    name = "request_logger"

    def __init__(self, *, enabled: bool) -> None:
        self.enabled = enabled

    async def __call__(self, ctx: RequestContext) -> StageResult:
        if not self.enabled:
            return CONTINUE

        def log_request(status_code: int | None) -> None:
            duration_ms = ctx.elapsed_ms
            access_logger.info(
                "%s %s %s %.2f ms",
                ctx.method,
                ctx.request.url.path,
                status_code if status_code is not None else "-",
                duration_ms,
                extra={
                    "method": ctx.method,
                    "path": ctx.request.url.path,
                    "status_code": status_code,
                    "duration_ms": round(duration_ms, 2),
                },
            )

        ctx.on_complete(log_request)
        return CONTINUE


class RequestTimeStage:
    """Stamp the ISO-8601 UTC arrival time on ``request.state.request_time``."""

    name = "request_time"

    async def __call__(self, ctx: RequestContext) -> StageResult:
        ctx.state["request_time"] = datetime.now(timezone.utc).isoformat()
        return CONTINUE
