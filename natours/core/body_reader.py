"""Bounded JSON body reader for the request pipeline.

Reads JSON request bodies in chunks while enforcing the configured byte
limit, so oversized payloads are rejected before they are buffered or reach
a router. Requests without a JSON content type keep an empty ``{}`` body and
their stream is left untouched for the routed app.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from starlette.requests import ClientDisconnect

from natours.core.errors import PayloadTooLargeAppError, ValidationAppError
from natours.core.pipeline import CONTINUE, Fail, RequestContext, StageResult

logger = logging.getLogger(__name__)


def is_json_content_type(content_type: str | None) -> bool:
    """Return True for ``application/json`` and ``application/*+json`` types."""
    if not content_type:
        return False
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == "application/json" or (
        media_type.startswith("application/") and media_type.endswith("+json")
    )


MAX_JSON_DEPTH = 32


def json_depth(value: Any) -> int:
    """Return the container nesting depth of a decoded JSON value.

    Scalars have depth 0, ``{}`` and ``[]`` depth 1. Walks the value with an
    explicit stack so arbitrarily deep input cannot exhaust the call stack.
    """
    deepest = 0
    stack: list[tuple[Any, int]] = [(value, 0)]
    while stack:
        item, depth = stack.pop()
        if isinstance(item, dict):
            children = item.values()
        elif isinstance(item, list):
            children = item
        else:
            continue
        depth += 1
        deepest = max(deepest, depth)
        stack.extend((child, depth) for child in children)
    return deepest


def decode_json_body(raw: bytes, *, max_depth: int = MAX_JSON_DEPTH) -> Any:
    """Decode a JSON body, accepting only objects and arrays at the top level.

    Raises:
        ValidationAppError: If the payload is not valid UTF-8 JSON, nests
            containers deeper than ``max_depth`` or its top-level value is not
            an object or an array.
    """
    if not raw.strip():
        return {}
    try:
        value = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationAppError(
            message="Invalid JSON payload. Please check the request body.",
            code="invalid_json",
            details={"hint": str(exc)},
        ) from exc
    except RecursionError as exc:
        raise _too_deep(max_depth) from exc
    if not isinstance(value, (dict, list)):
        raise ValidationAppError(
            message="Invalid JSON payload. Expected an object or an array.",
            code="invalid_json",
        )
    if json_depth(value) > max_depth:
        raise _too_deep(max_depth)
    return value


def _too_deep(max_depth: int) -> ValidationAppError:
    return ValidationAppError(
        message=f"Invalid JSON payload. Nesting deeper than {max_depth} levels.",
        code="json_too_deep",
        details={"limit": max_depth},
    )


class BodyReaderStage:
    """Parse JSON bodies up to ``limit_bytes``.

    Oversized payloads fail with a 413 ``PayloadTooLargeAppError`` and malformed
    ones with a 400 ``ValidationAppError``; both are operational.
    """

    name = "body_reader"

    def __init__(self, limit_bytes: int) -> None:
        self.limit_bytes = limit_bytes

    def _too_large(self, size: int) -> Fail:
        logger.warning(
            "body_reader.rejected",
            extra={"size": size, "limit_bytes": self.limit_bytes},
        )
        return Fail(
            PayloadTooLargeAppError(
                message=f"Request body too large. Maximum size: {self.limit_bytes} bytes",
                details={"limit": self.limit_bytes, "actual_value": size},
            )
        )

    async def __call__(self, ctx: RequestContext) -> StageResult:
        request = ctx.request
        if not is_json_content_type(request.headers.get("content-type")):
            return CONTINUE

        # Check size from headers if available
        content_length = request.headers.get("content-length")
        if content_length is not None:
            try:
                declared = int(content_length)
            except ValueError:
                return Fail(
                    ValidationAppError(
                        message="Invalid Content-Length header.",
                        code="invalid_content_length",
                    )
                )
            if declared > self.limit_bytes:
                return self._too_large(declared)

        # Chunked reading with secondary enforcement
        size = 0
        chunks: list[bytes] = []
        try:
            async for chunk in request.stream():
                size += len(chunk)
                if size > self.limit_bytes:
                    return self._too_large(size)
                chunks.append(chunk)
        except ClientDisconnect:
            logger.info("body_reader.client_disconnected", extra={"size": size})
            return Fail(
                ValidationAppError(message="Request aborted.", code="request_aborted")
            )

        raw = b"".join(chunks)
        try:
            ctx.body = decode_json_body(raw)
        except ValidationAppError as exc:
            return Fail(exc)
        ctx.body_consumed = True
        ctx.body_empty = not raw.strip()
        return CONTINUE
