"""Ordered request pipeline in front of the routed FastAPI app.

Every HTTP request runs through a fixed list of stages before it reaches the
routers. A stage is an async callable taking the request-scoped
``RequestContext`` and returning one of:

- ``Continue()``: hand the request to the next stage;
- ``Respond(response)``: stop here and send ``response``;
- ``Fail(error)``: stop here and let the global error handler render
  ``error``.

Exceptions raised by a stage are treated as ``Fail``. Exceptions raised by
the routed app are rendered the same way as long as no response has started.

Usage:
    app.add_middleware(RequestPipeline, stages=[...], error_renderer=renderer)
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol, Sequence

from starlette.datastructures import MutableHeaders
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from natours.core.errors import AppError
from natours.utils.query_parser import encode_query, parse_query_string

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Continue:
    """Hand the request to the next stage."""


@dataclass(frozen=True)
class Respond:
    """Terminate the chain with a ready response."""

    response: Response


@dataclass(frozen=True)
class Fail:
    """Terminate the chain by forwarding an error to the error handler."""

    error: BaseException


StageResult = Continue | Respond | Fail

CONTINUE = Continue()

ErrorRenderer = Callable[[Request, BaseException], Response]
ResponseStartHook = Callable[[MutableHeaders, int], None]
CompletionHook = Callable[[int | None], None]


def path_in_scope(path: str, prefix: str) -> bool:
    """Return True when ``path`` is ``prefix`` or lies below it."""
    prefix = prefix.rstrip("/")
    return path == prefix or path.startswith(prefix + "/")


class Stage(Protocol):
    name: str

    def __call__(self, ctx: "RequestContext") -> Awaitable[StageResult]: ...


class RequestContext:
    """Request-scoped state shared by the pipeline stages.

    Attributes:
        scope: ASGI scope of the request (mutated on commit).
        request: Starlette request over the original receive channel.
        query: Parsed, nested query parameters.
        body: Parsed JSON body (``{}`` when there is none).
        body_consumed: True once the body reader read the request stream.
        body_empty: True when the consumed stream held no payload.
        started_at: ``time.perf_counter()`` when the request entered the chain.
    """

    def __init__(self, scope: Scope, receive: Receive) -> None:
        self.scope = scope
        self.receive = receive
        self.request = Request(scope, receive)
        self.started_at = time.perf_counter()
        self.query: dict[str, Any] = parse_query_string(scope.get("query_string", b""))
        self.body: Any = {}
        self.body_consumed = False
        self.body_empty = True
        self._default_headers: dict[str, str] = {}
        self._start_hooks: list[ResponseStartHook] = []
        self._completion_hooks: list[CompletionHook] = []

    @property
    def method(self) -> str:
        return self.scope["method"]

    @property
    def path(self) -> str:
        return self.scope["path"]

    @property
    def state(self) -> dict[str, Any]:
        return self.scope.setdefault("state", {})

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started_at) * 1000

    def set_default_header(self, name: str, value: str) -> None:
        """Add ``name`` to the response unless the handler already set it."""
        self._default_headers[name] = value

    def on_response_start(self, hook: ResponseStartHook) -> None:
        self._start_hooks.append(hook)

    def on_complete(self, hook: CompletionHook) -> None:
        self._completion_hooks.append(hook)

    def apply_response_headers(self, headers: MutableHeaders, status_code: int) -> None:
        for name, value in self._default_headers.items():
            headers.setdefault(name, value)
        for hook in self._start_hooks:
            hook(headers, status_code)

    def complete(self, status_code: int | None) -> None:
        # Unwind like nested middleware: later stages finish first.
        for hook in reversed(self._completion_hooks):
            try:
                hook(status_code)
            except Exception:
                logger.exception(
                    "pipeline.completion_hook_failed",
                    extra={"path": self.path, "method": self.method, "status_code": status_code},
                )

    def commit(self) -> None:
        """Publish the sanitized query and body to the routed app."""
        self.scope["query_string"] = encode_query(self.query)
        self.state["query"] = self.query
        self.state["body"] = self.body

    def downstream_receive(self) -> Receive:
        """Receive channel replaying the sanitized body to the routed app."""
        if not self.body_consumed:
            return self.receive

        payload = b""
        if not self.body_empty:
            payload = json.dumps(self.body, ensure_ascii=False).encode("utf-8")
        headers = MutableHeaders(scope=self.scope)
        headers["content-length"] = str(len(payload))
        delivered = False
        upstream = self.receive

        async def receive() -> Message:
            nonlocal delivered
            if not delivered:
                delivered = True
                return {"type": "http.request", "body": payload, "more_body": False}
            return await upstream()

        return receive


class ResponseSender:
    """Send wrapper guaranteeing at most one response per request.

    A second ``http.response.start``, anything sent after the final body
    chunk, or anything sent after the client went away is dropped.
    """

    def __init__(self, send: Send, ctx: RequestContext) -> None:
        self._send = send
        self._ctx = ctx
        self.started = False
        self.finished = False
        self.disconnected = False
        self.status_code: int | None = None

    async def __call__(self, message: Message) -> None:
        if self.finished or self.disconnected:
            return

        if message["type"] == "http.response.start":
            if self.started:
                logger.warning(
                    "pipeline.duplicate_response_start",
                    extra={"path": self._ctx.path, "status_code": message["status"]},
                )
                return
            self.started = True
            self.status_code = message["status"]
            headers = MutableHeaders(scope=message)
            self._ctx.apply_response_headers(headers, message["status"])
        elif message["type"] == "http.response.body" and not message.get("more_body", False):
            self.finished = True

        try:
            await self._send(message)
        except OSError:
            self.disconnected = True
            logger.info(
                "pipeline.client_disconnected",
                extra={"path": self._ctx.path, "method": self._ctx.method},
            )


class RequestPipeline:
    """ASGI middleware running the ordered stage list before the app."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        stages: Sequence[Stage],
        error_renderer: ErrorRenderer,
    ) -> None:
        self.app = app
        self.stages = list(stages)
        self.error_renderer = error_renderer

    @property
    def stage_names(self) -> list[str]:
        return [stage.name for stage in self.stages]

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        ctx = RequestContext(scope, receive)
        sender = ResponseSender(send, ctx)
        try:
            await self._handle(ctx, sender)
        finally:
            ctx.complete(sender.status_code)

    async def run_stages(self, ctx: RequestContext) -> StageResult:
        """Run stages in order until one of them short-circuits."""
        for stage in self.stages:
            try:
                result = await stage(ctx)
            except Exception as exc:
                result = Fail(exc)

            if not isinstance(result, Continue):
                logger.debug(
                    "pipeline.short_circuit",
                    extra={"stage": stage.name, "outcome": type(result).__name__},
                )
                return result
        return CONTINUE

    async def _handle(self, ctx: RequestContext, sender: ResponseSender) -> None:
        result = await self.run_stages(ctx)

        if isinstance(result, Respond):
            await result.response(ctx.scope, ctx.receive, sender)
            return
        if isinstance(result, Fail):
            await self._send_error(ctx, sender, result.error)
            return

        ctx.commit()
        try:
            await self.app(ctx.scope, ctx.downstream_receive(), sender)
        except Exception as exc:
            if sender.started:
                logger.error(
                    "pipeline.error_after_response_start",
                    extra={"path": ctx.path, "method": ctx.method},
                    exc_info=exc,
                )
                raise
            await self._send_error(ctx, sender, exc)

    async def _send_error(
        self,
        ctx: RequestContext,
        sender: ResponseSender,
        error: BaseException,
    ) -> None:
        try:
            response = self.error_renderer(ctx.request, error)
        except Exception as render_exc:
            logger.error(
                "pipeline.error_renderer_failed",
                extra={"path": ctx.path, "method": ctx.method},
                exc_info=render_exc,
            )
            response = self.error_renderer(ctx.request, AppError.from_exception(error))
        await response(ctx.scope, ctx.receive, sender)
