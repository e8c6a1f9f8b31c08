"""Sanitization stages for the request pipeline.

Three independent passes, applied in this order:

1. ``OperatorStripStage``: drops ``$``-prefixed and dotted keys from the
   query and the body (NoSQL query injection).
2. ``MarkupStripStage``: escapes markup in query and body string values
   (stored XSS).
3. ``ParameterPollutionStage``: collapses repeated query parameters that are
   not whitelisted to their last value (HTTP parameter pollution).

Path parameters are only known once a route matched, so the first two passes
are applied to them by ``sanitize_path_params``, a dependency attached to
every domain router.
"""

from __future__ import annotations

import logging
from typing import Iterable

from starlette.requests import Request

from natours.core.pipeline import CONTINUE, RequestContext, StageResult
from natours.utils.sanitizers import (
    collapse_polluted_params,
    contains_operator_keys,
    strip_markup,
    strip_operator_keys,
)

logger = logging.getLogger(__name__)


class OperatorStripStage:
    name = "operator_strip"

    def __init__(self, replace_with: str | None = None) -> None:
        self.replace_with = replace_with

    async def __call__(self, ctx: RequestContext) -> StageResult:
        for surface in ("query", "body"):
            value = getattr(ctx, surface)
            if contains_operator_keys(value):
                logger.warning(
                    "sanitize.operator_keys",
                    extra={"surface": surface, "path": ctx.path, "replaced": self.replace_with is not None},
                )
                setattr(ctx, surface, strip_operator_keys(value, self.replace_with))
        return CONTINUE


class MarkupStripStage:
    name = "markup_strip"

    async def __call__(self, ctx: RequestContext) -> StageResult:
        ctx.query = strip_markup(ctx.query)
        ctx.body = strip_markup(ctx.body)
        return CONTINUE


class ParameterPollutionStage:
    """Keep only the last value of repeated, non-whitelisted query keys.

    The original value lists are kept on ``request.state.query_polluted``.
    """

    name = "parameter_pollution"

    def __init__(self, whitelist: Iterable[str]) -> None:
        self.whitelist = frozenset(whitelist)

    async def __call__(self, ctx: RequestContext) -> StageResult:
        ctx.query, polluted = collapse_polluted_params(ctx.query, self.whitelist)
        ctx.state["query_polluted"] = polluted
        if polluted:
            logger.info(
                "sanitize.parameter_pollution",
                extra={"keys": sorted(polluted), "path": ctx.path},
            )
        return CONTINUE


def build_path_params_sanitizer(replace_with: str | None = None):
    """Create the router dependency sanitizing matched path parameters."""

    async def sanitize_path_params(request: Request) -> None:
        params = strip_markup(strip_operator_keys(dict(request.path_params), replace_with))
        # Endpoint path arguments are read from the scope after router
        # dependencies ran, so they see the sanitized values.
        request.scope["path_params"] = params

    return sanitize_path_params
