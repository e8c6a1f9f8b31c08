"""Security hardening headers added to every response.

The stage runs first in the pipeline and registers the headers on the
request context, so they are applied to whatever response ends the request:
routed responses, static files, rate-limit rejections and error envelopes.
Headers a handler sets explicitly are left untouched.
"""

from __future__ import annotations

from typing import Mapping

from natours.core.pipeline import CONTINUE, RequestContext, StageResult

DEFAULT_SECURITY_HEADERS: dict[str, str] = {
    "Content-Security-Policy": (
        "default-src 'self';base-uri 'self';font-src 'self' https: data:;"
        "form-action 'self';frame-ancestors 'self';img-src 'self' data:;"
        "object-src 'none';script-src 'self';script-src-attr 'none';"
        "style-src 'self' https: 'unsafe-inline';upgrade-insecure-requests"
    ),
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Origin-Agent-Cluster": "?1",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Frame-Options": "SAMEORIGIN",
    "X-Permitted-Cross-Domain-Policies": "none",
    "X-XSS-Protection": "0",
}


class SecurityHeadersStage:
    """Register hardening headers for the response of every request."""

    name = "security_headers"

    def __init__(self, headers: Mapping[str, str] | None = None) -> None:
        self.headers = dict(DEFAULT_SECURITY_HEADERS if headers is None else headers)

    async def __call__(self, ctx: RequestContext) -> StageResult:
        for name, value in self.headers.items():
            ctx.set_default_header(name, value)
        return CONTINUE
