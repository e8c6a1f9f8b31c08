"""Catch-all route turning unmatched requests into 404 errors.

Must be included after every other router: Starlette matches routes in
registration order, so anything reaching this route matched nothing else.
Because this route matches every path, Starlette's own trailing-slash
redirect never fires; ``not_found`` performs it before giving up.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from starlette.datastructures import URL
from starlette.responses import RedirectResponse
from starlette.routing import Match

from natours.core.errors import NotFoundAppError

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

router = APIRouter(include_in_schema=False)


def original_url(request: Request) -> str:
    """Path plus (sanitized) query string of the request."""
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


def slash_redirect(request: Request) -> RedirectResponse | None:
    """Redirect to the same path with its trailing slash toggled, if that matches a route."""
    path = request.scope["path"]
    if path == "/":
        return None

    redirect_scope = dict(request.scope)
    redirect_scope["path"] = path.rstrip("/") if path.endswith("/") else path + "/"

    for route in request.app.router.routes:
        if getattr(route, "endpoint", None) is not_found:
            continue
        match, _ = route.matches(redirect_scope)
        if match == Match.FULL:
            return RedirectResponse(url=str(URL(scope=redirect_scope)))
    return None


@router.api_route("/{full_path:path}", methods=ALL_METHODS)
async def not_found(request: Request) -> RedirectResponse:
    redirect = slash_redirect(request)
    if redirect is not None:
        return redirect
    raise NotFoundAppError(
        message=f"Can't find {original_url(request)} on this server!",
        details={"path": request.url.path, "method": request.method},
    )
