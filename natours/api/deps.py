"""Request data accessors for domain routers.

The pipeline publishes the sanitized query and body on ``request.state``;
routers read them through these dependencies instead of touching the raw
request.
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import Depends, Request


def get_query(request: Request) -> dict[str, Any]:
    return getattr(request.state, "query", {})


def get_body(request: Request) -> Any:
    return getattr(request.state, "body", {})


def get_request_time(request: Request) -> str | None:
    return getattr(request.state, "request_time", None)


def get_polluted_query(request: Request) -> dict[str, list[Any]]:
    return getattr(request.state, "query_polluted", {})


QueryParams = Annotated[dict[str, Any], Depends(get_query)]
JsonBody = Annotated[Any, Depends(get_body)]
RequestTime = Annotated[str | None, Depends(get_request_time)]
