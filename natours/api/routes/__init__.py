from __future__ import annotations

from dataclasses import dataclass, field

from fastapi import APIRouter

from natours.api.routes.health import router as health_router
from natours.api.routes.not_found import router as not_found_router

API_V1_PREFIX = "/api/v1"


@dataclass
class DomainRouters:
    """Resource routers mounted under ``/api/v1``.

    The routers are external collaborators: they own their sub-paths, verbs
    and persistence. Routers left empty expose no routes, so requests to
    their prefix end up in the not-found route.
    """

    tours: APIRouter = field(default_factory=lambda: APIRouter(tags=["Tours"]))
    users: APIRouter = field(default_factory=lambda: APIRouter(tags=["Users"]))
    reviews: APIRouter = field(default_factory=lambda: APIRouter(tags=["Reviews"]))

    def mounts(self) -> list[tuple[str, APIRouter]]:
        return [
            (f"{API_V1_PREFIX}/tours", self.tours),
            (f"{API_V1_PREFIX}/users", self.users),
            (f"{API_V1_PREFIX}/reviews", self.reviews),
        ]


__all__ = ["API_V1_PREFIX", "DomainRouters", "health_router", "not_found_router"]
