"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It pins APP_ENV before settings are imported and provides factories for
settings, stub domain routers and test clients.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("LOG_FORMAT", "plain")

from typing import Callable

import pytest
from fastapi import APIRouter, Request
from fastapi.testclient import TestClient
from pydantic import BaseModel

from natours.api.deps import JsonBody, QueryParams, RequestTime, get_polluted_query
from natours.api.routes import DomainRouters
from natours.core.app_factory import create_app
from natours.core.config import AppSettings, LogSettings, Settings
from natours.core.errors import ValidationAppError


class ReviewIn(BaseModel):
    review: str
    rating: int


@pytest.fixture
def router_calls() -> list[str]:
    """Names of the domain handlers invoked during a test."""
    return []


@pytest.fixture
def domain_routers(router_calls: list[str]) -> DomainRouters:
    """Stub collaborators standing in for the tours/users/reviews routers."""
    tours = APIRouter()
    users = APIRouter()
    reviews = APIRouter()

    @tours.get("")
    async def list_tours(request: Request, query: QueryParams, request_time: RequestTime):
        router_calls.append("tours.list")
        return {
            "status": "success",
            "query": query,
            "raw_query": request.query_params.multi_items(),
            "polluted": get_polluted_query(request),
            "request_time": request_time,
        }

    @tours.post("")
    async def create_tour(request: Request, body: JsonBody):
        router_calls.append("tours.create")
        raw = await request.body()
        return {"status": "success", "body": body, "raw": raw.decode("utf-8")}

    @tours.get("/boom")
    async def boom():
        router_calls.append("tours.boom")
        raise RuntimeError("database connection failed: mongodb://admin:secret@db")

    @tours.get("/invalid")
    async def invalid():
        router_calls.append("tours.invalid")
        raise ValidationAppError(message="Invalid tour id")

    @tours.get("/{tour_id}")
    async def get_tour(tour_id: str):
        router_calls.append("tours.get")
        return {"status": "success", "tour_id": tour_id}

    @users.get("")
    async def list_users():
        router_calls.append("users.list")
        return {"status": "success"}

    @reviews.post("", status_code=201)
    async def create_review(review: ReviewIn):
        router_calls.append("reviews.create")
        return {"status": "success", "review": review.model_dump()}

    return DomainRouters(tours=tours, users=users, reviews=reviews)


@pytest.fixture
def make_settings(tmp_path) -> Callable[..., Settings]:
    """Build isolated settings; keyword overrides go to ``AppSettings``."""

    def _make(env: str = "testing", **app_overrides) -> Settings:
        app_overrides.setdefault("public_dir", str(tmp_path / "public"))
        return Settings(
            app_env=env,
            app=AppSettings(**app_overrides),
            log=LogSettings(format="plain"),
        )

    return _make


@pytest.fixture
def make_client(make_settings, domain_routers) -> Callable[..., TestClient]:
    """Create a TestClient over a fresh app (fresh rate limit counters)."""

    def _make(env: str = "testing", **app_overrides) -> TestClient:
        app = create_app(make_settings(env, **app_overrides), domain_routers)
        return TestClient(app)

    return _make


@pytest.fixture
def client(make_client) -> TestClient:
    return make_client()


@pytest.fixture
def dev_client(make_client) -> TestClient:
    return make_client("development")


@pytest.fixture
def prod_client(make_client) -> TestClient:
    return make_client("production")
