from __future__ import annotations

"""Application factory for the FastAPI app.

Centralizes app construction (pipeline stages, error handling, routers) so
tests and embedders can build isolated apps with their own settings and
domain routers.

Request flow, top to bottom:

    security headers -> request id -> request logger -> rate limiter (/api)
    -> body reader -> operator strip -> markup strip -> parameter pollution
    -> static files -> request time -> routers -> not found
    (any failure) -> global error handler
"""

from fastapi import Depends, FastAPI

from natours.adapters.rate_limit.base import AbstractRateLimiter
from natours.api.routes import DomainRouters, health_router, not_found_router
from natours.core.body_reader import BodyReaderStage
from natours.core.config import Settings
from natours.core.config import settings as default_settings
from natours.core.exception_handlers import GlobalErrorHandler, setup_exception_handlers
from natours.core.logging import configure_logging
from natours.core.middleware import RequestIdStage, RequestLoggerStage, RequestTimeStage
from natours.core.pipeline import RequestPipeline, Stage
from natours.core.rate_limit import RateLimitStage, build_rate_limiter
from natours.core.sanitization import (
    MarkupStripStage,
    OperatorStripStage,
    ParameterPollutionStage,
    build_path_params_sanitizer,
)
from natours.core.security_headers import SecurityHeadersStage
from natours.core.static_files import StaticFilesStage


def build_stages(settings: Settings, limiter: AbstractRateLimiter) -> list[Stage]:
    """Return the pipeline stages in execution order."""
    app_settings = settings.app
    return [
        SecurityHeadersStage(),
        RequestIdStage(settings.log.request_id_header),
        RequestLoggerStage(enabled=settings.is_development),
        RateLimitStage(limiter, app_settings),
        BodyReaderStage(app_settings.body_limit_bytes),
        OperatorStripStage(app_settings.sanitize_replace_with),
        MarkupStripStage(),
        ParameterPollutionStage(app_settings.whitelisted_params),
        StaticFilesStage(app_settings.public_dir, api_prefix=app_settings.rate_limit_prefix),
        RequestTimeStage(),
    ]


def create_app(
    settings: Settings | None = None,
    routers: DomainRouters | None = None,
    *,
    rate_limiter: AbstractRateLimiter | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        settings: Settings to use; defaults to the environment-built settings.
        routers: Domain routers to mount; defaults to empty routers.
        rate_limiter: Counter store; defaults to an in-memory limiter built
            from ``settings.app``.

    Returns:
        Configured FastAPI app with pipeline, handlers and routers.
    """
    cfg = settings or default_settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    app = FastAPI(
        title="Natours API",
        description=(
            "REST API for tours, users and reviews. Every request goes through "
            "a hardening pipeline: security headers, per-IP rate limiting on "
            "/api, a 10 KB JSON body limit, NoSQL-operator and markup "
            "sanitization and parameter pollution protection."
        ),
        version="0.1.0",
    )

    limiter = rate_limiter or build_rate_limiter(cfg.app)
    error_handler = GlobalErrorHandler(cfg)

    # Exception handlers
    setup_exception_handlers(app, error_handler)

    # Routers
    sanitize_path_params = build_path_params_sanitizer(cfg.app.sanitize_replace_with)
    app.include_router(health_router)
    for prefix, router in (routers or DomainRouters()).mounts():
        app.include_router(router, prefix=prefix, dependencies=[Depends(sanitize_path_params)])
    # Catch-all, must stay the last router
    app.include_router(not_found_router)

    # Pipeline
    app.add_middleware(
        RequestPipeline,
        stages=build_stages(cfg, limiter),
        error_renderer=error_handler.render,
    )

    app.state.settings = cfg
    app.state.rate_limiter = limiter
    app.state.error_handler = error_handler
    return app
