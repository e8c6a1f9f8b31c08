"""Global error handler: the single place where errors become responses.

Every failure ends here, whether a pipeline stage forwarded it, a router
raised it, or a collaborator blew up:

- the error is normalized into an ``AppError`` (known collaborator
  exceptions through translators, anything else as a non-operational 500);
- development responses carry full diagnostics (error description and stack
  trace);
- production responses only carry ``status`` and ``message`` for operational
  errors and a fixed generic message for everything else, the details being
  logged server-side only.

All responses share the ``{"status", "message"}`` envelope and include the
request_id for tracing when one is set.
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Callable

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from natours.core.config import Settings
from natours.core.errors import AppError, ValidationAppError
from natours.core.logging import get_request_id

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Something went very wrong!"

ErrorTranslator = Callable[[Any], AppError]


def translate_validation_error(exc: RequestValidationError | PydanticValidationError) -> AppError:
    """Map request/model validation failures to a 400 operational error."""
    errors = [
        {
            "loc": [str(part) for part in error.get("loc", ())],
            "msg": str(error.get("msg", "")),
            "type": str(error.get("type", "")),
        }
        for error in exc.errors()
    ]
    messages = [
        f"{'.'.join(error['loc'])}: {error['msg']}" if error["loc"] else error["msg"]
        for error in errors
    ]
    return ValidationAppError(
        message=f"Invalid input data. {'. '.join(messages)}".strip(),
        details={"errors": errors},
    )


def translate_http_exception(exc: StarletteHTTPException) -> AppError:
    """Map framework HTTP exceptions (405, 401...) to operational errors."""
    status_code = exc.status_code if 400 <= exc.status_code <= 599 else 500
    return AppError(
        message=str(exc.detail),
        status_code=status_code,
        code="http_error",
        is_operational=status_code < 500,
        headers=dict(exc.headers) if exc.headers else None,
    )


def format_stack(exc: BaseException) -> str:
    """Format the traceback (including chained causes) of ``exc``."""
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


class GlobalErrorHandler:
    """Normalize and render errors according to the environment.

    Attributes:
        settings: Application settings; ``settings.is_development`` selects
            the diagnostic branch.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._translators: list[tuple[type[BaseException], ErrorTranslator]] = [
            (RequestValidationError, translate_validation_error),
            (PydanticValidationError, translate_validation_error),
            (StarletteHTTPException, translate_http_exception),
        ]

    def register_error_translator(
        self,
        exc_type: type[BaseException],
        translator: ErrorTranslator,
    ) -> None:
        """Map a collaborator exception type to an ``AppError``.

        Translators registered later take precedence over earlier ones.

        Example:
            >>> handler.register_error_translator(
            ...     DuplicateKeyError,
            ...     lambda exc: ValidationAppError(message="Duplicate field value."),
            ... )
        """
        self._translators.append((exc_type, translator))

    def normalize(self, exc: BaseException) -> AppError:
        """Return ``exc`` as an ``AppError`` without losing the original."""
        if isinstance(exc, AppError):
            return exc
        for exc_type, translator in reversed(self._translators):
            if isinstance(exc, exc_type):
                error = translator(exc)
                error.__cause__ = exc
                return error
        return AppError.from_exception(exc)

    def render(self, request: Request, exc: BaseException) -> JSONResponse:
        """Build the error response for ``exc``.

        Args:
            request: The request that failed.
            exc: Any forwarded error, typed or not.

        Returns:
            JSONResponse with the error status code and envelope.
        """
        error = self.normalize(exc)
        self._log(request, error, exc)

        if self.settings.is_development:
            content: dict[str, Any] = {
                "status": error.status,
                "message": error.message,
                "error": self._describe(error, exc),
                "stack": format_stack(exc),
            }
        elif error.is_operational:
            content = {"status": error.status, "message": error.message}
        else:
            content = {"status": "error", "message": GENERIC_ERROR_MESSAGE}

        request_id = get_request_id()
        if request_id:
            content["request_id"] = request_id

        return JSONResponse(
            status_code=error.status_code,
            content=jsonable_encoder(content),
            headers=error.headers,
        )

    @staticmethod
    def _describe(error: AppError, exc: BaseException) -> dict[str, Any]:
        description: dict[str, Any] = {
            "type": type(exc).__name__,
            "code": error.code,
            "status_code": error.status_code,
            "status": error.status,
            "is_operational": error.is_operational,
        }
        if error.details:
            description["details"] = error.details
        return description

    @staticmethod
    def _log(request: Request, error: AppError, exc: BaseException) -> None:
        extra = {
            "error_code": error.code,
            "error_message": error.message,
            "status_code": error.status_code,
            "request_path": request.url.path,
            "request_method": request.method,
        }
        if error.is_operational:
            logger.warning("error.operational", extra=extra)
        else:
            logger.error(
                "error.unexpected",
                extra={**extra, "error_type": type(exc).__name__},
                exc_info=exc,
            )


def setup_exception_handlers(app: FastAPI, error_handler: GlobalErrorHandler) -> None:
    """Register the global error handler for every exception type.

    Errors raised inside routes are rendered by these handlers; errors
    forwarded by pipeline stages go through ``error_handler.render``
    directly.

    Args:
        app: FastAPI application instance.
        error_handler: Handler shared with the request pipeline.
    """

    async def handle_error(request: Request, exc: Exception) -> JSONResponse:
        return error_handler.render(request, exc)

    app.exception_handler(AppError)(handle_error)
    app.exception_handler(RequestValidationError)(handle_error)
    app.exception_handler(StarletteHTTPException)(handle_error)
    app.exception_handler(Exception)(handle_error)
