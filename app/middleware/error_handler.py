"""Application-wide exception handling middleware."""

from __future__ import annotations

import uuid
from typing import Any, Dict

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from ..core.context import reset_correlation_id, set_correlation_id
from ..core.errors import CompetitorAgentsError, ValidationError

logger = structlog.get_logger("app.error")


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", None) or str(uuid.uuid4())


def _application_error_response(
    exc: CompetitorAgentsError,
    correlation_id: str,
    request: Request,
) -> JSONResponse:
    """Format a CompetitorAgentsError into a JSON response."""
    log_method = logger.warning if exc.status_code < 500 else logger.error
    log_method(
        "handled_application_error",
        code=exc.code,
        message=exc.message,
        path=str(request.url.path),
    )

    content = {
        "error": exc.to_dict(),
        "correlation_id": correlation_id,
    }
    return JSONResponse(status_code=exc.status_code, content=content)


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Transforms uncaught exceptions into structured API responses."""

    def __init__(self, app: ASGIApp) -> None:
        super().__init__(app)
        self.logger = logger

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
        token = set_correlation_id(correlation_id)
        request.state.correlation_id = correlation_id

        try:
            response = await call_next(request)
        except CompetitorAgentsError as exc:
            response = _application_error_response(exc, correlation_id, request)
        except Exception as exc:
            self.logger.exception(
                "unhandled_application_error",
                path=str(request.url.path),
                error_type=exc.__class__.__name__,
            )
            response = JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": {
                        "code": "internal_server_error",
                        "message": "An unexpected error occurred.",
                        "details": {"type": exc.__class__.__name__},
                    },
                    "correlation_id": correlation_id,
                },
            )
        finally:
            reset_correlation_id(token)

        response.headers.setdefault("X-Correlation-ID", correlation_id)
        return response


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report request validation failures in the application error format."""
    app_exc = ValidationError(
        message="Request validation failed.",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        details={"errors": jsonable_errors(exc)},
    )
    return _application_error_response(app_exc, _correlation_id(request), request)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Normalize HTTPException responses, including unknown routes."""
    log_method = logger.warning if exc.status_code < 500 else logger.error
    log_method("http_exception", status=exc.status_code, path=str(request.url.path))

    details: Dict[str, Any] = {}
    if isinstance(exc.detail, dict):
        details = exc.detail
        message = exc.detail.get("message", "An HTTP error occurred.")
    elif isinstance(exc.detail, list):
        details = {"errors": exc.detail}
        message = "Request validation failed."
    else:
        message = str(exc.detail)

    content: Dict[str, Any] = {
        "error": {
            "code": "http_error",
            "message": message,
        },
        "correlation_id": _correlation_id(request),
    }
    if details:
        content["error"]["details"] = details

    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


def jsonable_errors(exc: RequestValidationError) -> list:
    # ``ctx`` may hold exception instances that are not JSON serializable.
    return [
        {key: value for key, value in error.items() if key != "ctx"} for error in exc.errors()
    ]


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)


__all__ = [
    "ErrorHandlingMiddleware",
    "http_exception_handler",
    "install_exception_handlers",
    "validation_exception_handler",
]
