"""Middleware components for the FastAPI application."""

from .error_handler import ErrorHandlingMiddleware, install_exception_handlers

__all__ = ["ErrorHandlingMiddleware", "install_exception_handlers"]
