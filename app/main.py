"""FastAPI application bootstrap for the competitor-analysis backend."""

from __future__ import annotations

import structlog
from fastapi import FastAPI

from .api import get_api_router
from .core.logging_config import configure_logging
from .dependencies import get_container, get_settings
from .middleware import ErrorHandlingMiddleware, install_exception_handlers

settings = get_settings()
configure_logging(level=settings.log_level, fmt=settings.log_format)

logger = structlog.get_logger(__name__)

app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=(
        "REST + streaming interface that fans competitor analyses out to several "
        "AI providers and merges their answers into one record per company."
    ),
)

app.add_middleware(ErrorHandlingMiddleware)
install_exception_handlers(app)


@app.on_event("startup")
async def startup_event() -> None:
    """Initialize application resources on startup."""
    logger.info("backend_starting", environment=settings.environment)
    container = get_container()
    try:
        await container.startup()
    except Exception:
        logger.exception("backend_startup_failed")
        raise
    logger.info(
        "backend_started",
        providers=sorted(container.adapters),
        session_store=settings.session_store,
    )


@app.on_event("shutdown")
async def shutdown_event() -> None:
    """Cleanup application resources on shutdown."""
    logger.info("backend_stopping")
    await get_container().aclose()
    logger.info("backend_stopped")


app.include_router(get_api_router())


@app.get("/", tags=["health"])
async def root() -> dict:
    """Root endpoint."""
    return {
        "name": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


if __name__ == "__main__":  # pragma: no cover - manual execution helper
    import os

    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )
