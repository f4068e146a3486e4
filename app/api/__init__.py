"""API route definitions for the competitor-analysis backend."""

from fastapi import APIRouter

from .analyses import router as analyses_router
from .health import router as health_router
from .providers import router as providers_router


def get_api_router() -> APIRouter:
    """Construct the application router with all included endpoints."""
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(analyses_router, prefix="/analyses", tags=["analyses"])
    api_router.include_router(providers_router, prefix="/providers", tags=["providers"])
    return api_router
