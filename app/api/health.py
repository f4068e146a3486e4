"""Liveness route."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ..config import Settings, get_settings
from ..dependencies import get_health
from ..services.provider_health import ProviderHealthRegistry

router = APIRouter()


@router.get("/health")
async def health_check(
    settings: Settings = Depends(get_settings),
    health: ProviderHealthRegistry = Depends(get_health),
) -> dict:
    providers = health.get_provider_status()
    return {
        "status": "ok",
        "version": settings.api_version,
        "analysis_enabled": health.is_global_analysis_enabled(),
        "active_providers": sorted(p for p, s in providers.items() if s.active),
    }
