"""Provider availability routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ..core.errors import ResourceNotFoundError
from ..dependencies import get_health
from ..schemas.analysis import (
    GlobalToggleRequest,
    ProviderStatusModel,
    ProviderStatusResponse,
    ProviderToggleRequest,
)
from ..services.provider_health import ProviderHealthRegistry

router = APIRouter()


def _status_response(health: ProviderHealthRegistry) -> ProviderStatusResponse:
    return ProviderStatusResponse(
        global_analysis_enabled=health.is_global_analysis_enabled(),
        providers={
            provider: ProviderStatusModel(**status.to_dict())
            for provider, status in health.get_provider_status().items()
        },
    )


@router.get("/status", response_model=ProviderStatusResponse)
async def provider_status(
    health: ProviderHealthRegistry = Depends(get_health),
) -> ProviderStatusResponse:
    """Live availability of every known provider and the global analysis flag."""
    return _status_response(health)


@router.put("/global", response_model=ProviderStatusResponse)
async def toggle_global_analysis(
    request: GlobalToggleRequest,
    health: ProviderHealthRegistry = Depends(get_health),
) -> ProviderStatusResponse:
    health.set_global_enabled(request.enabled)
    return _status_response(health)


@router.put("/{provider}/enabled", response_model=ProviderStatusResponse)
async def toggle_provider(
    provider: str,
    request: ProviderToggleRequest,
    health: ProviderHealthRegistry = Depends(get_health),
) -> ProviderStatusResponse:
    """Switch one configured provider on or off; running sessions see it at the next dispatch."""
    try:
        health.set_provider_enabled(provider, request.enabled)
    except KeyError as exc:
        raise ResourceNotFoundError(
            f"Provider '{provider}' is not configured", details={"provider": provider}
        ) from exc
    return _status_response(health)
