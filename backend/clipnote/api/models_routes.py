"""
API routes for providers and their model catalogs.
"""

import logging

from fastapi import APIRouter, HTTPException, Request

from clipnote.models.schemas import ProviderModelsResponse, ProviderStatus
from clipnote.api.routes import get_container

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/providers", tags=["providers"])


@router.get("")
async def list_providers(request: Request) -> list[ProviderStatus]:
    """
    Configured providers in fallback order.

    Returns:
        Name, active model, timeout and circuit state of each provider
    """
    container = get_container(request)
    statuses = []
    for provider in container.manager.providers:
        breaker = container.breakers.get(provider.name)
        statuses.append(
            ProviderStatus(
                name=provider.name,
                model=provider.model,
                timeout_ms=int(provider.timeout * 1000),
                supports_images=getattr(provider, "supports_images", False),
                circuit_state=breaker.state.value,
            )
        )
    return statuses


@router.get("/{name}/models")
async def get_provider_models(
    name: str,
    request: Request,
    refresh: bool = False,
) -> ProviderModelsResponse:
    """
    Models of one provider.

    With `refresh=true` the live catalog is fetched (bypassing the catalog
    cache); a failed fetch still answers with the cached or static list.

    Raises:
        HTTPException: 404 if the provider is not configured
    """
    manager = get_container(request).manager
    if not manager.has_provider(name):
        raise HTTPException(status_code=404, detail=f"Provider not configured: {name}")

    if refresh:
        models = await manager.fetch_latest_models_for_provider(name, bypass_cache=True)
    else:
        models = manager.get_provider_models(name)

    return ProviderModelsResponse(provider=name, models=models, refreshed=refresh)
