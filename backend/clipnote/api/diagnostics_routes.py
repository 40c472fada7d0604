"""
Diagnostics API routes.

Provides endpoints for:
- GET /api/diagnostics/circuits - Circuit breaker state per provider
- POST /api/diagnostics/circuits/reset - Close one or all circuits
- GET /api/diagnostics/cache - Response cache counters
- GET /api/diagnostics/providers - Per-provider request metrics
"""

import logging

from fastapi import APIRouter, HTTPException, Request

from clipnote.api.routes import get_container
from clipnote.models.cache import CacheStats

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/diagnostics", tags=["diagnostics"])


@router.get("/circuits")
async def get_circuits(request: Request) -> dict[str, dict]:
    """Breaker stats keyed by provider name."""
    return get_container(request).breakers.stats()


@router.post("/circuits/reset")
async def reset_circuits(request: Request, name: str | None = None) -> dict:
    """
    Reset circuit breakers.

    Args:
        name: Breaker to reset (all breakers if omitted)

    Raises:
        HTTPException: 404 if the named breaker does not exist
    """
    breakers = get_container(request).breakers
    if name is None:
        await breakers.reset_all()
        logger.info("All circuit breakers reset")
        return {"reset": breakers.names()}

    if not await breakers.reset(name):
        raise HTTPException(status_code=404, detail=f"Circuit breaker not found: {name}")
    logger.info(f"Circuit breaker reset: {name}")
    return {"reset": [name]}


@router.get("/cache")
async def get_cache_stats(request: Request) -> dict:
    """Response cache counters plus hit rate and hottest keys."""
    cache = get_container(request).cache
    stats: CacheStats = cache.get_stats()
    return {
        **stats.model_dump(),
        "hit_rate": stats.hit_rate,
        "hot_items": [{"key": key, "hits": hits} for key, hits in cache.get_hot_items()],
    }


@router.get("/providers")
async def get_provider_metrics(request: Request) -> dict[str, dict]:
    """Request counters per provider (empty without providers)."""
    ai = get_container(request).ai
    return ai.get_metrics() if ai is not None else {}
