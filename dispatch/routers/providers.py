"""
Providers router: POST /v1/providers/{id}/location,
                   PATCH /v1/providers/{id}/status, GET /v1/providers/nearby
"""
import logging
from typing import Optional

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, Query, status
from redis.exceptions import RedisError

from dispatch.dependencies import DispatchServices, get_services
from dispatch.exceptions import AccessDenied, NotFound
from dispatch.middleware.auth import get_current_user_id
from dispatch.models.booking import utcnow
from dispatch.redis_client import geo_add_provider, geo_remove_provider, get_redis
from dispatch.schemas.schemas import LocationUpdateRequest, NearbyProviderResponse
from dispatch.services.geo import Coordinates

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/providers", tags=["Providers"])


def _require_self(provider_id: str, caller_id: str) -> None:
    if provider_id != caller_id:
        raise AccessDenied("Providers can only update their own record")


@router.post("/{provider_id}/location", status_code=status.HTTP_204_NO_CONTENT)
async def update_location(
    provider_id: str,
    payload: LocationUpdateRequest,
    services: DispatchServices = Depends(get_services),
    caller_id: str = Depends(get_current_user_id),
    redis: aioredis.Redis = Depends(get_redis),
):
    """
    High-frequency endpoint.
    The Redis GEO set pre-selects matching candidates and feeds the surge
    supply count; Postgres stays the source of truth for eligibility.
    """
    _require_self(provider_id, caller_id)
    async with services.uow_factory() as uow:
        provider = await uow.providers.get(provider_id)
        if provider is None:
            raise NotFound(f"Provider {provider_id} not found")
        category, online = provider.category, provider.is_online
        await uow.providers.update_location(provider_id, payload.lat, payload.lng, payload.timestamp or utcnow())
        await uow.commit()

    if online:
        try:
            await geo_add_provider(redis, category, provider_id, payload.lat, payload.lng)
        except RedisError as exc:
            logger.error("Failed to index provider %s location: %s", provider_id, exc)


@router.patch("/{provider_id}/status", status_code=status.HTTP_200_OK)
async def update_provider_status(
    provider_id: str,
    online: bool,
    services: DispatchServices = Depends(get_services),
    caller_id: str = Depends(get_current_user_id),
    redis: aioredis.Redis = Depends(get_redis),
):
    """Toggle provider online/offline."""
    _require_self(provider_id, caller_id)
    async with services.uow_factory() as uow:
        provider = await uow.providers.get(provider_id)
        if provider is None:
            raise NotFound(f"Provider {provider_id} not found")
        category, lat, lng = provider.category, provider.lat, provider.lng
        await uow.providers.set_online(provider_id, online)
        await uow.commit()

    try:
        if online and lat is not None and lng is not None:
            await geo_add_provider(redis, category, provider_id, lat, lng)
        elif not online:
            await geo_remove_provider(redis, category, provider_id)
    except RedisError as exc:
        logger.error("Failed to update GEO index for provider %s: %s", provider_id, exc)
    return {"provider_id": provider_id, "online": online}


@router.get("/nearby", response_model=list[NearbyProviderResponse])
async def nearby_providers(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    category: Optional[str] = None,
    radius_m: Optional[float] = Query(default=None, gt=0, le=50000),
    services: DispatchServices = Depends(get_services),
    caller_id: str = Depends(get_current_user_id),
):
    candidates = await services.matcher.find_nearby(Coordinates(lat, lng), category=category, radius_m=radius_m)
    return [
        NearbyProviderResponse(
            provider_id=c.provider_id,
            category=c.category,
            distance_m=c.distance_m,
            eta_minutes=c.eta_minutes,
        )
        for c in candidates
    ]
