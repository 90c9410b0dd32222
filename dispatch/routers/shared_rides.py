"""
Shared rides router: GET /v1/shared-rides/compatible
"""
from fastapi import APIRouter, Depends, Query

from dispatch.dependencies import DispatchServices, get_services
from dispatch.middleware.auth import get_current_user_id
from dispatch.schemas.schemas import CompatibleGroupResponse
from dispatch.services.geo import Route

router = APIRouter(prefix="/v1/shared-rides", tags=["Shared rides"])


@router.get("/compatible", response_model=list[CompatibleGroupResponse])
async def compatible_groups(
    pickup_lat: float = Query(..., ge=-90, le=90),
    pickup_lng: float = Query(..., ge=-180, le=180),
    dropoff_lat: float = Query(..., ge=-90, le=90),
    dropoff_lng: float = Query(..., ge=-180, le=180),
    services: DispatchServices = Depends(get_services),
    customer_id: str = Depends(get_current_user_id),
):
    matches = await services.groups.find_compatible_groups(
        Route.from_points(pickup_lat, pickup_lng, dropoff_lat, dropoff_lng)
    )
    return [
        CompatibleGroupResponse(
            group_key=m.group.group_key,
            similarity=round(m.similarity, 4),
            passenger_count=m.group.passenger_count,
            max_passengers=m.group.max_passengers,
            current_share=m.current_share,
        )
        for m in matches
    ]
