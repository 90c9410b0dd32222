"""
Bookings router: POST /v1/bookings, GET /v1/bookings/{id}, tracking,
lifecycle transitions and inter-regional approval.
"""
import json
import logging

import redis.asyncio as aioredis
from typing import Annotated, Optional

from fastapi import APIRouter, Body, Depends, Request, status

from dispatch.dependencies import DispatchServices, get_services
from dispatch.exceptions import AccessDenied
from dispatch.middleware.auth import get_current_user_id, require_admin
from dispatch.middleware.idempotency import check_idempotency, store_idempotency_result
from dispatch.redis_client import cache_delete, cache_get, cache_set, get_redis
from dispatch.schemas.schemas import (
    BookingCreateUnion,
    BookingResponse,
    CancelBookingRequest,
    CompleteBookingRequest,
    RejectBookingRequest,
    ServiceTypeEnum,
    TrackingEventResponse,
    TrackingResponse,
    TrackingUpdateRequest,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/bookings", tags=["Bookings"])

STATUS_CACHE_TTL = 60


def _status_key(booking_id: str) -> str:
    return f"booking:{booking_id}:status"


async def _invalidate(booking, redis: aioredis.Redis, services: DispatchServices) -> None:
    """Drop the cached status of *booking* and, for a shared ride, of every booking on its roster."""
    booking_ids = {booking.id}
    if booking.service_type == ServiceTypeEnum.SHARED_RIDE:
        booking_ids.update(await services.groups.member_booking_ids(booking.payload.group_key))
    await cache_delete(redis, *(_status_key(i) for i in sorted(booking_ids)))


async def _respond(booking, redis: aioredis.Redis, services: DispatchServices) -> BookingResponse:
    await _invalidate(booking, redis, services)
    return BookingResponse.model_validate(booking)


@router.post("", status_code=status.HTTP_201_CREATED, response_model=BookingResponse)
async def create_booking(
    request: Request,
    payload: Annotated[BookingCreateUnion, Body(discriminator="service_type")],
    services: DispatchServices = Depends(get_services),
    customer_id: str = Depends(get_current_user_id),
    redis: aioredis.Redis = Depends(get_redis),
):
    cached = await check_idempotency(request, customer_id)
    if cached:
        return cached

    booking = await services.orchestrator.create_booking(customer_id, payload)
    response = await _respond(booking, redis, services)

    await store_idempotency_result(request, customer_id, 201, response.model_dump(mode="json"))
    return response


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str,
    services: DispatchServices = Depends(get_services),
    caller_id: str = Depends(get_current_user_id),
    redis: aioredis.Redis = Depends(get_redis),
):
    # Cache-aside: check Redis first, access check applies to cached copies too
    cached = await cache_get(redis, _status_key(booking_id))
    if cached:
        resp = BookingResponse(**json.loads(cached))
        if caller_id not in (resp.customer_id, resp.provider_id):
            raise AccessDenied(f"User {caller_id} cannot view booking {booking_id}")
        return resp

    booking = await services.lifecycle.get_status(booking_id, caller_id)
    resp = BookingResponse.model_validate(booking)
    await cache_set(redis, _status_key(booking_id), resp.model_dump_json(), ttl=STATUS_CACHE_TTL)
    return resp


@router.get("/{booking_id}/tracking", response_model=TrackingResponse)
async def get_tracking(
    booking_id: str,
    services: DispatchServices = Depends(get_services),
    caller_id: str = Depends(get_current_user_id),
):
    booking, events = await services.lifecycle.get_tracking(booking_id, caller_id)
    return TrackingResponse(
        booking_id=booking.id,
        status=booking.status,
        provider_id=booking.provider_id,
        events=[TrackingEventResponse.model_validate(e) for e in events],
    )


@router.post("/{booking_id}/tracking", status_code=status.HTTP_201_CREATED, response_model=TrackingEventResponse)
async def record_tracking(
    booking_id: str,
    payload: TrackingUpdateRequest,
    services: DispatchServices = Depends(get_services),
    provider_id: str = Depends(get_current_user_id),
):
    event = await services.lifecycle.record_tracking(
        booking_id,
        provider_id,
        payload.lat,
        payload.lng,
        heading=payload.heading,
        speed=payload.speed,
        message=payload.message,
    )
    return TrackingEventResponse.model_validate(event)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

@router.post("/{booking_id}/accept", response_model=BookingResponse)
async def accept_booking(
    booking_id: str,
    services: DispatchServices = Depends(get_services),
    provider_id: str = Depends(get_current_user_id),
    redis: aioredis.Redis = Depends(get_redis),
):
    return await _respond(await services.lifecycle.accept(booking_id, provider_id), redis, services)


@router.post("/{booking_id}/assign", response_model=BookingResponse)
async def assign_booking(
    booking_id: str,
    services: DispatchServices = Depends(get_services),
    provider_id: str = Depends(get_current_user_id),
    redis: aioredis.Redis = Depends(get_redis),
):
    return await _respond(await services.lifecycle.assign(booking_id, provider_id), redis, services)


@router.post("/{booking_id}/arrive", response_model=BookingResponse)
async def arrive(
    booking_id: str,
    services: DispatchServices = Depends(get_services),
    provider_id: str = Depends(get_current_user_id),
    redis: aioredis.Redis = Depends(get_redis),
):
    return await _respond(await services.lifecycle.arrive(booking_id, provider_id), redis, services)


@router.post("/{booking_id}/start", response_model=BookingResponse)
async def start_trip(
    booking_id: str,
    services: DispatchServices = Depends(get_services),
    provider_id: str = Depends(get_current_user_id),
    redis: aioredis.Redis = Depends(get_redis),
):
    return await _respond(await services.lifecycle.start(booking_id, provider_id), redis, services)


@router.post("/{booking_id}/complete", response_model=BookingResponse)
async def complete_trip(
    booking_id: str,
    payload: CompleteBookingRequest,
    services: DispatchServices = Depends(get_services),
    provider_id: str = Depends(get_current_user_id),
    redis: aioredis.Redis = Depends(get_redis),
):
    booking = await services.lifecycle.complete(
        booking_id,
        provider_id,
        payload.actual_distance_m,
        payload.actual_duration_min,
        payload.final_price,
    )
    return await _respond(booking, redis, services)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: str,
    payload: Optional[CancelBookingRequest] = None,
    services: DispatchServices = Depends(get_services),
    actor_id: str = Depends(get_current_user_id),
    redis: aioredis.Redis = Depends(get_redis),
):
    reason = payload.reason if payload else CancelBookingRequest().reason
    return await _respond(await services.lifecycle.cancel(booking_id, actor_id, reason), redis, services)


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------

@router.post("/{booking_id}/approve", response_model=BookingResponse)
async def approve_inter_regional(
    booking_id: str,
    services: DispatchServices = Depends(get_services),
    admin_id: str = Depends(require_admin),
    redis: aioredis.Redis = Depends(get_redis),
):
    logger.info("Admin %s approving booking %s", admin_id, booking_id)
    return await _respond(await services.orchestrator.approve_inter_regional(booking_id), redis, services)


@router.post("/{booking_id}/reject", response_model=BookingResponse)
async def reject_booking(
    booking_id: str,
    payload: RejectBookingRequest,
    services: DispatchServices = Depends(get_services),
    admin_id: str = Depends(require_admin),
    redis: aioredis.Redis = Depends(get_redis),
):
    logger.info("Admin %s rejecting booking %s", admin_id, booking_id)
    return await _respond(await services.lifecycle.reject(booking_id, payload.reason), redis, services)


@router.post("/{booking_id}/fail", response_model=BookingResponse)
async def fail_booking(
    booking_id: str,
    payload: RejectBookingRequest,
    services: DispatchServices = Depends(get_services),
    admin_id: str = Depends(require_admin),
    redis: aioredis.Redis = Depends(get_redis),
):
    logger.info("Admin %s failing booking %s", admin_id, booking_id)
    return await _respond(await services.lifecycle.fail(booking_id, payload.reason), redis, services)
