"""
Integration tests for the HTTP surface.
Uses pytest-asyncio + httpx ASGITransport, with in-memory repositories
swapped in through dependency overrides.
"""
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from dispatch.dependencies import get_services
from dispatch.main import app
from dispatch.middleware.auth import create_access_token
from dispatch.redis_client import get_redis
from tests.fakes import ACCRA, make_booking, make_provider

CUSTOMER_TOKEN = create_access_token("cust-1")
PROVIDER_TOKEN = create_access_token("prov-1", role="provider")
STRANGER_TOKEN = create_access_token("someone-else")
ADMIN_TOKEN = create_access_token("admin-1", role="admin")

RIDE_BODY = {
    "service_type": "RIDE",
    "pickup_lat": ACCRA[0],
    "pickup_lng": ACCRA[1],
    "dropoff_lat": 5.6508,
    "dropoff_lng": -0.1870,
}


def auth(token):
    return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}


@pytest.fixture
def redis_mock():
    mock = AsyncMock()
    mock.get = AsyncMock(return_value=None)
    return mock


@pytest_asyncio.fixture
async def client(services, redis_mock):
    app.dependency_overrides[get_services] = lambda: services
    app.dependency_overrides[get_redis] = lambda: redis_mock
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.mark.asyncio
class TestBookingAPI:
    async def test_health_check(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    async def test_create_booking_missing_auth(self, client):
        resp = await client.post("/v1/bookings", json=RIDE_BODY)
        assert resp.status_code == 401  # No auth header

    async def test_expired_token_rejected(self, client):
        expired = create_access_token("cust-1", expires_minutes=-1)
        resp = await client.post("/v1/bookings", headers=auth(expired), json=RIDE_BODY)
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Token expired"

    async def test_admin_route_needs_admin_role(self, client):
        resp = await client.post("/v1/bookings/whatever/reject", headers=auth(CUSTOMER_TOKEN), json={"reason": "x"})
        assert resp.status_code == 403

    async def test_create_booking_invalid_lat(self, client):
        resp = await client.post("/v1/bookings", headers=auth(CUSTOMER_TOKEN), json={**RIDE_BODY, "pickup_lat": 999})
        assert resp.status_code == 422

    async def test_create_booking_unknown_service_type(self, client):
        resp = await client.post(
            "/v1/bookings", headers=auth(CUSTOMER_TOKEN), json={**RIDE_BODY, "service_type": "HELICOPTER"}
        )
        assert resp.status_code == 422

    async def test_create_and_fetch_ride(self, client, store, redis_mock):
        resp = await client.post("/v1/bookings", headers=auth(CUSTOMER_TOKEN), json=RIDE_BODY)
        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == "PENDING"
        assert body["customer_id"] == "cust-1"
        assert body["service_data"]["kind"] == "ride"
        assert body["id"] in store.bookings

        resp = await client.get(f"/v1/bookings/{body['id']}", headers=auth(CUSTOMER_TOKEN))
        assert resp.status_code == 200
        assert resp.json()["booking_number"] == body["booking_number"]
        redis_mock.setex.assert_awaited()

    async def test_get_nonexistent_booking(self, client):
        resp = await client.get("/v1/bookings/nonexistent-uuid", headers=auth(CUSTOMER_TOKEN))
        assert resp.status_code == 404
        assert resp.json()["error_code"] == "not_found"

    async def test_stranger_cannot_view_booking(self, client, store):
        booking = store.add_booking(make_booking())
        resp = await client.get(f"/v1/bookings/{booking.id}", headers=auth(STRANGER_TOKEN))
        assert resp.status_code == 403


@pytest.mark.asyncio
class TestLifecycleAPI:
    async def test_full_trip(self, client, store):
        booking = store.add_booking(make_booking())
        store.add_provider(make_provider("prov-1"))
        headers = auth(PROVIDER_TOKEN)

        for step, expected in (("accept", "DRIVER_ASSIGNED"), ("arrive", "DRIVER_ARRIVED"), ("start", "IN_PROGRESS")):
            resp = await client.post(f"/v1/bookings/{booking.id}/{step}", headers=headers)
            assert resp.status_code == 200, resp.text
            assert resp.json()["status"] == expected

        resp = await client.post(
            f"/v1/bookings/{booking.id}/tracking",
            headers=headers,
            json={"lat": 5.62, "lng": -0.18, "heading": 45},
        )
        assert resp.status_code == 201

        resp = await client.post(
            f"/v1/bookings/{booking.id}/complete",
            headers=headers,
            json={"actual_distance_m": 10500, "actual_duration_min": 25, "final_price": "40.00"},
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "COMPLETED"
        assert resp.json()["provider_earning"] == "32.80"

        resp = await client.get(f"/v1/bookings/{booking.id}/tracking", headers=auth(CUSTOMER_TOKEN))
        assert resp.status_code == 200
        assert [e["status"] for e in resp.json()["events"]][-1] == "COMPLETED"

    async def test_invalid_transition_is_409(self, client, store):
        booking = store.add_booking(make_booking())
        store.add_provider(make_provider("prov-1"))
        resp = await client.post(f"/v1/bookings/{booking.id}/start", headers=auth(PROVIDER_TOKEN))
        assert resp.status_code == 409
        assert resp.json()["error_code"] == "invalid_state"

    async def test_cancel_without_body(self, client, store):
        booking = store.add_booking(make_booking())
        resp = await client.post(f"/v1/bookings/{booking.id}/cancel", headers=auth(CUSTOMER_TOKEN))
        assert resp.status_code == 200
        assert resp.json()["status"] == "CANCELLED"
        assert resp.json()["cancellation_fee"] == "0.00"

    async def test_reject_requires_admin(self, client, store):
        booking = store.add_booking(make_booking())
        body = {"reason": "duplicate request"}

        resp = await client.post(f"/v1/bookings/{booking.id}/reject", headers=auth(CUSTOMER_TOKEN), json=body)
        assert resp.status_code == 403

        resp = await client.post(f"/v1/bookings/{booking.id}/reject", headers=auth(ADMIN_TOKEN), json=body)
        assert resp.status_code == 200
        assert resp.json()["status"] == "REJECTED"


@pytest.mark.asyncio
class TestProviderAPI:
    async def test_location_update_indexes_online_provider(self, client, store, redis_mock):
        provider = store.add_provider(make_provider("prov-1", category="ECONOMY"))
        resp = await client.post(
            "/v1/providers/prov-1/location", headers=auth(PROVIDER_TOKEN), json={"lat": 5.61, "lng": -0.19}
        )
        assert resp.status_code == 204
        assert (provider.lat, provider.lng) == (5.61, -0.19)
        redis_mock.geoadd.assert_awaited_once_with("providers:geo:ECONOMY", [-0.19, 5.61, "prov-1"])

    async def test_cannot_update_another_provider(self, client, store):
        store.add_provider(make_provider("prov-2"))
        resp = await client.post(
            "/v1/providers/prov-2/location", headers=auth(PROVIDER_TOKEN), json={"lat": 5.61, "lng": -0.19}
        )
        assert resp.status_code == 403

    async def test_going_offline_leaves_geo_index(self, client, store, redis_mock):
        provider = store.add_provider(make_provider("prov-1"))
        resp = await client.patch("/v1/providers/prov-1/status?online=false", headers=auth(PROVIDER_TOKEN))
        assert resp.status_code == 200
        assert provider.is_online is False
        redis_mock.zrem.assert_awaited_once_with("providers:geo:ECONOMY", "prov-1")

    async def test_nearby(self, client, store):
        store.add_provider(make_provider("prov-1"))
        resp = await client.get(
            "/v1/providers/nearby", params={"lat": ACCRA[0], "lng": ACCRA[1]}, headers=auth(CUSTOMER_TOKEN)
        )
        assert resp.status_code == 200
        assert [p["provider_id"] for p in resp.json()] == ["prov-1"]


@pytest.mark.asyncio
class TestSharedRideAPI:
    async def test_compatible_groups(self, client):
        body = {**RIDE_BODY, "service_type": "SHARED_RIDE"}
        resp = await client.post("/v1/bookings", headers=auth(CUSTOMER_TOKEN), json=body)
        assert resp.status_code == 201
        group_key = resp.json()["service_data"]["group_key"]

        resp = await client.get(
            "/v1/shared-rides/compatible",
            params={k: v for k, v in RIDE_BODY.items() if k != "service_type"},
            headers=auth(STRANGER_TOKEN),
        )
        assert resp.status_code == 200
        assert [g["group_key"] for g in resp.json()] == [group_key]
        assert resp.json()[0]["passenger_count"] == 1

    async def test_roster_changes_drop_every_member_status(self, client, store, redis_mock):
        body = {**RIDE_BODY, "service_type": "SHARED_RIDE"}
        first = (await client.post("/v1/bookings", headers=auth(CUSTOMER_TOKEN), json=body)).json()
        second = (await client.post("/v1/bookings", headers=auth(STRANGER_TOKEN), json=body)).json()
        assert second["service_data"]["group_key"] == first["service_data"]["group_key"]

        both = [f"booking:{i}:status" for i in sorted((first["id"], second["id"]))]
        redis_mock.delete.assert_awaited_with(*both)

        store.add_provider(make_provider("prov-1", category="SHARED"))
        redis_mock.delete.reset_mock()
        resp = await client.post(f"/v1/bookings/{second['id']}/accept", headers=auth(PROVIDER_TOKEN))
        assert resp.status_code == 200
        redis_mock.delete.assert_awaited_once_with(*both)

        resp = await client.get(f"/v1/bookings/{first['id']}", headers=auth(CUSTOMER_TOKEN))
        assert resp.json()["status"] == "DRIVER_ASSIGNED"
