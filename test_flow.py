import asyncio
import os
import uuid

import httpx

from dispatch.middleware.auth import create_access_token


BASE_URL = os.getenv("DISPATCH_BASE_URL", "http://localhost:8000")
# provider rows are seeded by onboarding; point this at a verified ECONOMY provider
PROVIDER_ID = os.getenv("SMOKE_PROVIDER_ID", "provider-smoke-001")


async def safe_request(resp: httpx.Response, step: str):
    """Print response + fail loudly if error"""
    print(f"{step}: {resp.status_code}")

    try:
        print(resp.json())
    except ValueError:
        print(resp.text)

    resp.raise_for_status()


async def main():

    async with httpx.AsyncClient(timeout=30.0) as client:

        # ---------------------------------------------------
        print("\n1️⃣ Checking Health...")
        resp = await client.get(f"{BASE_URL}/health")
        await safe_request(resp, "Health")

        # ---------------------------------------------------
        print("\n2️⃣ Generating Tokens...")

        provider_token = create_access_token(PROVIDER_ID, role="provider")
        customer_id = str(uuid.uuid4())
        customer_token = create_access_token(customer_id)

        provider_headers = {"Authorization": f"Bearer {provider_token}"}
        customer_headers = {"Authorization": f"Bearer {customer_token}"}

        # ---------------------------------------------------
        print("\n3️⃣ Provider goes online...")
        resp = await client.patch(
            f"{BASE_URL}/v1/providers/{PROVIDER_ID}/status",
            params={"online": "true"},
            headers=provider_headers,
        )
        await safe_request(resp, "Provider Online")

        # ---------------------------------------------------
        print("\n4️⃣ Provider sends location...")
        resp = await client.post(
            f"{BASE_URL}/v1/providers/{PROVIDER_ID}/location",
            json={"lat": 5.6037, "lng": -0.1870},
            headers=provider_headers,
        )
        await safe_request(resp, "Send Location")

        # ---------------------------------------------------
        print("\n5️⃣ Customer books a ride...")

        ride_payload = {
            "service_type": "RIDE",
            "ride_category": "ECONOMY",
            "pickup_lat": 5.6037,
            "pickup_lng": -0.1870,
            "dropoff_lat": 5.6508,
            "dropoff_lng": -0.1870,
        }

        resp = await client.post(
            f"{BASE_URL}/v1/bookings",
            json=ride_payload,
            headers={**customer_headers, "Idempotency-Key": str(uuid.uuid4())},
        )
        await safe_request(resp, "Create Booking")

        booking = resp.json()
        booking_id = booking["id"]

        # ---------------------------------------------------
        print("\n6️⃣ Provider accepts, arrives and starts...")
        for step in ("accept", "arrive", "start"):
            resp = await client.post(f"{BASE_URL}/v1/bookings/{booking_id}/{step}", headers=provider_headers)
            await safe_request(resp, step.capitalize())

        # ---------------------------------------------------
        print("\n7️⃣ Provider pushes a tracking point...")
        resp = await client.post(
            f"{BASE_URL}/v1/bookings/{booking_id}/tracking",
            json={"lat": 5.6300, "lng": -0.1870, "heading": 0, "speed": 9.5},
            headers=provider_headers,
        )
        await safe_request(resp, "Tracking")

        # ---------------------------------------------------
        print("\n8️⃣ Completing trip...")
        resp = await client.post(
            f"{BASE_URL}/v1/bookings/{booking_id}/complete",
            json={
                "actual_distance_m": 5300,
                "actual_duration_min": 12,
                "final_price": booking["estimated_price"],
            },
            headers=provider_headers,
        )
        await safe_request(resp, "Complete")

        # ---------------------------------------------------
        print("\n9️⃣ Customer reads the timeline...")
        resp = await client.get(f"{BASE_URL}/v1/bookings/{booking_id}/tracking", headers=customer_headers)
        await safe_request(resp, "Timeline")

        print("\n✅ FLOW COMPLETED SUCCESSFULLY")


if __name__ == "__main__":
    asyncio.run(main())
