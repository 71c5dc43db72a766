import httpx
import asyncio
import os
import uuid
from datetime import datetime, timedelta, timezone

from app.middleware.auth import create_access_token


BASE_URL = os.getenv("BASE_URL", "http://localhost:8000")
# An existing driver row (users.user_type = 'driver'); driver steps are skipped without it
DRIVER_ID = os.getenv("DRIVER_ID")


async def safe_request(resp: httpx.Response, step: str):
    """Print response + fail loudly if error"""
    print(f"{step}: {resp.status_code}")

    try:
        print(resp.json())
    except Exception:
        print(resp.text)

    resp.raise_for_status()


def ride_payload(hours_ahead: float) -> dict:
    return {
        "schedule_datetime": (datetime.now(timezone.utc) + timedelta(hours=hours_ahead)).isoformat(),
        "start_latitude": 12.9716,
        "start_longitude": 77.5946,
        "start_address": "MG Road, Bengaluru",
        "end_latitude": 13.1986,
        "end_longitude": 77.7066,
        "end_address": "Kempegowda Airport, Bengaluru",
        "distance_km": 28.4,
        "duration_seconds": 2700,
        "payment_type": "card",
        "payment_reference": f"pi_{uuid.uuid4().hex[:16]}",
    }


async def main():

    async with httpx.AsyncClient(timeout=30.0) as client:

        # ---------------------------------------------------
        print("\n1️⃣ Checking Health...")
        resp = await client.get(f"{BASE_URL}/health")
        await safe_request(resp, "Health")

        # ---------------------------------------------------
        print("\n2️⃣ Generating Tokens...")

        rider_id = str(uuid.uuid4())
        rider_headers = {"Authorization": f"Bearer {create_access_token({'sub': rider_id})}"}
        admin_headers = {
            "Authorization": f"Bearer {create_access_token({'sub': 'ops-flow', 'role': 'admin'})}"
        }

        # ---------------------------------------------------
        if DRIVER_ID:
            print("\n3️⃣ Driver goes online...")
            driver_headers = {
                "Authorization": f"Bearer {create_access_token({'sub': DRIVER_ID, 'role': 'driver'})}"
            }
            resp = await client.patch(
                f"{BASE_URL}/v1/drivers/{DRIVER_ID}/presence",
                json={"is_online": True, "is_available": True},
                headers=driver_headers,
            )
            await safe_request(resp, "Driver Online")

            resp = await client.post(
                f"{BASE_URL}/v1/drivers/{DRIVER_ID}/location",
                json={"lat": 12.9750, "lng": 77.5990},
                headers=driver_headers,
            )
            await safe_request(resp, "Send Location")
        else:
            print("\n3️⃣ DRIVER_ID not set, skipping driver steps")

        # ---------------------------------------------------
        print("\n4️⃣ Rider schedules two rides...")

        rides = []
        for hours_ahead in (2, 6):
            resp = await client.post(
                f"{BASE_URL}/v1/rides/schedule",
                json=ride_payload(hours_ahead),
                headers={**rider_headers, "Idempotency-Key": str(uuid.uuid4())},
            )
            await safe_request(resp, f"Schedule Ride (+{hours_ahead}h)")
            rides.append(resp.json()["ride"]["id"])

        # ---------------------------------------------------
        print("\n5️⃣ Listing upcoming rides...")
        resp = await client.get(f"{BASE_URL}/v1/rides/upcoming", headers=rider_headers)
        await safe_request(resp, "Upcoming Rides")

        if resp.json()["count"] != len(rides):
            raise Exception("Upcoming rides count mismatch")

        # ---------------------------------------------------
        print("\n6️⃣ Rider cancels the later ride...")
        resp = await client.post(
            f"{BASE_URL}/v1/rides/{rides[1]}/cancel",
            json={"reason": "Plans changed"},
            headers=rider_headers,
        )
        await safe_request(resp, "Cancel Ride")

        # ---------------------------------------------------
        print("\n7️⃣ Admin triggers an activation pass...")
        resp = await client.post(
            f"{BASE_URL}/v1/admin/scheduled-rides/activate",
            headers=admin_headers,
        )
        await safe_request(resp, "Activation Pass")

        # ---------------------------------------------------
        print("\n8️⃣ Checking the remaining ride...")
        resp = await client.get(f"{BASE_URL}/v1/rides/{rides[0]}", headers=rider_headers)
        await safe_request(resp, "Get Ride")

        print("\n✅ FLOW COMPLETED SUCCESSFULLY")


if __name__ == "__main__":
    asyncio.run(main())
