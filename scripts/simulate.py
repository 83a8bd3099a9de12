"""
Concurrency Simulation Script

Fires many simultaneous points adjustments (and a few orders) at a running
server, then checks that the ledger balance equals the sum of the applied
deltas and that the ledger history holds one entry per adjustment.

Run from project root: python scripts/simulate.py --adjustments 100
"""

import argparse
import asyncio
import random
import sys
import time
from datetime import datetime
from typing import Any

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:3000"
TOTAL_ADJUSTMENTS = 100

MENU_ITEMS = [
    {"title": "Espresso", "price": 9.0},
    {"title": "Flat white", "price": 14.5},
    {"title": "Iced latte", "price": 16.0},
    {"title": "Matcha", "price": 17.5},
    {"title": "Cheesecake", "price": 18.0},
    {"title": "Croissant", "price": 8.5},
]
LOCATIONS = ["slupsk", "rowy"]


def random_delta() -> int:
    """Mostly earnings, some redemptions."""
    if random.random() < 0.75:
        return random.randint(1, 20)
    return -random.randint(1, 10)


def generate_order_payload(email: str, loyalty_id: str) -> dict[str, Any]:
    items = []
    for _ in range(random.randint(1, 3)):
        item = random.choice(MENU_ITEMS).copy()
        item["qty"] = random.randint(1, 2)
        items.append(item)
    return {
        "pickupTime": f"{random.randint(8, 19)}:{random.choice(['00', '15', '30', '45'])}",
        "pickupLocation": random.choice(LOCATIONS),
        "items": items,
        "user": {"email": email, "name": "Load Test", "phone": "600100200"},
        "loyaltyId": loyalty_id,
    }


# =============================================================================
# REQUESTS
# =============================================================================

async def send_adjustment(
    client: httpx.AsyncClient,
    loyalty_id: str,
    num: int,
) -> dict[str, Any]:
    delta = random_delta()
    start_time = time.time()

    try:
        response = await client.post(
            f"{API_BASE_URL}/api/milkpoints/adjust",
            json={"loyaltyId": loyalty_id, "delta": delta, "text": f"Simulation #{num}"},
            timeout=30.0,
        )
        elapsed = round(time.time() - start_time, 3)
        if response.status_code == 200:
            return {"num": num, "success": True, "delta": delta, "time": elapsed}
        return {"num": num, "success": False, "error": response.text[:100], "time": elapsed}
    except httpx.HTTPError as e:
        elapsed = round(time.time() - start_time, 3)
        return {"num": num, "success": False, "error": str(e)[:100], "time": elapsed}


async def send_order(client: httpx.AsyncClient, email: str, loyalty_id: str) -> bool:
    try:
        response = await client.post(
            f"{API_BASE_URL}/api/orders",
            json=generate_order_payload(email, loyalty_id),
            timeout=30.0,
        )
    except httpx.HTTPError:
        return False
    return response.status_code == 200


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(num_adjustments: int = TOTAL_ADJUSTMENTS, num_orders: int = 10) -> bool:
    """
    Run the simulation against a fresh account.

    Returns:
        True if the final balance and history match the applied deltas
    """
    print("=" * 70)
    print("🔥 LOYALTY LEDGER CONCURRENCY SIMULATION")
    print("=" * 70)
    print(f"📋 Adjustments: {num_adjustments}, orders: {num_orders}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    email = f"sim-{int(time.time())}-{random.randint(1000, 9999)}@example.com"

    async with httpx.AsyncClient() as client:
        response = await client.get(f"{API_BASE_URL}/api/health")
        if response.status_code != 200:
            print(f"❌ Health check failed: {response.text}")
            return False
        print(f"\n✅ Health: {response.json()}")

        response = await client.post(f"{API_BASE_URL}/api/auth/login", json={"email": email})
        if response.status_code != 200:
            print(f"❌ Login failed: {response.text}")
            return False
        loyalty_id = response.json()["user"]["loyaltyId"]
        print(f"👤 Account {email} with loyalty id {loyalty_id}")

        print("\n🚀 Firing concurrent requests...\n")
        start_time = time.time()
        adjustments = [send_adjustment(client, loyalty_id, i + 1) for i in range(num_adjustments)]
        orders = [send_order(client, email, loyalty_id) for _ in range(num_orders)]
        results = await asyncio.gather(*adjustments)
        order_results = await asyncio.gather(*orders)
        total_time = round(time.time() - start_time, 2)

        response = await client.get(f"{API_BASE_URL}/api/milkpoints/{loyalty_id}")
        ledger = response.json()

    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]
    expected = sum(r["delta"] for r in successful)

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Successful adjustments: {len(successful)}/{num_adjustments}")
    print(f"❌ Failed adjustments: {len(failed)}/{num_adjustments}")
    print(f"🧾 Orders accepted: {sum(order_results)}/{num_orders}")
    print(f"⏱️  Total Time: {total_time}s")

    if successful:
        avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
        print(f"\n📈 Average Response: {avg_time}s")
        print(f"   Fastest: {min(r['time'] for r in successful)}s")
        print(f"   Slowest: {max(r['time'] for r in successful)}s")

    if failed:
        print("\n⚠️  Failed adjustment details (showing first 5):")
        for f in failed[:5]:
            print(f"   #{f['num']}: {f.get('error', 'Unknown error')}")

    balance_ok = ledger.get("points") == expected
    history_ok = len(ledger.get("history", [])) == len(successful)

    print("\n" + "=" * 70)
    print("🔍 VERIFICATION")
    print("=" * 70)
    print(f"{'✅' if balance_ok else '❌'} Balance {ledger.get('points')} (expected {expected})")
    print(f"{'✅' if history_ok else '❌'} History entries {len(ledger.get('history', []))} (expected {len(successful)})")
    print("=" * 70)

    return balance_ok and history_ok


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Loyalty ledger concurrency simulation")
    parser.add_argument("--adjustments", type=int, default=TOTAL_ADJUSTMENTS, help="Number of points adjustments")
    parser.add_argument("--orders", type=int, default=10, help="Number of orders sent alongside")
    parser.add_argument("--url", default=API_BASE_URL, help="Server base URL")
    args = parser.parse_args()

    API_BASE_URL = args.url.rstrip("/")

    ok = asyncio.run(run_simulation(args.adjustments, args.orders))
    sys.exit(0 if ok else 1)
