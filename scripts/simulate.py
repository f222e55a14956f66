"""
Order Flow Simulation Script

Fires concurrent orders at a running server, then drives them through the
kitchen and payment lifecycle as staff, with a share of customer
cancellations racing the kitchen.

Run from project root: python scripts/simulate.py --orders 50
The server must share this process's JWT_SECRET_KEY.
"""

import argparse
import asyncio
import os
import random
import sys
import time
from datetime import datetime
from typing import Any, Optional

import httpx

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tableside.security import Role, create_access_token  # noqa: E402

API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8001")
TOTAL_ORDERS = 50

MENU_ITEMS = [
    {"menu_item_id": 1, "name": "Margherita", "price": 12.50},
    {"menu_item_id": 2, "name": "Diavola", "price": 14.00},
    {"menu_item_id": 3, "name": "Caesar Salad", "price": 8.90},
    {"menu_item_id": 4, "name": "Garlic Bread", "price": 4.50},
    {"menu_item_id": 5, "name": "Tiramisu", "price": 6.00},
    {"menu_item_id": 6, "name": "Sparkling Water", "price": 2.80},
]
NOTES = [None, "no onions", "extra crispy", "allergy: nuts", None, None]
KITCHEN_FLOW = ["preparing", "ready", "served"]
PAYMENT_METHODS = ["cash", "card", "online"]


def bearer(user_id: str, role: Role) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}


STAFF_HEADERS = bearer("sim-staff", Role.STAFF)


def generate_random_items() -> list[dict]:
    """Generate random order items."""
    items = []
    for item in random.sample(MENU_ITEMS, random.randint(1, 4)):
        item = item.copy()
        item["quantity"] = random.randint(1, 3)
        note = random.choice(NOTES)
        if note:
            item["note"] = note
        items.append(item)
    return items


async def place_order(
    client: httpx.AsyncClient,
    order_num: int,
    table_id: Optional[int],
) -> dict[str, Any]:
    """Place one order, as a guest or as a random customer."""
    customer = None if random.random() < 0.4 else f"sim-customer-{random.randint(1, 10)}"
    headers = bearer(customer, Role.CUSTOMER) if customer else {}
    payload = {"items": generate_random_items(), "meta": {"source": "simulation"}}
    if table_id:
        payload["table_id"] = table_id

    start_time = time.time()
    try:
        response = await client.post(f"{API_BASE_URL}/api/orders", json=payload, headers=headers)
        elapsed = round(time.time() - start_time, 3)
        if response.status_code == 201:
            data = response.json()["data"]
            return {
                "order_num": order_num,
                "success": True,
                "order_id": data["id"],
                "total": data["totals"]["total"],
                "customer": customer,
                "time": elapsed,
            }
        return {"order_num": order_num, "success": False, "error": response.text[:100], "time": elapsed}
    except httpx.HTTPError as e:
        elapsed = round(time.time() - start_time, 3)
        return {"order_num": order_num, "success": False, "error": str(e)[:100], "time": elapsed}


async def run_lifecycle(client: httpx.AsyncClient, placed: dict[str, Any]) -> str:
    """Walk an order through the kitchen; some customers try to cancel on the way."""
    order_id = placed["order_id"]
    cancel_at = random.choice([None, None, None, 0, 1, 3]) if placed["customer"] else None

    for step, status in enumerate(KITCHEN_FLOW):
        if cancel_at == step:
            response = await client.post(
                f"{API_BASE_URL}/api/orders/{order_id}/cancel",
                headers=bearer(placed["customer"], Role.CUSTOMER),
            )
            if response.status_code == 200:
                return "canceled"
        await client.patch(
            f"{API_BASE_URL}/api/orders/{order_id}/status",
            json={"status": status},
            headers=STAFF_HEADERS,
        )
        await asyncio.sleep(random.uniform(0.01, 0.1))

    response = await client.patch(
        f"{API_BASE_URL}/api/orders/{order_id}/payment",
        json={"status": "paid", "method": random.choice(PAYMENT_METHODS)},
        headers=STAFF_HEADERS,
    )
    final_status = response.json()["data"]["status"]

    if cancel_at == 3:
        # too late: completed orders refuse cancellation
        response = await client.post(
            f"{API_BASE_URL}/api/orders/{order_id}/cancel",
            headers=bearer(placed["customer"], Role.CUSTOMER),
        )
        if response.status_code != 404:
            print(f"   Order #{order_id}: late cancel was not refused ({response.status_code})")
            return "late-cancel-accepted"

    return final_status


async def run_simulation(num_orders: int = TOTAL_ORDERS, tables: int = 0) -> dict[str, Any]:
    print("=" * 70)
    print("ORDER FLOW SIMULATION")
    print("=" * 70)
    print(f"Total Orders: {num_orders}")
    print(f"Target: {API_BASE_URL}")
    print(f"Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()

    async with httpx.AsyncClient(timeout=30.0) as client:
        results = await asyncio.gather(*[
            place_order(client, i + 1, random.randint(1, tables) if tables else None)
            for i in range(num_orders)
        ])
        successful = [r for r in results if r["success"]]
        failed = [r for r in results if not r["success"]]

        outcomes = await asyncio.gather(*[run_lifecycle(client, r) for r in successful])

    total_time = round(time.time() - start_time, 2)

    print(f"\nPlaced: {len(successful)}/{num_orders}")
    print(f"Failed: {len(failed)}/{num_orders}")
    print(f"Completed: {outcomes.count('completed')}")
    print(f"Canceled: {outcomes.count('canceled')}")
    print(f"Total Time: {total_time}s")

    if successful:
        avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
        revenue = sum(r["total"] for r, o in zip(successful, outcomes) if o == "completed")
        print(f"\nAverage placement response: {avg_time}s")
        print(f"Revenue from completed orders: ${revenue:.2f}")

    if failed:
        print("\nFailed order details (first 5):")
        for f in failed[:5]:
            print(f"   Order #{f['order_num']}: {f.get('error', 'Unknown error')}")

    print("\nNext: python scripts/verify.py")
    print("=" * 70)

    return {
        "total": num_orders,
        "successful": len(successful),
        "failed": len(failed),
        "total_time": total_time,
    }


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Order Flow Simulation")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    parser.add_argument("--tables", type=int, default=0, help="Attach orders to tables 1..N (run seed.py first)")
    args = parser.parse_args()

    summary = asyncio.run(run_simulation(args.orders, args.tables))
    sys.exit(0 if summary["failed"] == 0 else 1)
