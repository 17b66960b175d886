"""
Restart check for the billing ledger.

Seeds a vendor, charges one qualified view, restarts the API server and
confirms the balance, the deduction entry and the charged flag survived.
"""

import asyncio
import os
import signal
import subprocess
import sys
import time
import uuid
from decimal import Decimal

import httpx
from sqlalchemy import select

from whatprice.app.core.config import settings
from whatprice.app.db.session import Database
from whatprice.app.models.product import Product
from whatprice.seed_vendors import seed_vendors

BASE_URL = "http://127.0.0.1:8000"
API_PREFIX = "/v1"


def start_server():
    return subprocess.Popen(
        [sys.executable, "-m", "uvicorn", "whatprice.app.main:app", "--host", "127.0.0.1", "--port", "8000"],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        env={**os.environ, "DB_ECHO": "True"}
    )


def stop_server(proc):
    proc.send_signal(signal.SIGTERM)
    proc.wait()


def wait_for_server(retries=10, delay=2):
    url = f"{BASE_URL}/health"
    print(f"Waiting for server at {url}...")
    for _ in range(retries):
        try:
            if httpx.get(url).status_code == 200:
                print("✅ Server is up!")
                return True
        except httpx.TransportError:
            pass
        time.sleep(delay)
    print("❌ Server failed to start.")
    return False


async def seed():
    database = Database.from_settings(settings)
    try:
        vendor = await seed_vendors(database)
        async with database.session() as db:
            product_id = (await db.execute(
                select(Product.id).where(Product.vendor_id == vendor.id).order_by(Product.id)
            )).scalars().first()
        return vendor.id, product_id
    finally:
        await database.dispose()


def credits_overview(vendor_id):
    resp = httpx.get(f"{BASE_URL}{API_PREFIX}/vendors/{vendor_id}/credits")
    resp.raise_for_status()
    return resp.json()


def run_verification():
    print("\n--- [Step 1] Seeding Vendor ---")
    vendor_id, product_id = asyncio.run(seed())

    print("\n--- [Step 2] Starting Server (Initial) ---")
    proc = start_server()
    try:
        if not wait_for_server():
            stdout, stderr = proc.communicate(timeout=2)
            print("Server Stdout:", stdout.decode())
            print("Server Stderr:", stderr.decode())
            raise RuntimeError("Server start failed")

        print("\n--- [Step 3] Recording And Charging A View ---")
        resp = httpx.post(
            f"{BASE_URL}{API_PREFIX}/views",
            json={"product_id": product_id, "session_id": f"persist-{uuid.uuid4().hex[:8]}"},
        )
        resp.raise_for_status()
        view_id = resp.json()["view_id"]

        resp = httpx.post(
            f"{BASE_URL}{API_PREFIX}/views/qualify", json={"view_id": view_id, "duration": 6.0}
        )
        if not resp.json().get("charged"):
            raise RuntimeError(f"View was not charged: {resp.text}")
        balance_before = Decimal(credits_overview(vendor_id)["view_credits"])
        print(f"✅ View {view_id} charged, balance now {balance_before}")
    finally:
        print("\n--- [Step 4] Stopping Server ---")
        stop_server(proc)

    time.sleep(2)  # Wait for port release

    print("\n--- [Step 5] Restarting Server (Verification) ---")
    proc2 = start_server()
    try:
        if not wait_for_server():
            raise RuntimeError("Server restart failed")

        overview = credits_overview(vendor_id)
        balance_after = Decimal(overview["view_credits"])
        if balance_after != balance_before:
            raise RuntimeError(f"Balance changed across restart: {balance_before} -> {balance_after}")
        print(f"✅ Balance persisted ({balance_after})")

        deductions = [
            t for t in overview["transactions"]
            if (t["deduction_details"] or {}).get("source_view_id") == view_id
        ]
        if len(deductions) != 1:
            raise RuntimeError(f"Expected one deduction for view {view_id}, found {len(deductions)}")
        print("✅ Deduction entry persisted")

        resp = httpx.post(
            f"{BASE_URL}{API_PREFIX}/views/qualify", json={"view_id": view_id, "duration": 6.0}
        )
        if resp.json().get("reason") != "already_charged":
            raise RuntimeError(f"View charged twice after restart: {resp.text}")
        print("✅ Charge flag persisted (no double charge)")
    finally:
        print("\n--- [Step 6] Stopping Server ---")
        stop_server(proc2)


if __name__ == "__main__":
    run_verification()
