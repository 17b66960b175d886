"""
Database seeding script for development vendors.

Creates a verified vendor with two listings and a welcome bonus so the
view and credit endpoints can be exercised locally.
Run this script after database is set up but before first use:

    python -m whatprice.seed_vendors
"""

import asyncio
from decimal import Decimal

from sqlalchemy import select

from whatprice.app.core.config import settings
from whatprice.app.db.session import Database
from whatprice.app.domain.billing.cpv_charging import CpvChargingService
from whatprice.app.models.billing_enums import VerificationStatus
from whatprice.app.models.product import Product
from whatprice.app.models.vendor import Vendor

# Imported for table registration
from whatprice.app.models.product_view import ProductView  # noqa: F401
from whatprice.app.models.view_transaction import ViewTransaction  # noqa: F401
from whatprice.app.models.vendor_metrics import VendorMetrics  # noqa: F401

SEED_STORE_NAME = "Hafeez Centre Mobiles"
WELCOME_BONUS = Decimal("100")


async def seed_vendors(database: Database) -> Vendor:
    """
    Seed one verified vendor.

    Creates:
    - 1 vendor on the starter tier
    - 2 products (one with its own bid, one on the vendor default)
    - 1 bonus ledger entry
    """
    await database.create_all()

    async with database.session() as db:
        print("🌱 Starting vendor seeding...")

        result = await db.execute(select(Vendor).where(Vendor.store_name == SEED_STORE_NAME))
        existing = result.scalar_one_or_none()
        if existing:
            print(f"⚠️  Vendor already exists (id={existing.id}), skipping")
            return existing

        vendor = Vendor(
            store_name=SEED_STORE_NAME,
            verification_status=VerificationStatus.VERIFIED,
            default_bid_amount=Decimal("10"),
        )
        db.add(vendor)
        await db.flush()

        db.add_all([
            Product(vendor_id=vendor.id, master_product_id=501, name="Galaxy A15", current_bid=Decimal("15")),
            Product(vendor_id=vendor.id, master_product_id=502, name="Redmi 13"),
        ])
        await db.commit()
        print(f"✅ Created vendor '{vendor.store_name}' (id={vendor.id}) with 2 products")

    service = CpvChargingService(database)
    entry = await service.grant_bonus(vendor.id, WELCOME_BONUS, reason="Development seed")
    print(f"✅ Granted {WELCOME_BONUS} bonus credits (balance: {entry.balance_after})")

    print("\n🎉 Vendor seeding completed successfully!")
    return vendor


async def main():
    database = Database.from_settings(settings)
    try:
        await seed_vendors(database)
    finally:
        await database.dispose()


if __name__ == "__main__":
    asyncio.run(main())
