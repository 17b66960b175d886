"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from whatprice.app.api.v1.endpoints import (
    views, vendor_credits, vendor_analytics, admin_billing
)

router = APIRouter()

# Storefront view tracking
router.include_router(views.router)

# Vendor credits and transactions
router.include_router(vendor_credits.router)

# Analytics
router.include_router(vendor_analytics.vendor_router)
router.include_router(vendor_analytics.comparison_router)

# Admin billing operations
router.include_router(admin_billing.router)
