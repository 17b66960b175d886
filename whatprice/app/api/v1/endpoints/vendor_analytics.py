"""
Analytics API Endpoints.

Read-only dashboard data for vendors and comparison pages.
"""

from datetime import timedelta
from typing import List, Literal

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from whatprice.app.core.exceptions import ResourceNotFoundError
from whatprice.app.db.session import get_db
from whatprice.app.domain.billing.metrics_aggregator import MetricsAggregator
from whatprice.app.models.vendor import Vendor
from whatprice.app.schemas.analytics import (
    AnalyticsPeriod, ComparisonVendorStats, VendorAnalyticsResponse
)
from whatprice.app.utils.date_utils import utcnow

vendor_router = APIRouter(prefix="/vendors", tags=["Vendor - Analytics"])
comparison_router = APIRouter(prefix="/master-products", tags=["Comparison - Analytics"])

Period = Literal["7d", "30d", "90d"]
PERIOD_DAYS = {"7d": 7, "30d": 30, "90d": 90}


@vendor_router.get("/{vendor_id}/analytics", response_model=VendorAnalyticsResponse)
async def get_vendor_analytics(
    vendor_id: int = Path(..., gt=0),
    period: Period = Query("7d"),
    db: AsyncSession = Depends(get_db)
):
    """Live view stats for the period plus the stored daily rollups."""
    if not await db.get(Vendor, vendor_id):
        raise ResourceNotFoundError("Vendor", vendor_id)

    days = PERIOD_DAYS[period]
    end = utcnow()
    start = end - timedelta(days=days)

    return VendorAnalyticsResponse(
        vendor_id=vendor_id,
        period=AnalyticsPeriod(start=start, end=end),
        summary=await MetricsAggregator.get_vendor_view_stats(db, vendor_id, start, end),
        rollup=await MetricsAggregator.aggregate_range(db, vendor_id, start.date(), end.date()),
        chart=await MetricsAggregator.get_chart_data(db, vendor_id, days, today=end.date()),
    )


@comparison_router.get("/{master_product_id}/comparison-stats", response_model=List[ComparisonVendorStats])
async def get_comparison_stats(
    master_product_id: int = Path(..., gt=0),
    period: Period = Query("30d"),
    db: AsyncSession = Depends(get_db)
):
    """Per-vendor views, clicks and CTR from comparison pages, busiest first."""
    end = utcnow()
    start = end - timedelta(days=PERIOD_DAYS[period])
    return await MetricsAggregator.get_comparison_stats(db, master_product_id, start, end)
