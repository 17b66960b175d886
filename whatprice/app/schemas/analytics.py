"""
Analytics Schemas.

View statistics, daily rollups and chart data for vendor dashboards.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ViewStats(BaseModel):
    """Raw-view statistics for one vendor over a time window (bots excluded)."""
    total_views: int = 0
    qualified_views: int = 0
    unique_visitors: int = 0
    contact_clicks: int = 0
    total_cpv_charged: Decimal = Decimal("0.00")
    avg_view_duration: float = 0.0
    qualification_rate: int = 0  # percent, rounded
    ctr: float = 0.0  # percent, one decimal
    by_device: Dict[str, int] = Field(default_factory=dict)
    by_source: Dict[str, int] = Field(default_factory=dict)


class ComparisonVendorStats(BaseModel):
    """One vendor's share of comparison traffic for a catalog entry."""
    vendor_id: int
    vendor_name: str
    views: int
    clicks: int
    ctr: float


class RangeSummary(BaseModel):
    """Sum of daily rollups over a date range."""
    total_views: int = 0
    qualified_views: int = 0
    unique_visitors: int = 0
    credits_spent: Decimal = Decimal("0.00")
    contact_clicks: int = 0
    avg_view_duration: float = 0.0
    days: int = 0
    avg_daily_views: float = 0.0
    ctr: float = 0.0


class ChartPoint(BaseModel):
    date: date
    total_views: int
    credits_spent: Decimal
    contact_clicks: int
    ctr: float


class DailyMetricsResponse(BaseModel):
    """Stored per-vendor-per-day rollup."""
    vendor_id: int
    date: date
    total_views: int
    qualified_views: int
    unique_visitors: int
    comparison_views: int
    direct_views: int
    search_views: int
    category_views: int
    mobile_views: int
    tablet_views: int
    desktop_views: int
    views_charged: int
    credits_spent: Decimal
    avg_cpv_bid: Decimal
    avg_view_duration: float
    contact_clicks: int
    ctr: float
    credits_purchased: Decimal
    graduation_tier: Optional[str] = None

    class Config:
        from_attributes = True


class AnalyticsPeriod(BaseModel):
    start: datetime
    end: datetime


class VendorAnalyticsResponse(BaseModel):
    vendor_id: int
    period: AnalyticsPeriod
    summary: ViewStats
    rollup: RangeSummary
    chart: List[ChartPoint]


class RollupRequest(BaseModel):
    """Day to roll up; defaults to today (UTC)."""
    day: Optional[date] = None


class RollupResponse(BaseModel):
    day: date
    vendors_rolled_up: int


class PurgeResponse(BaseModel):
    cutoff: datetime
    days_rolled_up: int
    views_deleted: int
