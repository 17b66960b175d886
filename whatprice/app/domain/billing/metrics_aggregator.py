"""
Metrics Aggregator.

Per-vendor-per-day rollups and dashboard reporting.
Reads committed views and transactions only; the only table it writes
is vendor_metrics. Bot views are excluded from every view statistic.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, func, case, distinct, union
from sqlalchemy.ext.asyncio import AsyncSession

from whatprice.app.domain.billing.pricing import CENT
from whatprice.app.models.billing_enums import (
    DeviceType, TransactionStatus, TransactionType, ViewType
)
from whatprice.app.models.product_view import ProductView
from whatprice.app.models.vendor import Vendor
from whatprice.app.models.vendor_metrics import VendorMetrics
from whatprice.app.models.view_transaction import ViewTransaction
from whatprice.app.schemas.analytics import (
    ChartPoint, ComparisonVendorStats, RangeSummary, ViewStats
)
from whatprice.app.utils.date_utils import day_window, utcnow


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT)


def _count_if(condition):
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


def _ctr(clicks: int, views: int) -> float:
    """Click-through rate in percent, one decimal."""
    if not views:
        return 0.0
    return round(clicks / views * 100, 1)


class MetricsAggregator:

    @staticmethod
    def _human_views(vendor_id: int, start: datetime, end: datetime):
        return (
            ProductView.vendor_id == vendor_id,
            ProductView.timestamp >= start,
            ProductView.timestamp < end,
            ProductView.is_bot == False,  # noqa: E712
        )

    # --- Rollups ---

    @staticmethod
    async def rollup_vendor_day(db: AsyncSession, vendor_id: int, day: date) -> VendorMetrics:
        """
        Recompute one vendor's row for one UTC day from the raw views.

        Idempotent: re-running overwrites the row with fresh totals.
        The caller commits.
        """
        start, end = day_window(day)
        conditions = MetricsAggregator._human_views(vendor_id, start, end)

        stmt = select(
            func.count(ProductView.id).label("total_views"),
            _count_if(ProductView.is_qualified_view == True).label("qualified_views"),  # noqa: E712
            func.count(distinct(ProductView.session_id)).label("unique_visitors"),
            _count_if(ProductView.view_type == ViewType.COMPARISON).label("comparison_views"),
            _count_if(ProductView.view_type == ViewType.DIRECT).label("direct_views"),
            _count_if(ProductView.view_type == ViewType.SEARCH).label("search_views"),
            _count_if(ProductView.view_type == ViewType.CATEGORY).label("category_views"),
            _count_if(ProductView.device_type == DeviceType.MOBILE).label("mobile_views"),
            _count_if(ProductView.device_type == DeviceType.TABLET).label("tablet_views"),
            _count_if(ProductView.device_type == DeviceType.DESKTOP).label("desktop_views"),
            _count_if(ProductView.cpv_charged == True).label("views_charged"),  # noqa: E712
            func.coalesce(func.sum(case((ProductView.cpv_charged == True, ProductView.cpv_amount), else_=0)), 0).label("credits_spent"),  # noqa: E712
            func.avg(case((ProductView.cpv_charged == True, ProductView.vendor_bid_amount), else_=None)).label("avg_cpv_bid"),  # noqa: E712
            func.coalesce(func.avg(ProductView.view_duration), 0).label("avg_view_duration"),
            _count_if(ProductView.clicked_contact == True).label("contact_clicks"),  # noqa: E712
        ).where(*conditions)
        row = (await db.execute(stmt)).one()

        purchased = (await db.execute(
            select(func.coalesce(func.sum(ViewTransaction.credits_added), 0)).where(
                ViewTransaction.vendor_id == vendor_id,
                ViewTransaction.transaction_type == TransactionType.PURCHASE,
                ViewTransaction.status == TransactionStatus.COMPLETED,
                ViewTransaction.created_at >= start,
                ViewTransaction.created_at < end,
            )
        )).scalar()

        vendor = await db.get(Vendor, vendor_id)

        result = await db.execute(
            select(VendorMetrics).where(
                VendorMetrics.vendor_id == vendor_id,
                VendorMetrics.date == day,
            )
        )
        metrics = result.scalar_one_or_none()
        if metrics is None:
            metrics = VendorMetrics(vendor_id=vendor_id, date=day)
            db.add(metrics)

        metrics.total_views = row.total_views
        metrics.qualified_views = row.qualified_views
        metrics.unique_visitors = row.unique_visitors
        metrics.comparison_views = row.comparison_views
        metrics.direct_views = row.direct_views
        metrics.search_views = row.search_views
        metrics.category_views = row.category_views
        metrics.mobile_views = row.mobile_views
        metrics.tablet_views = row.tablet_views
        metrics.desktop_views = row.desktop_views
        metrics.views_charged = row.views_charged
        metrics.credits_spent = _money(row.credits_spent)
        metrics.avg_cpv_bid = _money(row.avg_cpv_bid)
        metrics.avg_view_duration = round(float(row.avg_view_duration), 1)
        metrics.contact_clicks = row.contact_clicks
        metrics.ctr = _ctr(row.contact_clicks, row.total_views)
        metrics.credits_purchased = _money(purchased)
        metrics.graduation_tier = vendor.graduation_tier.value if vendor else None

        await db.flush()
        return metrics

    @staticmethod
    async def vendors_active_on(db: AsyncSession, day: date) -> List[int]:
        """Vendors with any view or transaction on the given UTC day."""
        start, end = day_window(day)
        stmt = union(
            select(ProductView.vendor_id).where(
                ProductView.timestamp >= start, ProductView.timestamp < end
            ),
            select(ViewTransaction.vendor_id).where(
                ViewTransaction.created_at >= start, ViewTransaction.created_at < end
            ),
        )
        return sorted(vendor_id for (vendor_id,) in await db.execute(stmt))

    @staticmethod
    async def rollup_day(db: AsyncSession, day: date) -> List[VendorMetrics]:
        """Roll up every vendor active on the day. The caller commits."""
        rows = []
        for vendor_id in await MetricsAggregator.vendors_active_on(db, day):
            rows.append(await MetricsAggregator.rollup_vendor_day(db, vendor_id, day))
        return rows

    # --- Reporting ---

    @staticmethod
    async def get_vendor_view_stats(
        db: AsyncSession,
        vendor_id: int,
        start: datetime,
        end: datetime,
    ) -> ViewStats:
        """Summary straight from the raw views in [start, end)."""
        conditions = MetricsAggregator._human_views(vendor_id, start, end)

        row = (await db.execute(
            select(
                func.count(ProductView.id).label("total_views"),
                _count_if(ProductView.is_qualified_view == True).label("qualified_views"),  # noqa: E712
                func.count(distinct(ProductView.session_id)).label("unique_visitors"),
                _count_if(ProductView.clicked_contact == True).label("contact_clicks"),  # noqa: E712
                func.coalesce(func.sum(case((ProductView.cpv_charged == True, ProductView.cpv_amount), else_=0)), 0).label("total_cpv_charged"),  # noqa: E712
                func.coalesce(func.avg(ProductView.view_duration), 0).label("avg_view_duration"),
            ).where(*conditions)
        )).one()

        by_device = {
            device.value: count
            for device, count in await db.execute(
                select(ProductView.device_type, func.count(ProductView.id))
                .where(*conditions)
                .group_by(ProductView.device_type)
            )
        }
        by_source = {
            view_type.value: count
            for view_type, count in await db.execute(
                select(ProductView.view_type, func.count(ProductView.id))
                .where(*conditions)
                .group_by(ProductView.view_type)
            )
        }

        total = row.total_views
        return ViewStats(
            total_views=total,
            qualified_views=row.qualified_views,
            unique_visitors=row.unique_visitors,
            contact_clicks=row.contact_clicks,
            total_cpv_charged=_money(row.total_cpv_charged),
            avg_view_duration=round(float(row.avg_view_duration), 1),
            qualification_rate=round(row.qualified_views / total * 100) if total else 0,
            ctr=_ctr(row.contact_clicks, total),
            by_device=by_device,
            by_source=by_source,
        )

    @staticmethod
    async def get_comparison_stats(
        db: AsyncSession,
        master_product_id: int,
        start: datetime,
        end: datetime,
    ) -> List[ComparisonVendorStats]:
        """How comparison traffic for one catalog entry split across vendors."""
        clicks = _count_if(ProductView.clicked_contact == True).label("clicks")  # noqa: E712
        views = func.count(ProductView.id).label("views")
        stmt = (
            select(ProductView.vendor_id, Vendor.store_name, views, clicks)
            .join(Vendor, Vendor.id == ProductView.vendor_id)
            .where(
                ProductView.master_product_id == master_product_id,
                ProductView.view_type == ViewType.COMPARISON,
                ProductView.timestamp >= start,
                ProductView.timestamp < end,
                ProductView.is_bot == False,  # noqa: E712
            )
            .group_by(ProductView.vendor_id, Vendor.store_name)
            .order_by(views.desc(), ProductView.vendor_id)
        )
        return [
            ComparisonVendorStats(
                vendor_id=row.vendor_id,
                vendor_name=row.store_name,
                views=row.views,
                clicks=row.clicks,
                ctr=_ctr(row.clicks, row.views),
            )
            for row in await db.execute(stmt)
        ]

    @staticmethod
    async def aggregate_range(
        db: AsyncSession,
        vendor_id: int,
        start_date: date,
        end_date: date,
    ) -> RangeSummary:
        """Totals over stored daily rollups, both ends inclusive."""
        row = (await db.execute(
            select(
                func.coalesce(func.sum(VendorMetrics.total_views), 0).label("total_views"),
                func.coalesce(func.sum(VendorMetrics.qualified_views), 0).label("qualified_views"),
                func.coalesce(func.sum(VendorMetrics.unique_visitors), 0).label("unique_visitors"),
                func.coalesce(func.sum(VendorMetrics.credits_spent), 0).label("credits_spent"),
                func.coalesce(func.sum(VendorMetrics.contact_clicks), 0).label("contact_clicks"),
                func.coalesce(func.avg(VendorMetrics.avg_view_duration), 0).label("avg_view_duration"),
                func.count(VendorMetrics.id).label("days"),
            ).where(
                VendorMetrics.vendor_id == vendor_id,
                VendorMetrics.date >= start_date,
                VendorMetrics.date <= end_date,
            )
        )).one()

        return RangeSummary(
            total_views=row.total_views,
            qualified_views=row.qualified_views,
            unique_visitors=row.unique_visitors,
            credits_spent=_money(row.credits_spent),
            contact_clicks=row.contact_clicks,
            avg_view_duration=round(float(row.avg_view_duration), 1),
            days=row.days,
            avg_daily_views=round(row.total_views / row.days, 1) if row.days else 0.0,
            ctr=_ctr(row.contact_clicks, row.total_views),
        )

    @staticmethod
    async def get_chart_data(
        db: AsyncSession,
        vendor_id: int,
        days: int = 30,
        today: Optional[date] = None,
    ) -> List[ChartPoint]:
        """Daily rollups for the last `days` days, oldest first."""
        today = today or utcnow().date()
        since = today - timedelta(days=days)

        result = await db.execute(
            select(VendorMetrics)
            .where(VendorMetrics.vendor_id == vendor_id, VendorMetrics.date >= since)
            .order_by(VendorMetrics.date)
        )
        return [
            ChartPoint(
                date=m.date,
                total_views=m.total_views,
                credits_spent=_money(m.credits_spent),
                contact_clicks=m.contact_clicks,
                ctr=m.ctr,
            )
            for m in result.scalars().all()
        ]
