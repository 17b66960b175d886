"""
View retention.

Raw product views are kept for a fixed window; daily rollups in
vendor_metrics are kept forever. A day is always rolled up before its
views are deleted.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from whatprice.app.core.config import settings
from whatprice.app.domain.billing.metrics_aggregator import MetricsAggregator
from whatprice.app.models.product_view import ProductView
from whatprice.app.schemas.analytics import PurgeResponse
from whatprice.app.utils.date_utils import generate_date_range, start_of_day, utcnow

logger = logging.getLogger("whatprice.retention")


def retention_cutoff(now: Optional[datetime] = None) -> datetime:
    """Midnight (UTC) of the oldest day whose raw views are still kept."""
    now = now or utcnow()
    return start_of_day(now - timedelta(days=settings.view_retention_days))


async def purge_expired_views(db: AsyncSession, now: Optional[datetime] = None) -> PurgeResponse:
    """
    Roll up and delete views older than the retention window.

    Args:
        db: Database session
        now: Reference time (defaults to current UTC time)

    Returns:
        Cutoff used, number of vendor-days rolled up, views deleted

    Safe to re-run: once purged, the next run finds nothing before the cutoff.
    """
    cutoff = retention_cutoff(now)

    oldest = (await db.execute(
        select(func.min(ProductView.timestamp)).where(ProductView.timestamp < cutoff)
    )).scalar()

    if oldest is None:
        return PurgeResponse(cutoff=cutoff, days_rolled_up=0, views_deleted=0)

    rolled_up = 0
    for day in generate_date_range(oldest.date(), (cutoff - timedelta(days=1)).date()):
        for vendor_id in await MetricsAggregator.vendors_active_on(db, day):
            await MetricsAggregator.rollup_vendor_day(db, vendor_id, day)
            rolled_up += 1

    result = await db.execute(
        delete(ProductView)
        .where(ProductView.timestamp < cutoff)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    logger.info(
        "Expired views purged",
        extra={"cutoff": cutoff.isoformat(), "days_rolled_up": rolled_up, "views_deleted": result.rowcount}
    )

    return PurgeResponse(cutoff=cutoff, days_rolled_up=rolled_up, views_deleted=result.rowcount)
