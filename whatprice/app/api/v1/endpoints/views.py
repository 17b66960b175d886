"""
View Tracking API Endpoints.

Called by the storefront: record a page view, report time on page,
report a contact click.
"""

import logging
import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from sqlalchemy.exc import SQLAlchemyError

from whatprice.app.core.dependencies import get_charging_service, get_view_engine
from whatprice.app.db.session import Database, get_database
from whatprice.app.domain.billing.cpv_charging import CpvChargingService
from whatprice.app.domain.billing.metrics_aggregator import MetricsAggregator
from whatprice.app.domain.billing.view_qualification import ViewQualificationEngine
from whatprice.app.utils.date_utils import utcnow
from whatprice.app.schemas.views import (
    ViewCreate, ViewCreateResponse,
    ViewQualifyRequest, ViewQualifyResponse,
    ViewClickRequest, ViewClickResponse
)

logger = logging.getLogger("whatprice.views")

router = APIRouter(prefix="/views", tags=["Views"])


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


async def refresh_vendor_day(database: Database, vendor_id: int, day: date) -> None:
    """Background rollup after a charge. Failures are logged, never raised."""
    try:
        async with database.session() as db:
            await MetricsAggregator.rollup_vendor_day(db, vendor_id, day)
            await db.commit()
    except SQLAlchemyError:
        logger.exception("Metrics rollup failed", extra={"vendor_id": vendor_id, "day": day.isoformat()})


@router.post("", response_model=ViewCreateResponse, status_code=status.HTTP_201_CREATED)
async def record_view(
    payload: ViewCreate,
    request: Request,
    engine: ViewQualificationEngine = Depends(get_view_engine)
):
    """
    Record a product page view.

    User agent, client IP and referrer come from the request headers.
    A session id is generated when the client has none yet.
    """
    recorded = await engine.record_product_view(
        product_id=payload.product_id,
        session_id=payload.session_id or str(uuid.uuid4()),
        view_type=payload.view_type,
        user_agent=request.headers.get("user-agent"),
        ip_address=_client_ip(request),
        master_product_id=payload.master_product_id,
        user_id=payload.user_id,
        referrer=request.headers.get("referer"),
        search_query=payload.search_query,
    )
    return ViewCreateResponse(
        view_id=recorded.view_id,
        session_id=recorded.session_id,
        is_duplicate=recorded.is_duplicate,
        is_bot=recorded.is_bot,
    )


@router.post("/qualify", response_model=ViewQualifyResponse)
async def qualify_view(
    payload: ViewQualifyRequest,
    background_tasks: BackgroundTasks,
    service: CpvChargingService = Depends(get_charging_service),
    engine: ViewQualificationEngine = Depends(get_view_engine),
    database: Database = Depends(get_database)
):
    """
    Report time on page. Charges the view when it qualifies.

    Unknown views answer success=false rather than 404.
    """
    result = await service.qualify_and_charge(
        payload.view_id, payload.duration, payload.scroll_depth
    )

    if result.success and payload.clicked_contact:
        await engine.record_contact_click(payload.view_id)

    if result.charged:
        # The row to refresh is the day the view happened, not the day it qualified
        viewed_at = result.charge.viewed_at or utcnow()
        background_tasks.add_task(
            refresh_vendor_day, database, result.charge.vendor_id, viewed_at.date()
        )

    return ViewQualifyResponse(
        success=result.success,
        charged=result.charged,
        reason=result.reason,
    )


@router.post("/click", response_model=ViewClickResponse)
async def record_click(
    payload: ViewClickRequest,
    engine: ViewQualificationEngine = Depends(get_view_engine)
):
    """Record a contact click. Never affects billing."""
    return ViewClickResponse(success=await engine.record_contact_click(payload.view_id))
