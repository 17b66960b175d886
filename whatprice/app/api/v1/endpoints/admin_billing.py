"""
Admin Billing API Endpoints.

Bonus credits, refunds of view charges, metric rollups and view purges.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from whatprice.app.core.dependencies import get_charging_service
from whatprice.app.db.session import get_db
from whatprice.app.domain.billing.cpv_charging import CpvChargingService
from whatprice.app.domain.billing.metrics_aggregator import MetricsAggregator
from whatprice.app.schemas.analytics import PurgeResponse, RollupRequest, RollupResponse
from whatprice.app.schemas.credits import BonusRequest, LedgerEntryResponse, RefundRequest
from whatprice.app.services.retention import purge_expired_views, retention_cutoff
from whatprice.app.utils.date_utils import utcnow

logger = logging.getLogger("whatprice.admin")

router = APIRouter(prefix="/admin", tags=["Admin - Billing"])


@router.post(
    "/vendors/{vendor_id}/bonus",
    response_model=LedgerEntryResponse,
    status_code=status.HTTP_201_CREATED
)
async def grant_bonus_credits(
    payload: BonusRequest,
    vendor_id: int = Path(..., gt=0),
    service: CpvChargingService = Depends(get_charging_service)
):
    """
    Grant free view credits to a vendor.
    """
    result = await service.grant_bonus(
        vendor_id, payload.credits, payload.reason, processed_by=payload.processed_by
    )
    return LedgerEntryResponse(transaction_id=result.transaction_id, balance_after=result.balance_after)


@router.post(
    "/transactions/{transaction_id}/refund",
    response_model=LedgerEntryResponse,
    status_code=status.HTTP_201_CREATED
)
async def refund_transaction(
    transaction_id: int = Path(..., gt=0),
    payload: Optional[RefundRequest] = Body(None),
    service: CpvChargingService = Depends(get_charging_service)
):
    """
    Refund a view charge.

    Only completed deductions can be refunded, and only once.
    """
    payload = payload or RefundRequest()
    result = await service.refund_deduction(
        transaction_id, reason=payload.reason, processed_by=payload.processed_by
    )
    return LedgerEntryResponse(transaction_id=result.transaction_id, balance_after=result.balance_after)


@router.post("/metrics/rollup", response_model=RollupResponse)
async def rollup_metrics(
    payload: Optional[RollupRequest] = Body(None),
    db: AsyncSession = Depends(get_db)
):
    """
    Recompute daily vendor metrics for one day (default: today, UTC).
    """
    day = (payload.day if payload else None) or utcnow().date()

    # Raw views before the cutoff are gone; recomputing would zero the stored rollup
    if day < retention_cutoff().date():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Views for {day.isoformat()} have been purged; stored rollups are final"
        )

    rows = await MetricsAggregator.rollup_day(db, day)
    await db.commit()

    logger.info("Metrics rolled up", extra={"day": day.isoformat(), "vendors": len(rows)})
    return RollupResponse(day=day, vendors_rolled_up=len(rows))


@router.post("/views/purge", response_model=PurgeResponse)
async def purge_views(db: AsyncSession = Depends(get_db)):
    """
    Roll up and delete views older than the retention window.
    """
    return await purge_expired_views(db)
