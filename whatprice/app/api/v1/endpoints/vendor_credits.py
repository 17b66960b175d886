"""
Vendor Credits API Endpoints.

Balance, tier, transaction history and credit purchases for one vendor.
"""

from datetime import datetime, timedelta
from math import ceil
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from whatprice.app.core.dependencies import get_charging_service
from whatprice.app.core.exceptions import ResourceNotFoundError
from whatprice.app.db.session import get_db
from whatprice.app.domain.billing.cpv_charging import CpvChargingService
from whatprice.app.domain.billing.pricing import (
    POPULAR_PACKAGE_INDEX, estimated_views, get_cpv_rate, get_credit_pricing,
    per_view_charge, resolve_graduation_tier
)
from whatprice.app.domain.billing.transaction_log import TransactionLog
from whatprice.app.models.billing_enums import TransactionType
from whatprice.app.models.vendor import Vendor
from whatprice.app.schemas.credits import (
    CreditPackageResponse, CreditPurchaseRequest, CreditsOverviewResponse,
    LedgerEntryResponse, Pagination, SpendingSummaryEntry, SpendingSummaryResponse,
    TransactionResponse
)
from whatprice.app.utils.date_utils import utcnow

router = APIRouter(prefix="/vendors", tags=["Vendor - Credits"])


def _pricing_packages():
    return [
        CreditPackageResponse(
            credits=package.credits,
            price=package.price,
            price_per_credit=package.price_per_credit,
            savings_percent=package.savings_percent,
            popular=index == POPULAR_PACKAGE_INDEX,
        )
        for index, package in enumerate(get_credit_pricing())
    ]


@router.get("/{vendor_id}/credits", response_model=CreditsOverviewResponse)
async def get_vendor_credits(
    vendor_id: int = Path(..., gt=0),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    transaction_type: Optional[TransactionType] = Query(None, alias="type"),
    db: AsyncSession = Depends(get_db)
):
    """
    Credit overview: balance, effective tier and rate, paginated history
    and the purchasable packages.

    The tier shown is the one the next charge would use, even if the
    stored tier has not been advanced yet.
    """
    vendor = await db.get(Vendor, vendor_id)
    if not vendor:
        raise ResourceNotFoundError("Vendor", vendor_id)

    tier = resolve_graduation_tier(vendor.tier_start_date, utcnow())

    entries, total = await TransactionLog.get_vendor_history(
        db,
        vendor_id,
        limit=limit,
        offset=(page - 1) * limit,
        transaction_type=transaction_type,
    )

    return CreditsOverviewResponse(
        vendor_id=vendor.id,
        view_credits=vendor.view_credits,
        total_credits_purchased=vendor.total_credits_purchased,
        total_credits_used=vendor.total_credits_used,
        total_spent=vendor.total_spent,
        graduation_tier=tier,
        tier_start_date=vendor.tier_start_date,
        cpv_rate=get_cpv_rate(tier),
        per_view_charge=per_view_charge(tier),
        estimated_views=estimated_views(vendor.view_credits, tier),
        max_daily_budget=vendor.max_daily_budget,
        current_daily_spend=vendor.current_daily_spend,
        transactions=[TransactionResponse.model_validate(entry) for entry in entries],
        pagination=Pagination(page=page, limit=limit, total=total, pages=ceil(total / limit)),
        pricing=_pricing_packages(),
    )


@router.post(
    "/{vendor_id}/credits/purchase",
    response_model=LedgerEntryResponse,
    status_code=status.HTTP_201_CREATED
)
async def purchase_credits(
    payload: CreditPurchaseRequest,
    vendor_id: int = Path(..., gt=0),
    service: CpvChargingService = Depends(get_charging_service)
):
    """
    Buy a credit package.

    Payment capture happens upstream; this records the completed purchase.
    """
    result = await service.purchase_credits(
        vendor_id,
        credits=payload.credits,
        amount=payload.amount,
        payment_method=payload.payment_method,
        payment_id=payload.payment_id,
    )
    return LedgerEntryResponse(
        transaction_id=result.transaction_id,
        balance_after=result.balance_after,
        invoice_number=result.invoice_number,
    )


@router.get("/{vendor_id}/transactions/summary", response_model=SpendingSummaryResponse)
async def get_spending_summary(
    vendor_id: int = Path(..., gt=0),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    """Completed entries grouped by type. Defaults to the last 30 days."""
    if not await db.get(Vendor, vendor_id):
        raise ResourceNotFoundError("Vendor", vendor_id)

    end = end or utcnow()
    start = start or end - timedelta(days=30)

    summary = await TransactionLog.get_spending_summary(db, vendor_id, start, end)
    return SpendingSummaryResponse(
        vendor_id=vendor_id,
        start=start,
        end=end,
        by_type={key: SpendingSummaryEntry(**value) for key, value in summary.items()},
    )
