"""
Credit and transaction schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from whatprice.app.models.billing_enums import (
    GraduationTier, TransactionType, TransactionStatus
)


class CreditPackageResponse(BaseModel):
    credits: int
    price: Decimal
    price_per_credit: Decimal
    savings_percent: int
    popular: bool = False


class TransactionResponse(BaseModel):
    """Schema for displaying transaction log entries."""
    id: int
    vendor_id: int
    transaction_type: TransactionType
    status: TransactionStatus
    credit_balance_before: Decimal
    credit_balance_after: Decimal
    credit_change: Decimal
    description: Optional[str]
    purchase_details: Optional[dict] = None
    deduction_details: Optional[dict] = None
    related_transaction_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class CreditsOverviewResponse(BaseModel):
    """Balance, tier and recent history for the vendor credits page."""
    vendor_id: int
    view_credits: Decimal
    total_credits_purchased: Decimal
    total_credits_used: Decimal
    total_spent: Decimal
    graduation_tier: GraduationTier
    tier_start_date: datetime
    cpv_rate: int  # PKR per 100 views
    per_view_charge: Decimal
    estimated_views: int
    max_daily_budget: Optional[Decimal]
    current_daily_spend: Decimal
    transactions: List[TransactionResponse]
    pagination: Pagination
    pricing: List[CreditPackageResponse]


class CreditPurchaseRequest(BaseModel):
    """Must match a published credit package exactly."""
    credits: int = Field(..., gt=0)
    amount: Decimal = Field(..., gt=0)
    payment_method: str = Field(..., min_length=1, max_length=50)
    payment_id: Optional[str] = Field(None, max_length=100)


class LedgerEntryResponse(BaseModel):
    success: bool = True
    transaction_id: int
    balance_after: Decimal
    invoice_number: Optional[str] = None


class BonusRequest(BaseModel):
    credits: Decimal = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=255)
    processed_by: Optional[str] = Field(None, max_length=100)


class RefundRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)
    processed_by: Optional[str] = Field(None, max_length=100)


class SpendingSummaryEntry(BaseModel):
    total_credits: Decimal
    count: int
    total_amount: Decimal


class SpendingSummaryResponse(BaseModel):
    vendor_id: int
    start: datetime
    end: datetime
    by_type: Dict[str, SpendingSummaryEntry]
