"""
Vendor database model.

Holds the vendor ledger: credit balance, graduation tier and daily budget.
"""

from sqlalchemy import Column, Integer, String, Numeric, DateTime, Boolean, Enum, CheckConstraint
from sqlalchemy.sql import func
from whatprice.app.db.session import Base
from whatprice.app.models.billing_enums import GraduationTier, VerificationStatus
from whatprice.app.utils.date_utils import utcnow


class Vendor(Base):
    """
    Vendor model.

    Billing fields are written only through the vendor ledger
    (whatprice.app.domain.billing.vendor_ledger), which guards every
    write with the `version` column.
    Vendors are never deleted, only soft-disabled via `is_active`.
    """
    __tablename__ = "vendors"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Identity
    store_name = Column(String(100), nullable=False)
    verification_status = Column(
        Enum(VerificationStatus), default=VerificationStatus.PENDING, nullable=False, index=True
    )
    is_active = Column(Boolean, default=True, nullable=False)

    # View Credits
    view_credits = Column(Numeric(14, 2), default=0, nullable=False)
    total_credits_purchased = Column(Numeric(14, 2), default=0, nullable=False)
    total_credits_used = Column(Numeric(14, 2), default=0, nullable=False)
    total_spent = Column(Numeric(14, 2), default=0, nullable=False)

    # Graduation Tier (PKR per 100 views)
    graduation_tier = Column(Enum(GraduationTier), default=GraduationTier.STARTER, nullable=False, index=True)
    tier_start_date = Column(DateTime, default=utcnow, nullable=False)

    # CPV Settings
    default_bid_amount = Column(Numeric(14, 2), default=10, nullable=False)
    max_daily_budget = Column(Numeric(14, 2), nullable=True)
    current_daily_spend = Column(Numeric(14, 2), default=0, nullable=False)
    last_daily_reset_at = Column(DateTime, default=utcnow, nullable=False)

    # Traffic counters
    total_views = Column(Integer, default=0, nullable=False)
    total_clicks = Column(Integer, default=0, nullable=False)

    # Optimistic concurrency
    version = Column(Integer, default=0, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("view_credits >= 0", name="ck_vendors_view_credits_non_negative"),
    )

    def __repr__(self):
        return f"<Vendor(id={self.id}, tier='{self.graduation_tier.value}', credits={self.view_credits})>"
