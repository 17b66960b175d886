"""
View Transaction database model.

Append-only log of every vendor credit balance change.
"""

from sqlalchemy import Column, Integer, String, Numeric, DateTime, Enum, ForeignKey, Index
from whatprice.app.db.session import Base
from whatprice.app.models.billing_enums import TransactionType, TransactionStatus, DeductionReason
from whatprice.app.utils.date_utils import utcnow


class ViewTransaction(Base):
    """
    View Transaction model.

    credit_balance_after == credit_balance_before + credit_change, and
    credit_balance_after is the vendor's balance at commit time.
    NO updates or deletions allowed, except a COMPLETED deduction moving
    to REFUNDED when its refund entry is appended.
    """
    __tablename__ = "view_transactions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    vendor_id = Column(Integer, ForeignKey('vendors.id'), nullable=False, index=True)
    transaction_type = Column(Enum(TransactionType), nullable=False)

    # Balance tracking
    credit_balance_before = Column(Numeric(14, 2), nullable=False)
    credit_balance_after = Column(Numeric(14, 2), nullable=False)
    credit_change = Column(Numeric(14, 2), nullable=False)

    # Status
    status = Column(Enum(TransactionStatus), default=TransactionStatus.PENDING, nullable=False)
    failure_reason = Column(String(255), nullable=True)

    # Purchase details
    purchase_amount = Column(Numeric(14, 2), nullable=True)
    currency = Column(String(3), nullable=True)
    credits_added = Column(Numeric(14, 2), nullable=True)
    price_per_credit = Column(Numeric(14, 4), nullable=True)
    payment_method = Column(String(50), nullable=True)
    payment_id = Column(String(100), nullable=True)
    invoice_number = Column(String(50), nullable=True, index=True)

    # Deduction details (one deduction per view at most)
    source_view_id = Column(Integer, nullable=True, unique=True)
    product_id = Column(Integer, nullable=True)
    credits_deducted = Column(Numeric(14, 2), nullable=True)
    deduction_reason = Column(Enum(DeductionReason), nullable=True)

    # Refund linkage
    related_transaction_id = Column(Integer, ForeignKey('view_transactions.id'), nullable=True, index=True)

    # Metadata
    description = Column(String(255), nullable=True)
    notes = Column(String(1000), nullable=True)
    processed_by = Column(String(100), nullable=True)

    # Timestamps (Immutable - no updated_at)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index('ix_view_transactions_vendor_created', 'vendor_id', 'created_at'),
        Index('ix_view_transactions_type_status', 'transaction_type', 'status'),
    )

    @property
    def purchase_details(self) -> dict | None:
        if self.transaction_type != TransactionType.PURCHASE:
            return None
        return {
            "amount": self.purchase_amount,
            "currency": self.currency,
            "credits_added": self.credits_added,
            "price_per_credit": self.price_per_credit,
            "payment_method": self.payment_method,
            "payment_id": self.payment_id,
            "invoice_number": self.invoice_number,
        }

    @property
    def deduction_details(self) -> dict | None:
        if self.transaction_type != TransactionType.DEDUCTION:
            return None
        return {
            "source_view_id": self.source_view_id,
            "product_id": self.product_id,
            "credits_deducted": self.credits_deducted,
            "reason": self.deduction_reason.value if self.deduction_reason else None,
        }

    def __repr__(self):
        return (
            f"<ViewTransaction(id={self.id}, type='{self.transaction_type.value}', "
            f"change={self.credit_change})>"
        )
