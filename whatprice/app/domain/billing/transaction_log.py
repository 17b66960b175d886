"""
Transaction Log.

Append-only audit trail of vendor credit balance changes. Entries are
added to the caller's session; the caller owns the transaction so the
entry commits or rolls back together with the ledger write it describes.
"""

import random
import string
import time
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from whatprice.app.core.config import settings
from whatprice.app.domain.billing.pricing import CENT
from whatprice.app.models.billing_enums import (
    TransactionType, TransactionStatus, DeductionReason
)
from whatprice.app.models.view_transaction import ViewTransaction


def generate_invoice_number() -> str:
    """INV-<epoch ms>-<6 uppercase alphanumerics>."""
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=6))
    return f"INV-{int(time.time() * 1000)}-{suffix}"


class TransactionLog:

    @staticmethod
    async def append(
        db: AsyncSession,
        *,
        vendor_id: int,
        transaction_type: TransactionType,
        balance_before: Decimal,
        balance_change: Decimal,
        status: TransactionStatus = TransactionStatus.COMPLETED,
        description: Optional[str] = None,
        processed_by: Optional[str] = None,
        related_transaction_id: Optional[int] = None,
        **details,
    ) -> ViewTransaction:
        """
        Append one entry. balance_after is derived from the arguments only,
        never re-read from the vendor row.
        """
        balance_before = Decimal(balance_before)
        balance_change = Decimal(balance_change)

        entry = ViewTransaction(
            vendor_id=vendor_id,
            transaction_type=transaction_type,
            credit_balance_before=balance_before,
            credit_balance_after=balance_before + balance_change,
            credit_change=balance_change,
            status=status,
            description=description,
            processed_by=processed_by,
            related_transaction_id=related_transaction_id,
            **details,
        )
        db.add(entry)
        await db.flush()  # To get entry.id
        return entry

    @staticmethod
    async def create_purchase(
        db: AsyncSession,
        *,
        vendor_id: int,
        credits: Decimal,
        amount: Decimal,
        payment_method: str,
        current_balance: Decimal,
        payment_id: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> ViewTransaction:
        credits = Decimal(credits)
        amount = Decimal(amount)
        return await TransactionLog.append(
            db,
            vendor_id=vendor_id,
            transaction_type=TransactionType.PURCHASE,
            balance_before=current_balance,
            balance_change=credits,
            description=f"Purchased {credits} view credits",
            purchase_amount=amount,
            currency=currency or settings.currency,
            credits_added=credits,
            price_per_credit=(amount / credits).quantize(Decimal("0.0001")),
            payment_method=payment_method,
            payment_id=payment_id,
            invoice_number=generate_invoice_number(),
        )

    @staticmethod
    async def create_deduction(
        db: AsyncSession,
        *,
        vendor_id: int,
        credits: Decimal,
        current_balance: Decimal,
        reason: DeductionReason = DeductionReason.VIEW_CHARGED,
        source_view_id: Optional[int] = None,
        product_id: Optional[int] = None,
        description: Optional[str] = None,
    ) -> ViewTransaction:
        credits = Decimal(credits)
        return await TransactionLog.append(
            db,
            vendor_id=vendor_id,
            transaction_type=TransactionType.DEDUCTION,
            balance_before=current_balance,
            balance_change=-credits,
            description=description or f"Deducted {credits} credits for {reason.value}",
            source_view_id=source_view_id,
            product_id=product_id,
            credits_deducted=credits,
            deduction_reason=reason,
        )

    @staticmethod
    async def create_bonus(
        db: AsyncSession,
        *,
        vendor_id: int,
        credits: Decimal,
        reason: str,
        current_balance: Decimal,
        processed_by: Optional[str] = None,
    ) -> ViewTransaction:
        return await TransactionLog.append(
            db,
            vendor_id=vendor_id,
            transaction_type=TransactionType.BONUS,
            balance_before=current_balance,
            balance_change=Decimal(credits),
            description=f"Bonus: {reason}",
            processed_by=processed_by,
        )

    @staticmethod
    async def create_refund(
        db: AsyncSession,
        *,
        original: ViewTransaction,
        current_balance: Decimal,
        reason: Optional[str] = None,
        processed_by: Optional[str] = None,
    ) -> ViewTransaction:
        """
        Compensating entry for a deduction. Positive change equal to what
        the original deducted.
        """
        credits = Decimal(original.credits_deducted or -original.credit_change)
        return await TransactionLog.append(
            db,
            vendor_id=original.vendor_id,
            transaction_type=TransactionType.REFUND,
            balance_before=current_balance,
            balance_change=credits,
            description=f"Refund of transaction {original.id}",
            notes=reason,
            processed_by=processed_by,
            related_transaction_id=original.id,
            product_id=original.product_id,
        )

    @staticmethod
    async def mark_refunded(db: AsyncSession, transaction_id: int) -> bool:
        """
        COMPLETED -> REFUNDED, the only in-place transition allowed.
        Returns False if the entry was no longer COMPLETED.
        """
        result = await db.execute(
            update(ViewTransaction)
            .where(
                ViewTransaction.id == transaction_id,
                ViewTransaction.status == TransactionStatus.COMPLETED,
            )
            .values(status=TransactionStatus.REFUNDED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # --- Queries ---

    @staticmethod
    async def get(db: AsyncSession, transaction_id: int) -> Optional[ViewTransaction]:
        result = await db.execute(
            select(ViewTransaction).where(ViewTransaction.id == transaction_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_vendor_history(
        db: AsyncSession,
        vendor_id: int,
        limit: int = 50,
        offset: int = 0,
        transaction_type: Optional[TransactionType] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Tuple[List[ViewTransaction], int]:
        """
        Vendor's entries, newest first, with the unpaginated total.
        """
        conditions = [ViewTransaction.vendor_id == vendor_id]
        if transaction_type:
            conditions.append(ViewTransaction.transaction_type == transaction_type)
        if start_date:
            conditions.append(ViewTransaction.created_at >= start_date)
        if end_date:
            conditions.append(ViewTransaction.created_at <= end_date)

        query = (
            select(ViewTransaction)
            .where(*conditions)
            .order_by(ViewTransaction.created_at.desc(), ViewTransaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        entries = (await db.execute(query)).scalars().all()

        total = (await db.execute(
            select(func.count(ViewTransaction.id)).where(*conditions)
        )).scalar() or 0

        return list(entries), total

    @staticmethod
    async def get_spending_summary(
        db: AsyncSession,
        vendor_id: int,
        start_date: datetime,
        end_date: datetime,
    ) -> Dict[str, dict]:
        """
        Completed entries grouped by type: net credits, count, money paid.
        """
        stmt = select(
            ViewTransaction.transaction_type,
            func.coalesce(func.sum(ViewTransaction.credit_change), 0).label("total_credits"),
            func.count(ViewTransaction.id).label("count"),
            func.coalesce(func.sum(ViewTransaction.purchase_amount), 0).label("total_amount"),
        ).where(
            ViewTransaction.vendor_id == vendor_id,
            ViewTransaction.status == TransactionStatus.COMPLETED,
            ViewTransaction.created_at >= start_date,
            ViewTransaction.created_at <= end_date,
        ).group_by(ViewTransaction.transaction_type)

        summary = {}
        for row in await db.execute(stmt):
            summary[row.transaction_type.value] = {
                "total_credits": Decimal(str(row.total_credits)).quantize(CENT),
                "count": row.count,
                "total_amount": Decimal(str(row.total_amount)).quantize(CENT),
            }
        return summary
