"""
CPV Charging Service.

Turns a qualified view into exactly one ledger debit and one deduction
entry. The vendor update, the view flag and the log entry commit in one
transaction; a lost race on either guard rolls everything back and the
whole attempt is retried from fresh state.

Also owns the other ledger-moving flows: credit purchases, bonuses and
refunds of earlier deductions.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from whatprice.app.core.config import settings
from whatprice.app.core.exceptions import (
    BillingPersistenceError,
    InvalidCreditPackageError,
    LedgerConflictError,
    ResourceNotFoundError,
    TransactionNotRefundableError,
)
from whatprice.app.core.reliability import retry_on_conflict
from whatprice.app.db.session import Database
from whatprice.app.domain.billing.pricing import find_credit_package, per_view_charge
from whatprice.app.domain.billing.transaction_log import TransactionLog
from whatprice.app.domain.billing.vendor_ledger import LedgerSnapshot, VendorLedgerStore
from whatprice.app.domain.billing.view_qualification import ViewQualificationEngine
from whatprice.app.models.billing_enums import (
    ChargeRefusal, TransactionStatus, TransactionType
)
from whatprice.app.models.product import Product
from whatprice.app.models.product_view import ProductView
from whatprice.app.utils.date_utils import utcnow

logger = logging.getLogger("whatprice.billing")


@dataclass
class ChargeResult:
    charged: bool
    reason: Optional[ChargeRefusal] = None
    amount: Optional[Decimal] = None
    balance_after: Optional[Decimal] = None
    transaction_id: Optional[int] = None
    view_id: Optional[int] = None
    vendor_id: Optional[int] = None
    product_id: Optional[int] = None
    viewed_at: Optional[datetime] = None

    @classmethod
    def refused(cls, reason: ChargeRefusal, view: Optional[ProductView] = None) -> "ChargeResult":
        return cls(
            charged=False,
            reason=reason,
            view_id=view.id if view else None,
            vendor_id=view.vendor_id if view else None,
            product_id=view.product_id if view else None,
        )


@dataclass
class QualifyResult:
    success: bool
    charged: bool = False
    reason: Optional[ChargeRefusal] = None
    charge: Optional[ChargeResult] = None


@dataclass
class LedgerEntryResult:
    transaction_id: int
    balance_after: Decimal
    invoice_number: Optional[str] = None


class CpvChargingService:
    """
    Charges qualified views against vendor credit balances.

    Business refusals come back as ChargeResult values. Only storage
    failures raise (BillingPersistenceError, retryable).
    """

    def __init__(self, database: Database, max_attempts: Optional[int] = None):
        self.database = database
        self.max_attempts = max_attempts or settings.charge_max_attempts
        self.deadline_seconds = settings.charge_retry_deadline_seconds

    async def _run(self, unit_of_work, operation: str, **context):
        try:
            return await retry_on_conflict(
                unit_of_work,
                attempts=self.max_attempts,
                operation=operation,
                deadline_seconds=self.deadline_seconds,
                base_delay=settings.charge_retry_base_delay,
                max_delay=settings.charge_retry_max_delay,
            )
        except BillingPersistenceError:
            logger.error("Billing write abandoned", extra={"operation": operation, **context})
            raise
        except SQLAlchemyError as e:
            logger.error(
                "Billing write failed",
                extra={"operation": operation, "error": str(e), **context}
            )
            raise BillingPersistenceError(details={"operation": operation, **context}) from e

    # --- Charging ---

    async def _charge_once(self, view_id: int) -> ChargeResult:
        async with self.database.session() as db:
            async with db.begin():
                view = await db.get(ProductView, view_id)
                if not view:
                    return ChargeResult.refused(ChargeRefusal.VIEW_NOT_FOUND)
                if view.cpv_charged:
                    return ChargeResult.refused(ChargeRefusal.ALREADY_CHARGED, view)
                if not view.is_billable:
                    return ChargeResult.refused(ChargeRefusal.NOT_BILLABLE, view)

                before = await VendorLedgerStore.load(db, view.vendor_id)
                if before is None:
                    return ChargeResult.refused(ChargeRefusal.VENDOR_NOT_FOUND, view)

                now = utcnow()
                current = before.housekeep(now)
                charge = per_view_charge(current.graduation_tier)

                if not current.can_spend(charge):
                    return ChargeResult.refused(ChargeRefusal.DAILY_BUDGET_EXCEEDED, view)

                after = current.debit(charge)
                if after is None:
                    return ChargeResult.refused(ChargeRefusal.INSUFFICIENT_CREDITS, view)

                if not await VendorLedgerStore.save(db, before, after):
                    raise LedgerConflictError(f"vendor {before.vendor_id} version {before.version} is stale")

                product = await db.get(Product, view.product_id)
                bid = (product.current_bid if product else None) or current.default_bid_amount

                marked = await db.execute(
                    update(ProductView)
                    .where(ProductView.id == view.id, ProductView.cpv_charged == False)  # noqa: E712
                    .values(cpv_charged=True, cpv_amount=charge, vendor_bid_amount=bid)
                    .execution_options(synchronize_session=False)
                )
                if marked.rowcount != 1:
                    raise LedgerConflictError(f"view {view.id} was charged concurrently")

                entry = await TransactionLog.create_deduction(
                    db,
                    vendor_id=before.vendor_id,
                    credits=charge,
                    current_balance=current.view_credits,
                    source_view_id=view.id,
                    product_id=view.product_id,
                    description=f"Charged for view on {product.name}" if product else None,
                )

            return ChargeResult(
                charged=True,
                amount=charge,
                balance_after=after.view_credits,
                transaction_id=entry.id,
                view_id=view.id,
                vendor_id=view.vendor_id,
                product_id=view.product_id,
                viewed_at=view.timestamp,
            )

    async def _bump_product_counters(self, result: ChargeResult) -> None:
        async with self.database.session() as db:
            await db.execute(
                update(Product)
                .where(Product.id == result.product_id)
                .values(
                    qualified_views=Product.qualified_views + 1,
                    budget_spent=Product.budget_spent + result.amount,
                )
            )
            await db.commit()

    async def charge_qualified_view(self, view_id: int) -> ChargeResult:
        """
        Charge one qualified view at the vendor's current tier rate.

        Idempotent: a view is charged at most once no matter how many
        times or how concurrently this is called.

        Raises:
            BillingPersistenceError: the charge could not be committed
        """
        result = await self._run(
            lambda: self._charge_once(view_id), "charge_view", view_id=view_id
        )

        if not result.charged:
            logger.info(
                "View not charged",
                extra={"view_id": view_id, "vendor_id": result.vendor_id, "reason": result.reason.value}
            )
            return result

        logger.info(
            "View charged",
            extra={
                "view_id": view_id,
                "vendor_id": result.vendor_id,
                "amount": str(result.amount),
                "balance_after": str(result.balance_after),
                "transaction_id": result.transaction_id,
            }
        )

        try:
            await self._bump_product_counters(result)
        except SQLAlchemyError:
            # Counters are advisory; the charge itself is committed
            logger.exception("Product counter update failed", extra={"view_id": view_id})

        return result

    async def qualify_and_charge(
        self,
        view_id: int,
        duration: float,
        scroll_depth: Optional[float] = None,
    ) -> QualifyResult:
        """Record the reported duration and charge the view if it now qualifies."""
        engine = ViewQualificationEngine(self.database)
        if not await engine.qualify_view(view_id, duration, scroll_depth):
            return QualifyResult(success=False, reason=ChargeRefusal.VIEW_NOT_FOUND)

        charge = await self.charge_qualified_view(view_id)
        if charge.reason == ChargeRefusal.VIEW_NOT_FOUND:
            # Purged between qualify and charge
            return QualifyResult(success=False, reason=charge.reason, charge=charge)
        return QualifyResult(success=True, charged=charge.charged, reason=charge.reason, charge=charge)

    # --- Credits ---

    def _ledger_unit_of_work(self, vendor_id: int, transition, write_entry):
        """
        Load, transition and save one vendor's ledger, then append the entry.

        `transition(snapshot)` returns the new snapshot; `write_entry(db, before)`
        appends the log entry using the pre-transition balance.
        """
        async def unit_of_work():
            async with self.database.session() as db:
                async with db.begin():
                    before = await VendorLedgerStore.load(db, vendor_id)
                    if before is None:
                        raise ResourceNotFoundError("Vendor", vendor_id)
                    after = transition(before)
                    if not await VendorLedgerStore.save(db, before, after):
                        raise LedgerConflictError(f"vendor {vendor_id} version {before.version} is stale")
                    entry = await write_entry(db, before)
                return entry, after

        return unit_of_work

    async def purchase_credits(
        self,
        vendor_id: int,
        credits: int,
        amount: Decimal,
        payment_method: str,
        payment_id: Optional[str] = None,
    ) -> LedgerEntryResult:
        """
        Add a published credit package to the vendor's balance.

        Raises:
            InvalidCreditPackageError: credits/amount match no package
            ResourceNotFoundError: unknown vendor
        """
        package = find_credit_package(credits, amount)
        if package is None:
            raise InvalidCreditPackageError(credits, amount)

        async def write_entry(db, before: LedgerSnapshot):
            return await TransactionLog.create_purchase(
                db,
                vendor_id=vendor_id,
                credits=Decimal(package.credits),
                amount=package.price,
                payment_method=payment_method,
                payment_id=payment_id,
                current_balance=before.view_credits,
            )

        unit_of_work = self._ledger_unit_of_work(
            vendor_id,
            lambda snapshot: snapshot.credit(Decimal(package.credits), package.price),
            write_entry,
        )
        entry, after = await self._run(unit_of_work, "purchase_credits", vendor_id=vendor_id)

        logger.info(
            "Credits purchased",
            extra={
                "vendor_id": vendor_id,
                "credits": package.credits,
                "amount": str(package.price),
                "invoice_number": entry.invoice_number,
            }
        )
        return LedgerEntryResult(
            transaction_id=entry.id,
            balance_after=after.view_credits,
            invoice_number=entry.invoice_number,
        )

    async def grant_bonus(
        self,
        vendor_id: int,
        credits: Decimal,
        reason: str,
        processed_by: Optional[str] = None,
    ) -> LedgerEntryResult:
        """
        Raises:
            InvalidCreditAmountError: credits <= 0
            ResourceNotFoundError: unknown vendor
        """
        credits = Decimal(str(credits))

        async def write_entry(db, before: LedgerSnapshot):
            return await TransactionLog.create_bonus(
                db,
                vendor_id=vendor_id,
                credits=credits,
                reason=reason,
                current_balance=before.view_credits,
                processed_by=processed_by,
            )

        unit_of_work = self._ledger_unit_of_work(
            vendor_id, lambda snapshot: snapshot.grant(credits), write_entry
        )
        entry, after = await self._run(unit_of_work, "grant_bonus", vendor_id=vendor_id)

        logger.info(
            "Bonus credits granted",
            extra={"vendor_id": vendor_id, "credits": str(credits), "processed_by": processed_by}
        )
        return LedgerEntryResult(transaction_id=entry.id, balance_after=after.view_credits)

    async def refund_deduction(
        self,
        transaction_id: int,
        reason: Optional[str] = None,
        processed_by: Optional[str] = None,
    ) -> LedgerEntryResult:
        """
        Give back the credits of a completed deduction.

        Appends a refund entry linked to the original and moves the
        original to REFUNDED. A deduction is refunded at most once.

        Raises:
            ResourceNotFoundError: unknown transaction or vendor
            TransactionNotRefundableError: not a completed deduction
        """
        async def unit_of_work():
            async with self.database.session() as db:
                async with db.begin():
                    original = await TransactionLog.get(db, transaction_id)
                    if original is None:
                        raise ResourceNotFoundError("Transaction", transaction_id)
                    if original.transaction_type != TransactionType.DEDUCTION:
                        raise TransactionNotRefundableError(transaction_id, "not a deduction")
                    if original.status != TransactionStatus.COMPLETED:
                        raise TransactionNotRefundableError(
                            transaction_id, f"status is {original.status.value}"
                        )

                    before = await VendorLedgerStore.load(db, original.vendor_id)
                    if before is None:
                        raise ResourceNotFoundError("Vendor", original.vendor_id)

                    credits = Decimal(str(original.credits_deducted or -original.credit_change))
                    after = before.grant(credits)
                    if not await VendorLedgerStore.save(db, before, after):
                        raise LedgerConflictError(f"vendor {before.vendor_id} version {before.version} is stale")
                    if not await TransactionLog.mark_refunded(db, original.id):
                        raise LedgerConflictError(f"transaction {original.id} changed concurrently")

                    entry = await TransactionLog.create_refund(
                        db,
                        original=original,
                        current_balance=before.view_credits,
                        reason=reason,
                        processed_by=processed_by,
                    )
                return entry, after

        entry, after = await self._run(unit_of_work, "refund_deduction", transaction_id=transaction_id)

        logger.info(
            "Deduction refunded",
            extra={
                "transaction_id": transaction_id,
                "refund_id": entry.id,
                "vendor_id": entry.vendor_id,
                "credits": str(entry.credit_change),
            }
        )
        return LedgerEntryResult(transaction_id=entry.id, balance_after=after.view_credits)
