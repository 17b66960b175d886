"""
Vendor Ledger.

Pure balance operations over an immutable snapshot of a vendor's billing
fields, plus a store that commits a snapshot transition with a
version-guarded UPDATE. Operations never write; the caller commits the
resulting snapshot inside its own transaction.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from whatprice.app.core.exceptions import InvalidCreditAmountError
from whatprice.app.domain.billing.pricing import resolve_graduation_tier
from whatprice.app.models.billing_enums import GraduationTier
from whatprice.app.models.vendor import Vendor

ZERO = Decimal("0")


def _dec(value) -> Decimal:
    return Decimal(str(value)) if value is not None else ZERO


@dataclass(frozen=True)
class LedgerSnapshot:
    vendor_id: int
    version: int
    view_credits: Decimal
    total_credits_purchased: Decimal
    total_credits_used: Decimal
    total_spent: Decimal
    graduation_tier: GraduationTier
    tier_start_date: datetime
    default_bid_amount: Decimal
    max_daily_budget: Optional[Decimal]
    current_daily_spend: Decimal
    last_daily_reset_at: datetime

    @classmethod
    def from_vendor(cls, vendor: Vendor) -> "LedgerSnapshot":
        return cls(
            vendor_id=vendor.id,
            version=vendor.version,
            view_credits=_dec(vendor.view_credits),
            total_credits_purchased=_dec(vendor.total_credits_purchased),
            total_credits_used=_dec(vendor.total_credits_used),
            total_spent=_dec(vendor.total_spent),
            graduation_tier=GraduationTier(vendor.graduation_tier),
            tier_start_date=vendor.tier_start_date,
            default_bid_amount=_dec(vendor.default_bid_amount),
            max_daily_budget=_dec(vendor.max_daily_budget) if vendor.max_daily_budget is not None else None,
            current_daily_spend=_dec(vendor.current_daily_spend),
            last_daily_reset_at=vendor.last_daily_reset_at,
        )

    # --- Balance operations ---

    def debit(self, amount: Decimal) -> Optional["LedgerSnapshot"]:
        """
        Check-and-subtract. Returns None, leaving the ledger untouched,
        when the balance does not cover the amount.
        """
        amount = _dec(amount)
        if amount <= 0:
            raise InvalidCreditAmountError(details={"amount": str(amount)})
        if self.view_credits < amount:
            return None
        return replace(
            self,
            view_credits=self.view_credits - amount,
            total_credits_used=self.total_credits_used + amount,
            current_daily_spend=self.current_daily_spend + amount,
        )

    def credit(self, amount: Decimal, cost: Decimal) -> "LedgerSnapshot":
        """Add purchased credits and record what they cost."""
        amount, cost = _dec(amount), _dec(cost)
        if amount <= 0:
            raise InvalidCreditAmountError(details={"amount": str(amount)})
        if cost < 0:
            raise InvalidCreditAmountError("Credit cost cannot be negative", details={"cost": str(cost)})
        return replace(
            self,
            view_credits=self.view_credits + amount,
            total_credits_purchased=self.total_credits_purchased + amount,
            total_spent=self.total_spent + cost,
        )

    def grant(self, amount: Decimal) -> "LedgerSnapshot":
        """Add credits that were not bought (bonus, refund)."""
        amount = _dec(amount)
        if amount <= 0:
            raise InvalidCreditAmountError(details={"amount": str(amount)})
        return replace(self, view_credits=self.view_credits + amount)

    # --- Daily budget ---

    def can_spend(self, amount: Decimal) -> bool:
        if self.max_daily_budget is None:
            return True
        return self.current_daily_spend + _dec(amount) <= self.max_daily_budget

    def reset_daily_spend(self, now: datetime) -> "LedgerSnapshot":
        return replace(self, current_daily_spend=ZERO, last_daily_reset_at=now)

    def reset_daily_spend_if_due(self, now: datetime) -> "LedgerSnapshot":
        """Reset once a UTC calendar day boundary has passed since the last reset."""
        if self.last_daily_reset_at is None or self.last_daily_reset_at.date() < now.date():
            return self.reset_daily_spend(now)
        return self

    # --- Tier ---

    def with_current_tier(self, now: datetime) -> "LedgerSnapshot":
        tier = resolve_graduation_tier(self.tier_start_date, now)
        if tier == self.graduation_tier:
            return self
        return replace(self, graduation_tier=tier)

    def housekeep(self, now: datetime) -> "LedgerSnapshot":
        """Lazy tier graduation and daily reset, applied before any charge."""
        return self.with_current_tier(now).reset_daily_spend_if_due(now)


class VendorLedgerStore:
    """Loads ledger snapshots under a row lock and commits version-guarded transitions."""

    @staticmethod
    async def load(db: AsyncSession, vendor_id: int) -> Optional[LedgerSnapshot]:
        """
        Read the vendor row and lock it until the surrounding transaction ends.

        Concurrent writers for one vendor queue on the row lock on PostgreSQL;
        the version guard in `save` still catches anything that slips past
        (SQLite ignores FOR UPDATE).
        """
        result = await db.execute(
            select(Vendor).where(Vendor.id == vendor_id).with_for_update()
        )
        vendor = result.scalar_one_or_none()
        if not vendor:
            return None
        return LedgerSnapshot.from_vendor(vendor)

    @staticmethod
    async def save(db: AsyncSession, before: LedgerSnapshot, after: LedgerSnapshot) -> bool:
        """
        Write `after` only if the row still carries `before.version`.

        Returns False when another writer committed first; the caller must
        roll back its transaction and start over.
        """
        if after.view_credits < 0:
            raise ValueError("Ledger balance cannot go negative")

        result = await db.execute(
            update(Vendor)
            .where(Vendor.id == before.vendor_id, Vendor.version == before.version)
            .values(
                view_credits=after.view_credits,
                total_credits_purchased=after.total_credits_purchased,
                total_credits_used=after.total_credits_used,
                total_spent=after.total_spent,
                graduation_tier=after.graduation_tier,
                current_daily_spend=after.current_daily_spend,
                last_daily_reset_at=after.last_daily_reset_at,
                version=Vendor.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
