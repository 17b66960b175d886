"""
Transaction log tests.
"""

import re
from datetime import timedelta
from decimal import Decimal

import pytest

from whatprice.app.domain.billing.transaction_log import TransactionLog, generate_invoice_number
from whatprice.app.models.billing_enums import (
    DeductionReason, TransactionStatus, TransactionType
)
from whatprice.app.models.view_transaction import ViewTransaction
from whatprice.app.utils.date_utils import utcnow


def test_invoice_number_format():
    assert re.fullmatch(r"INV-\d{13}-[A-Z0-9]{6}", generate_invoice_number())


@pytest.mark.asyncio
async def test_append_derives_balance_after(db_session, make_vendor):
    vendor = await make_vendor()

    entry = await TransactionLog.append(
        db_session,
        vendor_id=vendor.id,
        transaction_type=TransactionType.ADJUSTMENT,
        balance_before=Decimal("5.00"),
        balance_change=Decimal("-1.25"),
    )
    await db_session.commit()

    assert entry.id is not None
    assert entry.credit_balance_after == Decimal("3.75")
    assert entry.status == TransactionStatus.COMPLETED


@pytest.mark.asyncio
async def test_purchase_entry_details(db_session, make_vendor):
    vendor = await make_vendor()

    entry = await TransactionLog.create_purchase(
        db_session,
        vendor_id=vendor.id,
        credits=Decimal("5000"),
        amount=Decimal("450"),
        payment_method="jazzcash",
        current_balance=Decimal("0"),
    )
    await db_session.commit()

    details = entry.purchase_details
    assert entry.credit_change == Decimal("5000")
    assert details["currency"] == "PKR"
    assert details["price_per_credit"] == Decimal("0.0900")
    assert details["invoice_number"].startswith("INV-")
    assert entry.deduction_details is None


@pytest.mark.asyncio
async def test_deduction_entry_details(db_session, make_vendor):
    vendor = await make_vendor()

    entry = await TransactionLog.create_deduction(
        db_session,
        vendor_id=vendor.id,
        credits=Decimal("0.10"),
        current_balance=Decimal("1.00"),
        source_view_id=77,
        product_id=3,
    )
    await db_session.commit()

    assert entry.credit_change == Decimal("-0.10")
    assert entry.credit_balance_after == Decimal("0.90")
    assert entry.deduction_details == {
        "source_view_id": 77,
        "product_id": 3,
        "credits_deducted": Decimal("0.10"),
        "reason": DeductionReason.VIEW_CHARGED.value,
    }


@pytest.mark.asyncio
async def test_mark_refunded_only_from_completed(db_session, make_vendor, reload):
    vendor = await make_vendor()
    entry = await TransactionLog.create_deduction(
        db_session, vendor_id=vendor.id, credits=Decimal("0.10"), current_balance=Decimal("1.00")
    )
    await db_session.commit()

    assert await TransactionLog.mark_refunded(db_session, entry.id)
    assert not await TransactionLog.mark_refunded(db_session, entry.id)
    await db_session.commit()

    assert (await reload(ViewTransaction, entry.id)).status == TransactionStatus.REFUNDED


@pytest.mark.asyncio
async def test_vendor_history_newest_first_with_total(db_session, make_vendor):
    vendor = await make_vendor()
    other = await make_vendor(store_name="Other")
    now = utcnow()

    for minutes in range(5):
        db_session.add(ViewTransaction(
            vendor_id=vendor.id,
            transaction_type=TransactionType.DEDUCTION,
            credit_balance_before=Decimal("1.00"),
            credit_balance_after=Decimal("0.90"),
            credit_change=Decimal("-0.10"),
            status=TransactionStatus.COMPLETED,
            created_at=now - timedelta(minutes=minutes),
            description=f"t-{minutes}",
        ))
    await TransactionLog.create_bonus(
        db_session, vendor_id=other.id, credits=Decimal("5"), reason="welcome", current_balance=Decimal("0")
    )
    await db_session.commit()

    entries, total = await TransactionLog.get_vendor_history(db_session, vendor.id, limit=2, offset=1)

    assert total == 5
    assert [e.description for e in entries] == ["t-1", "t-2"]

    bonuses, bonus_total = await TransactionLog.get_vendor_history(
        db_session, vendor.id, transaction_type=TransactionType.BONUS
    )
    assert bonuses == [] and bonus_total == 0


@pytest.mark.asyncio
async def test_spending_summary_groups_completed_entries(db_session, make_vendor):
    vendor = await make_vendor()

    await TransactionLog.create_purchase(
        db_session, vendor_id=vendor.id, credits=Decimal("1000"), amount=Decimal("100"),
        payment_method="card", current_balance=Decimal("0"),
    )
    for i in range(3):
        await TransactionLog.create_deduction(
            db_session, vendor_id=vendor.id, credits=Decimal("0.10"),
            current_balance=Decimal("1000") - Decimal("0.10") * i,
        )
    await TransactionLog.append(
        db_session,
        vendor_id=vendor.id,
        transaction_type=TransactionType.DEDUCTION,
        balance_before=Decimal("5"),
        balance_change=Decimal("-5"),
        status=TransactionStatus.FAILED,
    )
    await db_session.commit()

    now = utcnow()
    summary = await TransactionLog.get_spending_summary(
        db_session, vendor.id, now - timedelta(days=1), now + timedelta(minutes=1)
    )

    assert summary["purchase"] == {
        "total_credits": Decimal("1000.00"), "count": 1, "total_amount": Decimal("100.00")
    }
    assert summary["deduction"]["count"] == 3
    assert summary["deduction"]["total_credits"] == Decimal("-0.30")
