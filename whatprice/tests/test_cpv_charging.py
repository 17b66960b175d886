"""
CPV charging tests: idempotency, refusals, ledger/log consistency and
optimistic-lock retries.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from whatprice.app.core.exceptions import (
    BillingPersistenceError, InvalidCreditPackageError, ResourceNotFoundError,
    TransactionNotRefundableError
)
from whatprice.app.domain.billing.cpv_charging import CpvChargingService
from whatprice.app.domain.billing.transaction_log import TransactionLog
from whatprice.app.domain.billing.vendor_ledger import VendorLedgerStore
from whatprice.app.models.billing_enums import (
    ChargeRefusal, GraduationTier, TransactionStatus, TransactionType
)
from whatprice.app.models.product import Product
from whatprice.app.models.product_view import ProductView
from whatprice.app.models.vendor import Vendor
from whatprice.app.models.view_transaction import ViewTransaction
from whatprice.app.utils.date_utils import utcnow


async def count_transactions(db_session, vendor_id, transaction_type=None):
    query = select(func.count(ViewTransaction.id)).where(ViewTransaction.vendor_id == vendor_id)
    if transaction_type:
        query = query.where(ViewTransaction.transaction_type == transaction_type)
    return (await db_session.execute(query)).scalar()


@pytest.mark.asyncio
async def test_charge_debits_ledger_and_logs_once(
    database, db_session, make_vendor, make_product, make_view, reload
):
    vendor = await make_vendor(view_credits=Decimal("1.00"))
    product = await make_product(vendor, current_bid=Decimal("12"))
    view = await make_view(product)
    service = CpvChargingService(database)

    result = await service.charge_qualified_view(view.id)

    assert result.charged
    assert result.amount == Decimal("0.10")
    assert result.balance_after == Decimal("0.90")

    vendor = await reload(Vendor, vendor.id)
    assert vendor.view_credits == Decimal("0.90")
    assert vendor.total_credits_used == Decimal("0.10")
    assert vendor.current_daily_spend == Decimal("0.10")
    assert vendor.version == 1

    stored = await reload(ProductView, view.id)
    assert stored.cpv_charged is True
    assert stored.cpv_amount == Decimal("0.10")
    assert stored.vendor_bid_amount == Decimal("12.00")

    entry = await reload(ViewTransaction, result.transaction_id)
    assert entry.transaction_type == TransactionType.DEDUCTION
    assert entry.source_view_id == view.id
    assert entry.credit_balance_before == Decimal("1.00")
    assert entry.credit_balance_after == Decimal("0.90")
    assert entry.credit_change == Decimal("-0.10")

    product = await reload(Product, product.id)
    assert product.qualified_views == 1
    assert product.budget_spent == Decimal("0.10")


@pytest.mark.asyncio
async def test_charge_is_idempotent(database, db_session, make_vendor, make_product, make_view, reload):
    vendor = await make_vendor(view_credits=Decimal("1.00"))
    product = await make_product(vendor)
    view = await make_view(product)
    service = CpvChargingService(database)

    first = await service.charge_qualified_view(view.id)
    second = await service.charge_qualified_view(view.id)

    assert first.charged
    assert not second.charged
    assert second.reason == ChargeRefusal.ALREADY_CHARGED
    assert (await reload(Vendor, vendor.id)).view_credits == Decimal("0.90")
    assert await count_transactions(db_session, vendor.id) == 1


@pytest.mark.asyncio
async def test_balance_covers_exactly_ten_starter_views(
    database, db_session, make_vendor, make_product, make_view, reload
):
    vendor = await make_vendor(view_credits=Decimal("1.00"))
    product = await make_product(vendor)
    service = CpvChargingService(database)

    results = []
    for i in range(11):
        view = await make_view(product, session_id=f"s-{i}")
        results.append(await service.charge_qualified_view(view.id))

    assert [r.charged for r in results] == [True] * 10 + [False]
    assert results[-1].reason == ChargeRefusal.INSUFFICIENT_CREDITS
    assert (await reload(Vendor, vendor.id)).view_credits == Decimal("0.00")
    assert await count_transactions(db_session, vendor.id, TransactionType.DEDUCTION) == 10


@pytest.mark.asyncio
async def test_ledger_matches_log_after_many_charges(
    database, db_session, make_vendor, make_product, make_view, reload
):
    vendor = await make_vendor(view_credits=Decimal("2.00"))
    product = await make_product(vendor)
    service = CpvChargingService(database)

    for i in range(7):
        view = await make_view(product, session_id=f"s-{i}")
        await service.charge_qualified_view(view.id)

    entries, _ = await TransactionLog.get_vendor_history(db_session, vendor.id, limit=100)
    entries = sorted(entries, key=lambda e: e.id)

    # Each entry picks up where the previous one left off
    for previous, current in zip(entries, entries[1:]):
        assert current.credit_balance_before == previous.credit_balance_after

    vendor = await reload(Vendor, vendor.id)
    assert entries[-1].credit_balance_after == vendor.view_credits
    assert sum(-e.credit_change for e in entries) == vendor.total_credits_used


@pytest.mark.asyncio
@pytest.mark.parametrize("overrides", [
    {"is_qualified_view": False},
    {"is_duplicate": True},
    {"is_bot": True},
])
async def test_unbillable_views_are_refused(
    database, make_vendor, make_product, make_view, reload, overrides
):
    vendor = await make_vendor()
    product = await make_product(vendor)
    view = await make_view(product, **overrides)

    result = await CpvChargingService(database).charge_qualified_view(view.id)

    assert result.reason == ChargeRefusal.NOT_BILLABLE
    assert (await reload(Vendor, vendor.id)).view_credits == Decimal("100.00")


@pytest.mark.asyncio
async def test_unknown_view_is_soft_failure(database):
    result = await CpvChargingService(database).charge_qualified_view(31337)
    assert not result.charged
    assert result.reason == ChargeRefusal.VIEW_NOT_FOUND


@pytest.mark.asyncio
async def test_daily_budget_blocks_without_mutation(
    database, db_session, make_vendor, make_product, make_view, reload
):
    vendor = await make_vendor(
        max_daily_budget=Decimal("0.50"), current_daily_spend=Decimal("0.45")
    )
    product = await make_product(vendor)
    view = await make_view(product)

    result = await CpvChargingService(database).charge_qualified_view(view.id)

    assert result.reason == ChargeRefusal.DAILY_BUDGET_EXCEEDED
    vendor = await reload(Vendor, vendor.id)
    assert vendor.view_credits == Decimal("100.00")
    assert vendor.current_daily_spend == Decimal("0.45")
    assert vendor.version == 0
    assert (await reload(ProductView, view.id)).cpv_charged is False
    assert await count_transactions(db_session, vendor.id) == 0


@pytest.mark.asyncio
async def test_daily_spend_resets_after_midnight(
    database, make_vendor, make_product, make_view, reload
):
    vendor = await make_vendor(
        max_daily_budget=Decimal("0.50"),
        current_daily_spend=Decimal("0.50"),
        last_daily_reset_at=utcnow() - timedelta(days=1),
    )
    product = await make_product(vendor)
    view = await make_view(product)

    result = await CpvChargingService(database).charge_qualified_view(view.id)

    assert result.charged
    assert (await reload(Vendor, vendor.id)).current_daily_spend == Decimal("0.10")


@pytest.mark.asyncio
async def test_tier_graduates_lazily_on_charge(
    database, make_vendor, make_product, make_view, reload
):
    vendor = await make_vendor(tier_start_date=utcnow() - timedelta(days=100))
    product = await make_product(vendor)
    view = await make_view(product)

    result = await CpvChargingService(database).charge_qualified_view(view.id)

    assert result.amount == Decimal("0.20")
    assert (await reload(Vendor, vendor.id)).graduation_tier == GraduationTier.GROWTH


@pytest.mark.asyncio
async def test_lost_race_is_retried(
    database, db_session, make_vendor, make_product, make_view, reload, mocker
):
    vendor = await make_vendor(view_credits=Decimal("1.00"))
    product = await make_product(vendor)
    view = await make_view(product)

    real_save = VendorLedgerStore.save
    calls = []

    async def save_losing_first_race(db, before, after):
        calls.append(before.version)
        if len(calls) == 1:
            return False
        return await real_save(db, before, after)

    mocker.patch.object(VendorLedgerStore, "save", side_effect=save_losing_first_race)

    result = await CpvChargingService(database).charge_qualified_view(view.id)

    assert result.charged
    assert len(calls) == 2
    assert (await reload(Vendor, vendor.id)).view_credits == Decimal("0.90")
    assert await count_transactions(db_session, vendor.id) == 1


@pytest.mark.asyncio
async def test_exhausted_retries_raise_retryable_error(
    database, db_session, make_vendor, make_product, make_view, reload, mocker
):
    vendor = await make_vendor(view_credits=Decimal("1.00"))
    product = await make_product(vendor)
    view = await make_view(product)
    save = mocker.patch.object(VendorLedgerStore, "save", return_value=False)

    with pytest.raises(BillingPersistenceError):
        await CpvChargingService(database, max_attempts=3).charge_qualified_view(view.id)

    assert save.call_count == 3
    assert (await reload(ProductView, view.id)).cpv_charged is False
    assert (await reload(Vendor, vendor.id)).view_credits == Decimal("1.00")
    assert await count_transactions(db_session, vendor.id) == 0


@pytest.mark.asyncio
async def test_retries_stop_at_deadline_without_attempt_cap(
    database, db_session, make_vendor, make_product, make_view, mocker
):
    vendor = await make_vendor(view_credits=Decimal("1.00"))
    product = await make_product(vendor)
    view = await make_view(product)
    save = mocker.patch.object(VendorLedgerStore, "save", return_value=False)

    service = CpvChargingService(database)
    service.max_attempts = None
    service.deadline_seconds = 0.05

    with pytest.raises(BillingPersistenceError):
        await service.charge_qualified_view(view.id)

    assert save.call_count > 1
    assert await count_transactions(db_session, vendor.id) == 0


@pytest.fixture
def slow_ledger_reads(mocker):
    """Hold every ledger read briefly so simultaneous charges see the same version."""
    real_load = VendorLedgerStore.load

    async def load_then_wait(db, vendor_id):
        snapshot = await real_load(db, vendor_id)
        await asyncio.sleep(0.05)
        return snapshot

    return mocker.patch.object(VendorLedgerStore, "load", side_effect=load_then_wait)


async def charge_all_at_once(database, view_ids):
    service = CpvChargingService(database)
    return await asyncio.gather(*(service.charge_qualified_view(view_id) for view_id in view_ids))


@pytest.mark.asyncio
@pytest.mark.file_database
async def test_simultaneous_charges_for_one_vendor_all_succeed(
    database, db_session, make_vendor, make_product, make_view, reload, slow_ledger_reads
):
    vendor = await make_vendor(view_credits=Decimal("100.00"))
    product = await make_product(vendor)
    views = [await make_view(product, session_id=f"s-{i}") for i in range(5)]

    results = await charge_all_at_once(database, [v.id for v in views])

    assert [r.charged for r in results] == [True] * 5
    assert slow_ledger_reads.call_count > 5  # races were lost and retried

    vendor = await reload(Vendor, vendor.id)
    assert vendor.view_credits == Decimal("99.50")
    assert vendor.version == 5
    assert await count_transactions(db_session, vendor.id, TransactionType.DEDUCTION) == 5


@pytest.mark.asyncio
@pytest.mark.file_database
async def test_concurrent_charges_never_overdraw(
    database, db_session, make_vendor, make_product, make_view, reload, slow_ledger_reads
):
    vendor = await make_vendor(view_credits=Decimal("0.30"))
    product = await make_product(vendor)
    views = [await make_view(product, session_id=f"s-{i}") for i in range(10)]

    results = await charge_all_at_once(database, [v.id for v in views])

    charged = [r for r in results if r.charged]
    refused = [r for r in results if not r.charged]
    assert len(charged) == 3
    assert {r.reason for r in refused} == {ChargeRefusal.INSUFFICIENT_CREDITS}

    vendor = await reload(Vendor, vendor.id)
    assert vendor.view_credits == Decimal("0.00")
    assert vendor.total_credits_used == Decimal("0.30")

    entries, total = await TransactionLog.get_vendor_history(db_session, vendor.id, limit=100)
    entries = sorted(entries, key=lambda e: e.id)
    assert total == 3
    assert entries[0].credit_balance_before == Decimal("0.30")
    for previous, current in zip(entries, entries[1:]):
        assert current.credit_balance_before == previous.credit_balance_after
    assert entries[-1].credit_balance_after == Decimal("0.00")

    charged_views = (await db_session.execute(
        select(func.count(ProductView.id)).where(ProductView.cpv_charged == True)  # noqa: E712
    )).scalar()
    assert charged_views == 3


@pytest.mark.asyncio
async def test_storage_error_rolls_back(
    database, db_session, make_vendor, make_product, make_view, reload, mocker
):
    vendor = await make_vendor(view_credits=Decimal("1.00"))
    product = await make_product(vendor)
    view = await make_view(product)
    mocker.patch.object(
        TransactionLog, "create_deduction",
        side_effect=OperationalError("INSERT", {}, Exception("disk I/O error")),
    )

    with pytest.raises(BillingPersistenceError):
        await CpvChargingService(database).charge_qualified_view(view.id)

    assert (await reload(Vendor, vendor.id)).view_credits == Decimal("1.00")
    assert (await reload(ProductView, view.id)).cpv_charged is False


@pytest.mark.asyncio
async def test_qualify_and_charge(database, make_vendor, make_product, make_view):
    vendor = await make_vendor()
    product = await make_product(vendor)
    short = await make_view(product, is_qualified_view=False, view_duration=0, session_id="a")
    long = await make_view(product, is_qualified_view=False, view_duration=0, session_id="b")
    service = CpvChargingService(database)

    refused = await service.qualify_and_charge(short.id, 2.0)
    charged = await service.qualify_and_charge(long.id, 8.0)
    missing = await service.qualify_and_charge(999, 8.0)

    assert refused.success and not refused.charged
    assert refused.reason == ChargeRefusal.NOT_BILLABLE
    assert charged.success and charged.charged
    assert not missing.success


@pytest.mark.asyncio
async def test_purchase_credits(database, db_session, make_vendor, reload):
    vendor = await make_vendor(view_credits=Decimal("0"))

    result = await CpvChargingService(database).purchase_credits(
        vendor.id, credits=10000, amount=Decimal("800"), payment_method="easypaisa"
    )

    assert result.balance_after == Decimal("10000")
    assert result.invoice_number.startswith("INV-")

    vendor = await reload(Vendor, vendor.id)
    assert vendor.view_credits == Decimal("10000.00")
    assert vendor.total_credits_purchased == Decimal("10000.00")
    assert vendor.total_spent == Decimal("800.00")

    entry = await reload(ViewTransaction, result.transaction_id)
    assert entry.credit_balance_before == Decimal("0.00")
    assert entry.credit_balance_after == Decimal("10000.00")


@pytest.mark.asyncio
async def test_purchase_rejects_unknown_package(database, make_vendor):
    vendor = await make_vendor()
    service = CpvChargingService(database)

    with pytest.raises(InvalidCreditPackageError):
        await service.purchase_credits(vendor.id, credits=10000, amount=Decimal("1"), payment_method="card")
    with pytest.raises(ResourceNotFoundError):
        await service.purchase_credits(777, credits=1000, amount=Decimal("100"), payment_method="card")


@pytest.mark.asyncio
async def test_bonus_adds_balance_only(database, make_vendor, reload):
    vendor = await make_vendor(view_credits=Decimal("1.00"))

    result = await CpvChargingService(database).grant_bonus(vendor.id, Decimal("50"), "launch promo", "ops")

    vendor = await reload(Vendor, vendor.id)
    assert result.balance_after == Decimal("51.00")
    assert vendor.view_credits == Decimal("51.00")
    assert vendor.total_credits_purchased == Decimal("0.00")

    entry = await reload(ViewTransaction, result.transaction_id)
    assert entry.transaction_type == TransactionType.BONUS
    assert entry.processed_by == "ops"


@pytest.mark.asyncio
async def test_refund_restores_credits_once(
    database, make_vendor, make_product, make_view, reload
):
    vendor = await make_vendor(view_credits=Decimal("1.00"))
    product = await make_product(vendor)
    view = await make_view(product)
    service = CpvChargingService(database)
    charge = await service.charge_qualified_view(view.id)

    refund = await service.refund_deduction(charge.transaction_id, reason="accidental click", processed_by="ops")

    assert refund.balance_after == Decimal("1.00")
    original = await reload(ViewTransaction, charge.transaction_id)
    assert original.status == TransactionStatus.REFUNDED

    entry = await reload(ViewTransaction, refund.transaction_id)
    assert entry.transaction_type == TransactionType.REFUND
    assert entry.related_transaction_id == charge.transaction_id
    assert entry.credit_change == Decimal("0.10")
    assert entry.credit_balance_before == Decimal("0.90")
    assert entry.credit_balance_after == Decimal("1.00")

    vendor = await reload(Vendor, vendor.id)
    assert vendor.view_credits == Decimal("1.00")
    assert vendor.total_credits_used == Decimal("0.10")

    with pytest.raises(TransactionNotRefundableError):
        await service.refund_deduction(charge.transaction_id)


@pytest.mark.asyncio
async def test_refund_rejects_non_deduction(database, make_vendor):
    vendor = await make_vendor()
    service = CpvChargingService(database)
    bonus = await service.grant_bonus(vendor.id, Decimal("5"), "promo")

    with pytest.raises(TransactionNotRefundableError):
        await service.refund_deduction(bonus.transaction_id)
    with pytest.raises(ResourceNotFoundError):
        await service.refund_deduction(424242)
