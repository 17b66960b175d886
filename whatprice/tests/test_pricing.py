"""
CPV pricing and graduation tier tests.
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from whatprice.app.domain.billing.pricing import (
    CREDIT_PACKAGES, POPULAR_PACKAGE_INDEX, estimated_views, find_credit_package,
    get_cpv_rate, months_since, per_view_charge, resolve_graduation_tier
)
from whatprice.app.models.billing_enums import GraduationTier

START = datetime(2026, 1, 1)


@pytest.mark.parametrize("tier,rate,charge", [
    (GraduationTier.STARTER, 10, Decimal("0.10")),
    (GraduationTier.GROWTH, 20, Decimal("0.20")),
    (GraduationTier.STANDARD, 30, Decimal("0.30")),
])
def test_rate_and_per_view_charge(tier, rate, charge):
    assert get_cpv_rate(tier) == rate
    assert per_view_charge(tier) == charge


@pytest.mark.parametrize("days,tier", [
    (0, GraduationTier.STARTER),
    (89, GraduationTier.STARTER),
    (90, GraduationTier.GROWTH),
    (179, GraduationTier.GROWTH),
    (180, GraduationTier.STANDARD),
    (900, GraduationTier.STANDARD),
])
def test_graduation_boundaries_use_30_day_months(days, tier):
    assert resolve_graduation_tier(START, START + timedelta(days=days)) == tier


def test_partial_month_does_not_count():
    assert months_since(START, START + timedelta(days=89, hours=23)) == 2


def test_clock_skew_never_goes_negative():
    assert months_since(START, START - timedelta(days=5)) == 0


def test_estimated_views_floor():
    assert estimated_views(Decimal("1.00"), GraduationTier.STARTER) == 10
    assert estimated_views(Decimal("1.05"), GraduationTier.STARTER) == 10
    assert estimated_views(Decimal("0.29"), GraduationTier.STANDARD) == 0


def test_find_credit_package_requires_exact_match():
    package = find_credit_package(5000, Decimal("450"))
    assert package is not None
    assert package.savings_percent == 10

    assert find_credit_package(5000, Decimal("449")) is None
    assert find_credit_package(1234, Decimal("100")) is None


def test_packages_price_per_credit():
    assert [p.credits for p in CREDIT_PACKAGES] == [1000, 5000, 10000, 25000, 50000]
    assert CREDIT_PACKAGES[0].price_per_credit == Decimal("0.1000")
    assert CREDIT_PACKAGES[4].price_per_credit == Decimal("0.0600")
    assert CREDIT_PACKAGES[POPULAR_PACKAGE_INDEX].credits == 10000
