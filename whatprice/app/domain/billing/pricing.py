"""
CPV Pricing Resolver.

Graduation tiers, per-view charges and credit packages.
All functions are pure; callers pass `now` explicitly.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_DOWN
from typing import List, Optional

from whatprice.app.core.config import settings
from whatprice.app.models.billing_enums import GraduationTier

CENT = Decimal("0.01")
VIEWS_PER_RATE_UNIT = 100


@dataclass(frozen=True)
class CreditPackage:
    credits: int
    price: Decimal
    savings_percent: int = 0

    @property
    def price_per_credit(self) -> Decimal:
        return (self.price / self.credits).quantize(Decimal("0.0001"))


CREDIT_PACKAGES: List[CreditPackage] = [
    CreditPackage(credits=1000, price=Decimal("100"), savings_percent=0),
    CreditPackage(credits=5000, price=Decimal("450"), savings_percent=10),
    CreditPackage(credits=10000, price=Decimal("800"), savings_percent=20),
    CreditPackage(credits=25000, price=Decimal("1750"), savings_percent=30),
    CreditPackage(credits=50000, price=Decimal("3000"), savings_percent=40),
]

# Index into CREDIT_PACKAGES highlighted as the popular choice
POPULAR_PACKAGE_INDEX = 2


def get_cpv_rate(tier: GraduationTier) -> int:
    """PKR charged per 100 qualified views for a tier."""
    rates = {
        GraduationTier.STARTER: settings.cpv_rate_starter,
        GraduationTier.GROWTH: settings.cpv_rate_growth,
        GraduationTier.STANDARD: settings.cpv_rate_standard,
    }
    return rates.get(GraduationTier(tier), settings.cpv_rate_standard)


def per_view_charge(tier: GraduationTier) -> Decimal:
    """
    Charge for one qualified view: rate / 100, rounded down to the paisa.
    """
    rate = Decimal(get_cpv_rate(tier))
    return (rate / VIEWS_PER_RATE_UNIT).quantize(CENT, rounding=ROUND_DOWN)


def months_since(start: datetime, now: datetime) -> int:
    """Whole 30-day periods elapsed between start and now."""
    month = timedelta(days=settings.tier_month_days)
    return max((now - start) // month, 0)


def resolve_graduation_tier(tier_start_date: datetime, now: datetime) -> GraduationTier:
    """
    Tier for a vendor whose tier clock started at tier_start_date.

    Month 1-3: starter, month 4-6: growth, month 7+: standard.
    """
    months = months_since(tier_start_date, now)
    if months >= settings.tier_standard_after_months:
        return GraduationTier.STANDARD
    if months >= settings.tier_growth_after_months:
        return GraduationTier.GROWTH
    return GraduationTier.STARTER


def estimated_views(view_credits: Decimal, tier: GraduationTier) -> int:
    """How many more qualified views the balance covers at the tier rate."""
    charge = per_view_charge(tier)
    if charge <= 0:
        return 0
    return int(Decimal(view_credits) // charge)


def get_credit_pricing() -> List[CreditPackage]:
    return list(CREDIT_PACKAGES)


def find_credit_package(credits: int, price: Decimal) -> Optional[CreditPackage]:
    """Return the published package matching both credits and price exactly."""
    for package in CREDIT_PACKAGES:
        if package.credits == credits and package.price == Decimal(price):
            return package
    return None
