"""
Billing enumerations.
"""

import enum


class GraduationTier(str, enum.Enum):
    """Vendor CPV pricing tier, graduating with account age."""
    STARTER = "starter"  # Months 1-3
    GROWTH = "growth"  # Months 4-6
    STANDARD = "standard"  # Month 7+


class VerificationStatus(str, enum.Enum):
    """Vendor verification status enumeration."""
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class ViewType(str, enum.Enum):
    """Where a product view originated."""
    COMPARISON = "comparison"
    DIRECT = "direct"
    SEARCH = "search"
    CATEGORY = "category"


class DeviceType(str, enum.Enum):
    """Device class derived from the user agent."""
    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"


class TransactionType(str, enum.Enum):
    """Transaction log entry type enumeration."""
    PURCHASE = "purchase"  # Credits bought
    DEDUCTION = "deduction"  # Credits spent on a view
    REFUND = "refund"  # Compensates an earlier deduction
    BONUS = "bonus"  # Credits granted by an admin
    ADJUSTMENT = "adjustment"


class TransactionStatus(str, enum.Enum):
    """Transaction log entry status enumeration."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"  # Only reachable from COMPLETED via a refund entry
    CANCELLED = "cancelled"


class DeductionReason(str, enum.Enum):
    """Why credits were deducted."""
    VIEW_CHARGED = "view_charged"
    EXPIRED = "expired"
    ADJUSTMENT = "adjustment"
    REFUND = "refund"


class ChargeRefusal(str, enum.Enum):
    """Expected, non-retryable reasons a view was not charged."""
    VIEW_NOT_FOUND = "view_not_found"
    ALREADY_CHARGED = "already_charged"
    NOT_BILLABLE = "not_billable"
    VENDOR_NOT_FOUND = "vendor_not_found"
    DAILY_BUDGET_EXCEEDED = "daily_budget_exceeded"
    INSUFFICIENT_CREDITS = "insufficient_credits"
