"""
Canonical subscription, history and alert objects.

Everything the reconciler and the alert scanner read or write maps into these
dataclasses; the state store converts them to and from rows.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


class BillingCycle(str, Enum):
    """Recurrence unit of a subscription's price."""

    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    ANNUAL = "ANNUAL"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, text: Optional[str]) -> "BillingCycle":
        """Map free-form cycle text to a cycle; anything unrecognized is UNKNOWN."""
        if not text or not text.strip():
            return cls.UNKNOWN
        return _CYCLE_ALIASES.get(text.strip().lower(), cls.UNKNOWN)


_CYCLE_ALIASES = {
    "weekly": BillingCycle.WEEKLY,
    "monthly": BillingCycle.MONTHLY,
    "quarterly": BillingCycle.QUARTERLY,
    "annual": BillingCycle.ANNUAL,
    "annually": BillingCycle.ANNUAL,
    "yearly": BillingCycle.ANNUAL,
}


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    TRIAL_ACTIVE = "TRIAL_ACTIVE"
    PENDING_REVIEW = "PENDING_REVIEW"
    CANCELLED = "CANCELLED"
    ARCHIVED = "ARCHIVED"


class ChangeType(str, Enum):
    """Tags written to the subscription history ledger."""

    CREATED = "Created"
    PRICE_CHANGE = "PriceChange"
    CURRENCY_CHANGE = "CurrencyChange"
    BILLING_CYCLE_CHANGE = "BillingCycleChange"
    RENEWAL_DATE_CHANGE = "RenewalDateChange"
    CATEGORY_CHANGE = "CategoryChange"
    CANCELLATION_LINK_CHANGE = "CancellationLinkChange"
    RENEWAL_DATE_ADVANCED = "RenewalDateAdvanced"
    RENEWAL_OVERDUE = "RenewalOverdue"
    TRIAL_ENDED = "TrialEnded"
    STATUS_CHANGE = "StatusChange"
    APPROVED = "Approved"
    REJECTED = "Rejected"


@dataclass
class Subscription:
    """One recognized recurring service for one user and source account."""

    id: Optional[int]
    user_id: str
    account_id: str
    service_name: str
    price: Decimal
    currency: str
    billing_cycle: BillingCycle
    next_renewal_date: Optional[date]
    category: str
    status: SubscriptionStatus
    confidence_score: float
    requires_review: bool
    vendor_id: Optional[int] = None
    cancellation_link: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None


@dataclass
class Vendor:
    """Shared metadata for a service provider, linked from subscriptions by id.

    normalized_name is the matching key (see services.vendors). A vendor
    created from an unknown service name starts with needs_enrichment set;
    the enrichment job fills in the URLs and clears it.
    """

    id: Optional[int]
    name: str
    normalized_name: str
    category: str = "Other"
    website_url: Optional[str] = None
    logo_url: Optional[str] = None
    account_management_url: Optional[str] = None
    needs_enrichment: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class HistoryEntry:
    """Immutable field-level transition of a subscription."""

    subscription_id: int
    change_type: ChangeType
    old_value: str
    new_value: str
    changed_at: datetime
    source_record_id: Optional[int] = None
    id: Optional[int] = None


class AlertType(str, Enum):
    RENEWAL_UPCOMING_7_DAYS = "RENEWAL_UPCOMING_7_DAYS"
    RENEWAL_UPCOMING_3_DAYS = "RENEWAL_UPCOMING_3_DAYS"
    PRICE_INCREASE = "PRICE_INCREASE"
    TRIAL_ENDING = "TRIAL_ENDING"
    UNUSED_SUBSCRIPTION = "UNUSED_SUBSCRIPTION"


class AlertStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


@dataclass
class Alert:
    """A notification derived from subscription state. Delivery is external."""

    id: Optional[int]
    user_id: str
    subscription_id: int
    alert_type: AlertType
    message: str
    scheduled_for: datetime
    status: AlertStatus = AlertStatus.PENDING
    sent_at: Optional[datetime] = None
    retry_count: int = 0
