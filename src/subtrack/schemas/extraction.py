"""
Classifier and extractor outputs.

ExtractionResult is the single shape the reconciler consumes; the confidence
fields are filled in by the ConfidenceAggregator, not by the remote model.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional

from .subscription import BillingCycle


class ConfidenceTier(str, Enum):
    """
    Acceptance decision derived from the overall confidence.

    AUTO_ACCEPT: accepted silently
    ACCEPT_NOTIFY: accepted, surfaced for passive notification
    REVIEW: accepted, review flag set
    """

    AUTO_ACCEPT = "AUTO_ACCEPT"
    ACCEPT_NOTIFY = "ACCEPT_NOTIFY"
    REVIEW = "REVIEW"


@dataclass
class ClassificationResult:
    """Whether a message is about a recurring paid service."""

    is_subscription_related: bool
    confidence: float
    email_type: str = "other"
    reason: str = ""


@dataclass
class ExtractionResult:
    """Structured billing facts extracted from one message."""

    service_name: str
    price: Decimal
    currency: str = "USD"
    billing_cycle: BillingCycle = BillingCycle.UNKNOWN
    next_renewal_date: Optional[date] = None
    category: str = "Other"
    cancellation_link: Optional[str] = None
    is_trial: bool = False

    # Per-field confidences keyed by the remote schema names
    # (serviceName, price, billingCycle, nextRenewalDate, category, currency)
    field_confidences: dict[str, float] = field(default_factory=dict)

    # Set by the aggregator
    confidence_score: float = 0.0
    confidence_tier: ConfidenceTier = ConfidenceTier.REVIEW
    requires_review: bool = True
    warnings: list[str] = field(default_factory=list)
