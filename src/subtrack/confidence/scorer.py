"""
Confidence scoring implementation.
"""

import math
from typing import Optional

from ..config import ConfidenceThresholds
from ..schemas.extraction import ConfidenceTier, ExtractionResult
from ..schemas.subscription import BillingCycle

# Critical fields weigh more; keys follow the remote model's field names
FIELD_WEIGHTS = {
    "serviceName": 0.25,
    "price": 0.25,
    "billingCycle": 0.20,
    "nextRenewalDate": 0.15,
    "category": 0.10,
    "currency": 0.05,
}

WARNING_NO_SERVICE = "Service name could not be determined"
WARNING_BAD_PRICE = "Price could not be determined or is invalid"
WARNING_NO_CYCLE = "Billing cycle could not be determined"
WARNING_NO_RENEWAL = "Next renewal date could not be determined"


def compute_overall(field_confidences: Optional[dict[str, float]]) -> float:
    """
    Weighted mean of the per-field confidences that are present.

    Unknown field names are ignored. No known field at all gives 0.0.
    """
    if not field_confidences:
        return 0.0

    weighted = []
    weights = []
    for name, confidence in field_confidences.items():
        weight = FIELD_WEIGHTS.get(name)
        if weight is None:
            continue
        weighted.append(confidence * weight)
        weights.append(weight)

    total_weight = math.fsum(weights)
    if total_weight <= 0:
        return 0.0

    # Rounded so a uniform 0.85 map lands exactly on the threshold
    return round(math.fsum(weighted) / total_weight, 10)


class ConfidenceAggregator:
    """
    Turns per-field confidences into an acceptance decision.

    Tiers:
    - AUTO_ACCEPT: overall >= auto_threshold
    - ACCEPT_NOTIFY: review_threshold <= overall < auto_threshold
    - REVIEW: overall < review_threshold (review flag set)
    """

    def __init__(self, thresholds: Optional[ConfidenceThresholds] = None):
        """Initialize aggregator with thresholds."""
        self.thresholds = thresholds or ConfidenceThresholds()

    def tier_for(self, overall: float) -> ConfidenceTier:
        if overall >= self.thresholds.auto_threshold:
            return ConfidenceTier.AUTO_ACCEPT
        elif overall >= self.thresholds.review_threshold:
            return ConfidenceTier.ACCEPT_NOTIFY
        else:
            return ConfidenceTier.REVIEW

    def requires_review(self, overall: float) -> bool:
        return overall < self.thresholds.review_threshold

    def missing_field_warnings(self, extraction: ExtractionResult) -> list[str]:
        """
        Warnings for missing critical fields.

        Emitted regardless of the overall score; a confident model can still
        leave fields empty.
        """
        warnings = []

        if not extraction.service_name or not extraction.service_name.strip():
            warnings.append(WARNING_NO_SERVICE)
        if extraction.price is None or extraction.price <= 0:
            warnings.append(WARNING_BAD_PRICE)
        if extraction.billing_cycle == BillingCycle.UNKNOWN:
            warnings.append(WARNING_NO_CYCLE)
        if extraction.next_renewal_date is None:
            warnings.append(WARNING_NO_RENEWAL)

        return warnings

    def assess(self, extraction: ExtractionResult) -> ExtractionResult:
        """Fill in score, tier, review flag and warnings on the extraction (in place)."""
        overall = compute_overall(extraction.field_confidences)

        extraction.confidence_score = overall
        extraction.confidence_tier = self.tier_for(overall)
        extraction.requires_review = self.requires_review(overall)

        for warning in self.missing_field_warnings(extraction):
            if warning not in extraction.warnings:
                extraction.warnings.append(warning)

        return extraction
