"""
Confidence scoring module.

Computes the weighted overall confidence of an extraction.
Determines acceptance tier and review flag based on thresholds.
"""

from .scorer import FIELD_WEIGHTS, ConfidenceAggregator, compute_overall

__all__ = [
    "FIELD_WEIGHTS",
    "ConfidenceAggregator",
    "compute_overall",
]
