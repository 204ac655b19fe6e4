"""
Schemas (SSOT).

All pipeline data shapes live here; no other module invents its own.
"""

from .extraction import ClassificationResult, ConfidenceTier, ExtractionResult
from .messages import (
    MailAccount,
    Priority,
    ProcessingRecord,
    ProcessingStatus,
    QueuedMessage,
    RawMessage,
    determine_priority,
)
from .result import ErrorCode, PipelineError, Result
from .subscription import (
    Alert,
    AlertStatus,
    AlertType,
    BillingCycle,
    ChangeType,
    HistoryEntry,
    Subscription,
    SubscriptionStatus,
    Vendor,
)

__all__ = [
    "Alert",
    "AlertStatus",
    "AlertType",
    "BillingCycle",
    "ChangeType",
    "ClassificationResult",
    "ConfidenceTier",
    "ErrorCode",
    "ExtractionResult",
    "HistoryEntry",
    "MailAccount",
    "PipelineError",
    "Priority",
    "ProcessingRecord",
    "ProcessingStatus",
    "QueuedMessage",
    "RawMessage",
    "Result",
    "Subscription",
    "SubscriptionStatus",
    "Vendor",
    "determine_priority",
]
