"""Pipeline services: intake, dispatch, workers, reconciliation, vendors, alerts and jobs."""

from subtrack.services.alerts import AlertScanner, AlertSummary
from subtrack.services.dispatcher import PriorityDispatcher, QueueStatus
from subtrack.services.intake import IntakeDeduplicator, IntakeSummary
from subtrack.services.jobs import JsonMailSource, MailSource, PipelineJobs
from subtrack.services.reconciliation import RefreshSummary, SubscriptionReconciler
from subtrack.services.vendors import VendorEnrichmentSummary, VendorMatcher
from subtrack.services.worker import MessageWorker, WorkerStats, WorkOutcome

__all__ = [
    "AlertScanner",
    "AlertSummary",
    "IntakeDeduplicator",
    "IntakeSummary",
    "JsonMailSource",
    "MailSource",
    "MessageWorker",
    "PipelineJobs",
    "PriorityDispatcher",
    "QueueStatus",
    "RefreshSummary",
    "SubscriptionReconciler",
    "VendorEnrichmentSummary",
    "VendorMatcher",
    "WorkOutcome",
    "WorkerStats",
]
