"""
Message worker: drives one queued message through the pipeline.

    claim -> classify -> (related?) extract -> reconcile -> COMPLETED

Expected failures arrive as Result errors and mark the record FAILED with
the error code as reason. Cancellation releases the claim so the record is
picked up again later. Anything unexpected is logged with its traceback,
fails the record, and the loop moves on.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from ..resilience import CancellationToken
from ..schemas.messages import QueuedMessage
from ..schemas.result import ErrorCode, PipelineError
from ..state_store.base import SubscriptionStore
from .dispatcher import PriorityDispatcher
from .reconciliation import SubscriptionReconciler

logger = logging.getLogger(__name__)


class WorkOutcome(str, Enum):
    """What happened to one dispatched item."""

    COMPLETED = "COMPLETED"  # Reconciled into a subscription
    IGNORED = "IGNORED"  # Classified as unrelated, record completed
    FAILED = "FAILED"
    RELEASED = "RELEASED"  # Cancelled mid-flight, claim released
    SKIPPED = "SKIPPED"  # Missing, already terminal or claimed elsewhere


@dataclass
class WorkerStats:
    """Counters for one worker run."""

    completed: int = 0
    ignored: int = 0
    failed: int = 0
    released: int = 0
    skipped: int = 0

    @property
    def processed(self) -> int:
        return self.completed + self.ignored + self.failed

    def add(self, outcome: WorkOutcome) -> None:
        name = outcome.value.lower()
        setattr(self, name, getattr(self, name) + 1)

    def merge(self, other: "WorkerStats") -> None:
        for outcome in WorkOutcome:
            name = outcome.value.lower()
            setattr(self, name, getattr(self, name) + getattr(other, name))


class MessageWorker:
    """Pulls items from a dispatcher and processes them to a terminal status."""

    def __init__(
        self,
        store: SubscriptionStore,
        ai_service,
        reconciler: SubscriptionReconciler,
        dispatcher: PriorityDispatcher,
    ):
        self.store = store
        self.ai_service = ai_service
        self.reconciler = reconciler
        self.dispatcher = dispatcher

    def run(
        self,
        cancel_token: Optional[CancellationToken] = None,
        idle_timeout: Optional[float] = None,
    ) -> WorkerStats:
        """
        Process items until cancelled.

        With idle_timeout set, also stop once the dispatcher stays empty for
        that many seconds (0 = drain and stop).
        """
        stats = WorkerStats()
        while cancel_token is None or not cancel_token.cancelled:
            item = self.dispatcher.dispatch(cancel_token, timeout=idle_timeout)
            if item is None:
                break
            stats.add(self.process_one(item, cancel_token))
        return stats

    def process_one(
        self,
        item: QueuedMessage,
        cancel_token: Optional[CancellationToken] = None,
    ) -> WorkOutcome:
        record = self.store.get_record(item.record_id)
        if record is None:
            logger.warning("Record %d no longer exists; skipping", item.record_id)
            return WorkOutcome.SKIPPED
        if record.status.is_terminal:
            logger.debug("Record %d already %s", record.id, record.status.value)
            return WorkOutcome.SKIPPED

        if not self.store.claim_record(record.id, datetime.now(timezone.utc)):
            # Another worker owns it
            return WorkOutcome.SKIPPED

        try:
            return self._process_claimed(item, cancel_token)
        except Exception:
            logger.exception("Unexpected error processing record %d", item.record_id)
            self.store.fail_record(item.record_id, "UNEXPECTED_ERROR", datetime.now(timezone.utc))
            return WorkOutcome.FAILED

    def _process_claimed(
        self, item: QueuedMessage, cancel_token: Optional[CancellationToken]
    ) -> WorkOutcome:
        classification = self.ai_service.classify(item.message, cancel_token)
        if not classification.ok:
            return self._handle_error(item, classification.error)

        if not classification.value.is_subscription_related:
            self.store.complete_record(item.record_id, datetime.now(timezone.utc))
            return WorkOutcome.IGNORED

        extraction = self.ai_service.extract(item.message, cancel_token)
        if not extraction.ok:
            return self._handle_error(item, extraction.error)

        account = self.store.get_account(item.account_id)
        if account is None:
            return self._handle_error(
                item,
                PipelineError(
                    ErrorCode.INVALID_MESSAGE, f"Account {item.account_id} has no owner"
                ),
            )

        reconciled = self.reconciler.reconcile(
            account.user_id, item.account_id, extraction.value, item.record_id
        )
        if not reconciled.ok:
            return self._handle_error(item, reconciled.error)

        subscription = reconciled.value
        self.store.complete_record(
            item.record_id, datetime.now(timezone.utc), subscription_id=subscription.id
        )
        logger.info(
            "Record %d reconciled into subscription %d (%s)",
            item.record_id,
            subscription.id,
            subscription.service_name,
        )
        return WorkOutcome.COMPLETED

    def _handle_error(self, item: QueuedMessage, error: PipelineError) -> WorkOutcome:
        if error.code == ErrorCode.CANCELLED:
            self.store.release_claim(item.record_id)
            logger.info("Processing of record %d cancelled; claim released", item.record_id)
            return WorkOutcome.RELEASED

        self.store.fail_record(item.record_id, error.code.value, datetime.now(timezone.utc))
        logger.warning("Record %d failed: %s", item.record_id, error)
        return WorkOutcome.FAILED
