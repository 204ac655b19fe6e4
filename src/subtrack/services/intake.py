"""
Intake deduplication: the sole gate that turns a raw message into a
processing record.

Re-ingesting the same (account, external id) returns the existing record
untouched and never queues it twice.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from ..errors import DuplicateRecordError
from ..schemas.messages import (
    ProcessingRecord,
    ProcessingStatus,
    QueuedMessage,
    RawMessage,
    determine_priority,
)
from ..state_store.base import SubscriptionStore
from .dispatcher import PriorityDispatcher

logger = logging.getLogger(__name__)


@dataclass
class IntakeSummary:
    """Outcome of admitting a batch of messages."""

    admitted: int = 0
    duplicates: int = 0
    queued: int = 0
    invalid: int = 0
    records: list[ProcessingRecord] = field(default_factory=list)


class IntakeDeduplicator:
    """Creates processing records and (optionally) queues them for workers."""

    def __init__(
        self,
        store: SubscriptionStore,
        dispatcher: Optional[PriorityDispatcher] = None,
    ):
        self.store = store
        self.dispatcher = dispatcher

    def admit(
        self,
        account_id: str,
        message: RawMessage,
        now: Optional[datetime] = None,
    ) -> ProcessingRecord:
        """
        Return the record for this message, creating it if it is new.

        Raises:
            ValueError: account id or external id is empty.
        """
        record, _ = self._admit(account_id, message, now)
        return record

    def _admit(
        self, account_id: str, message: RawMessage, now: Optional[datetime]
    ) -> tuple[ProcessingRecord, bool]:
        if not account_id:
            raise ValueError("account_id is required")
        if not message.external_id:
            raise ValueError("message external_id is required")

        now = now or datetime.now(timezone.utc)

        existing = self.store.get_record_by_external_id(account_id, message.external_id)
        if existing is not None:
            logger.debug(
                "Message %s already ingested for %s (record %d, %s)",
                message.external_id,
                account_id,
                existing.id,
                existing.status.value,
            )
            return existing, False

        try:
            record = self.store.create_record(account_id, message, now)
        except DuplicateRecordError:
            # Lost a race with a concurrent admit; the winner's row is authoritative
            existing = self.store.get_record_by_external_id(account_id, message.external_id)
            if existing is None:
                raise
            return existing, False

        logger.debug("Created record %d for message %s", record.id, message.external_id)

        if self.dispatcher is not None:
            item = QueuedMessage(
                record_id=record.id,
                account_id=account_id,
                message=message,
                priority=determine_priority(message.received_at, now),
                queued_at=now,
            )
            # Mark QUEUED first: a worker may claim the item as soon as it is enqueued
            self.store.update_record_status(record.id, ProcessingStatus.QUEUED)
            if self.dispatcher.enqueue(item):
                record.status = ProcessingStatus.QUEUED
            else:
                self.store.update_record_status(record.id, ProcessingStatus.PENDING)

        return record, True

    def admit_many(
        self,
        account_id: str,
        messages: Iterable[RawMessage],
        now: Optional[datetime] = None,
    ) -> IntakeSummary:
        """Admit a batch; invalid messages are counted and skipped."""
        summary = IntakeSummary()
        for message in messages:
            try:
                record, created = self._admit(account_id, message, now)
            except ValueError as e:
                logger.warning("Skipping invalid message from %s: %s", account_id, e)
                summary.invalid += 1
                continue

            summary.records.append(record)
            if not created:
                summary.duplicates += 1
                continue
            summary.admitted += 1
            if record.status == ProcessingStatus.QUEUED:
                summary.queued += 1

        return summary
