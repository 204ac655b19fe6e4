"""
Message intake schemas.

A RawMessage is what the mail source hands us. A ProcessingRecord is the
durable row tracking one message through the pipeline. A QueuedMessage is the
in-memory unit of work handed to a worker by the dispatcher.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional


class ProcessingStatus(str, Enum):
    """
    Lifecycle of a processing record.

    PENDING -> QUEUED -> PROCESSING -> COMPLETED | FAILED
    """

    PENDING = "PENDING"
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessingStatus.COMPLETED, ProcessingStatus.FAILED)


class Priority(int, Enum):
    """Dispatch tier, assigned from message age at intake. Higher wins."""

    LOW = 0
    NORMAL = 1
    HIGH = 2


HIGH_PRIORITY_AGE = timedelta(hours=24)
NORMAL_PRIORITY_AGE = timedelta(days=7)


def determine_priority(received_at: datetime, now: datetime) -> Priority:
    """Recent messages first: <24h HIGH, <7d NORMAL, older LOW."""
    age = now - received_at
    if age < HIGH_PRIORITY_AGE:
        return Priority.HIGH
    if age < NORMAL_PRIORITY_AGE:
        return Priority.NORMAL
    return Priority.LOW


@dataclass
class RawMessage:
    """A message as delivered by the external mail source."""

    external_id: str  # provider-assigned id, unique per account
    sender: str
    subject: str
    body: str
    received_at: datetime

    @classmethod
    def from_dict(cls, data: dict) -> "RawMessage":
        """Build from a mail-source export entry (ISO timestamps)."""
        received = data.get("received_at") or data.get("receivedAt")
        if not received:
            raise ValueError("message is missing received_at")
        received_at = datetime.fromisoformat(received.replace("Z", "+00:00"))
        if received_at.tzinfo is None:
            received_at = received_at.replace(tzinfo=timezone.utc)
        return cls(
            external_id=str(data.get("external_id") or data.get("id") or ""),
            sender=data.get("sender", ""),
            subject=data.get("subject", ""),
            body=data.get("body", ""),
            received_at=received_at,
        )


@dataclass
class ProcessingRecord:
    """Durable tracking row for one ingested message."""

    id: int
    account_id: str
    external_id: str
    sender: str
    subject: str
    received_at: datetime
    status: ProcessingStatus = ProcessingStatus.PENDING
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None
    subscription_id: Optional[int] = None
    failure_reason: Optional[str] = None


@dataclass
class QueuedMessage:
    """Unit of work held by the dispatcher."""

    record_id: int
    account_id: str
    message: RawMessage
    priority: Priority
    queued_at: Optional[datetime] = None

    @classmethod
    def from_record(
        cls, record: ProcessingRecord, priority: Priority, body: Optional[str] = None
    ) -> "QueuedMessage":
        """
        Rebuild a work item from a stored record.

        Bodies are not persisted, so a record re-enqueued from storage is
        processed with its subject standing in for the body.
        """
        return cls(
            record_id=record.id,
            account_id=record.account_id,
            message=RawMessage(
                external_id=record.external_id,
                sender=record.sender,
                subject=record.subject,
                body=body if body is not None else record.subject,
                received_at=record.received_at,
            ),
            priority=priority,
        )


@dataclass
class MailAccount:
    """Mapping of a source mail account to its owning user."""

    account_id: str
    user_id: str
    last_scan_at: Optional[datetime] = None
