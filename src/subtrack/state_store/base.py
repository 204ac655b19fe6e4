"""
Storage contract consumed by the pipeline.

Services receive a SubscriptionStore at construction and never reach for a
concrete backend. StateStore (SQLite) is the shipped implementation.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime
from typing import Any, Optional

from ..schemas.messages import MailAccount, ProcessingRecord, ProcessingStatus, RawMessage
from ..schemas.subscription import (
    Alert,
    AlertStatus,
    AlertType,
    ChangeType,
    HistoryEntry,
    Subscription,
    SubscriptionStatus,
    Vendor,
)


class SubscriptionStore(ABC):
    """Persistence for processing records, subscriptions, vendors, history, alerts and accounts."""

    # Processing records

    @abstractmethod
    def get_record(self, record_id: int) -> Optional[ProcessingRecord]: ...

    @abstractmethod
    def get_record_by_external_id(
        self, account_id: str, external_id: str
    ) -> Optional[ProcessingRecord]: ...

    @abstractmethod
    def create_record(
        self, account_id: str, message: RawMessage, now: datetime
    ) -> ProcessingRecord:
        """Insert a PENDING record. Raises DuplicateRecordError if the pair exists."""

    @abstractmethod
    def update_record_status(self, record_id: int, status: ProcessingStatus) -> bool: ...

    @abstractmethod
    def claim_record(self, record_id: int, now: datetime) -> bool:
        """Move PENDING or QUEUED to PROCESSING. False if another worker got there first."""

    @abstractmethod
    def release_claim(self, record_id: int) -> bool:
        """Return a PROCESSING record to PENDING."""

    @abstractmethod
    def complete_record(
        self, record_id: int, now: datetime, subscription_id: Optional[int] = None
    ) -> None: ...

    @abstractmethod
    def fail_record(self, record_id: int, reason: str, now: datetime) -> None: ...

    @abstractmethod
    def list_records(
        self,
        account_id: Optional[str] = None,
        statuses: Optional[Iterable[ProcessingStatus]] = None,
        limit: Optional[int] = None,
    ) -> list[ProcessingRecord]: ...

    @abstractmethod
    def reset_stale_claims(self, claimed_before: datetime, account_id: Optional[str] = None) -> int:
        """Reset PROCESSING records claimed before the cutoff to PENDING."""

    # Subscriptions

    @abstractmethod
    def get_subscription(self, subscription_id: int) -> Optional[Subscription]: ...

    @abstractmethod
    def find_subscription(self, account_id: str, service_name: str) -> Optional[Subscription]:
        """Case-insensitive service-name match within one source account, ARCHIVED excluded."""

    @abstractmethod
    def create_subscription(self, subscription: Subscription) -> Subscription: ...

    @abstractmethod
    def update_subscription(self, subscription: Subscription) -> None: ...

    @abstractmethod
    def list_subscriptions(
        self,
        user_id: Optional[str] = None,
        statuses: Optional[Iterable[SubscriptionStatus]] = None,
    ) -> list[Subscription]: ...

    @abstractmethod
    def list_subscription_owners(self) -> list[str]: ...

    @abstractmethod
    def list_unlinked_subscriptions(self) -> list[Subscription]: ...

    # Vendors

    @abstractmethod
    def get_vendor(self, vendor_id: int) -> Optional[Vendor]: ...

    @abstractmethod
    def find_vendor(self, normalized_name: str) -> Optional[Vendor]: ...

    @abstractmethod
    def create_vendor(self, vendor: Vendor) -> Vendor:
        """Insert, or return the existing vendor with the same normalized name."""

    @abstractmethod
    def update_vendor(self, vendor: Vendor) -> None: ...

    @abstractmethod
    def list_vendors(self, needs_enrichment: Optional[bool] = None) -> list[Vendor]: ...

    # History (append-only)

    @abstractmethod
    def append_history(self, entry: HistoryEntry) -> HistoryEntry: ...

    @abstractmethod
    def get_history(
        self,
        subscription_id: int,
        change_type: Optional[ChangeType] = None,
        since: Optional[datetime] = None,
    ) -> list[HistoryEntry]: ...

    @abstractmethod
    def delete_history_before(self, cutoff: datetime) -> int:
        """Retention cleanup. The only removal path for history."""

    # Alerts

    @abstractmethod
    def find_recent_alert(
        self, subscription_id: int, alert_type: AlertType, since: datetime
    ) -> Optional[Alert]:
        """Most recent non-failed alert of this type scheduled at or after `since`."""

    @abstractmethod
    def create_alert(self, alert: Alert) -> Alert: ...

    @abstractmethod
    def get_alert(self, alert_id: int) -> Optional[Alert]: ...

    @abstractmethod
    def update_alert(self, alert: Alert) -> None: ...

    @abstractmethod
    def list_alerts(
        self, user_id: Optional[str] = None, status: Optional[AlertStatus] = None
    ) -> list[Alert]: ...

    # Accounts

    @abstractmethod
    def upsert_account(self, account: MailAccount) -> None: ...

    @abstractmethod
    def get_account(self, account_id: str) -> Optional[MailAccount]: ...

    @abstractmethod
    def list_accounts(self) -> list[MailAccount]: ...

    # Statistics

    @abstractmethod
    def get_stats(self) -> dict[str, Any]: ...
