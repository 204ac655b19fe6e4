"""Subscription reconciliation service.

Turns extraction results into durable subscription records:
- Matches by case-insensitive service name within the source account (ARCHIVED excluded)
- Creates new subscriptions with a Created history entry, linked to a vendor
- Updates changed fields in place, one history entry per changed field
- Recomputes confidence and the review flag on every extraction write

Maintenance (refresh):
- Ended trials become ACTIVE
- ACTIVE subscriptions more than the grace period past renewal are flagged for
  review, never cancelled
- Passed renewal dates advance by the billing cycle

User actions: approve, reject, explicit status updates.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Optional

from dateutil.relativedelta import relativedelta

from ..confidence import ConfidenceAggregator
from ..schemas.extraction import ExtractionResult
from ..schemas.result import ErrorCode, Result
from ..schemas.subscription import (
    BillingCycle,
    ChangeType,
    HistoryEntry,
    Subscription,
    SubscriptionStatus,
)
from .vendors import VendorMatcher

if TYPE_CHECKING:
    from ..config import Config
    from ..state_store.base import SubscriptionStore

logger = logging.getLogger(__name__)

CYCLE_INCREMENTS = {
    BillingCycle.WEEKLY: relativedelta(weeks=1),
    BillingCycle.MONTHLY: relativedelta(months=1),
    BillingCycle.QUARTERLY: relativedelta(months=3),
    BillingCycle.ANNUAL: relativedelta(years=1),
}

DEFAULT_CATEGORY = "Other"


def next_renewal_after(renewal: date, cycle: BillingCycle, today: date) -> Optional[date]:
    """
    First renewal date strictly after `today`, stepping from `renewal` by the cycle.

    Steps are taken from the original anchor (Jan 31 -> Feb 28 -> Mar 31), so
    month-end dates do not drift. UNKNOWN cycles return None.
    """
    increment = CYCLE_INCREMENTS.get(cycle)
    if increment is None:
        return None

    steps = 1
    candidate = renewal + increment
    while candidate <= today:
        steps += 1
        candidate = renewal + increment * steps
    return candidate


def _money(price, currency: str) -> str:
    return f"{price} {currency}"


@dataclass
class RefreshSummary:
    """Outcome of a maintenance pass."""

    examined: int = 0
    updated: int = 0
    trials_ended: int = 0
    overdue_flagged: int = 0
    dates_advanced: int = 0
    errors: int = 0


class SubscriptionReconciler:
    """Creates and updates subscriptions from extractions and keeps them current.

    Usage:
        reconciler = SubscriptionReconciler(store, config)
        result = reconciler.reconcile(user_id, account_id, extraction, record_id)
    """

    def __init__(
        self,
        store: SubscriptionStore,
        config: Config,
        aggregator: ConfidenceAggregator | None = None,
        vendors: VendorMatcher | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self.aggregator = aggregator or ConfidenceAggregator(config.confidence)
        self.vendors = vendors or VendorMatcher(store)
        self.overdue_grace_days = config.pipeline.overdue_grace_days

        # One lock per source account serializes find-or-create
        self._account_locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _account_lock(self, account_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._account_locks.setdefault(account_id, threading.Lock())

    # ------------------------------------------------------------------
    # Extraction writes
    # ------------------------------------------------------------------

    def reconcile(
        self,
        user_id: str,
        account_id: str,
        extraction: ExtractionResult,
        source_record_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Result[Subscription]:
        """Create or update the subscription an extraction describes."""
        if not user_id:
            return Result.failure(ErrorCode.INVALID_EXTRACTION, "Owner is required")
        service_name = (extraction.service_name or "").strip()
        if not service_name:
            return Result.failure(ErrorCode.INVALID_EXTRACTION, "Service name is required")
        if extraction.price is None or extraction.price < 0:
            return Result.failure(
                ErrorCode.INVALID_EXTRACTION, f"Invalid price: {extraction.price}"
            )

        now = now or datetime.now(timezone.utc)
        self.aggregator.assess(extraction)

        with self._account_lock(account_id):
            existing = self.store.find_subscription(account_id, service_name)
            if existing is None:
                return Result.success(
                    self._create(
                        user_id, account_id, service_name, extraction, source_record_id, now
                    )
                )
            return Result.success(self._update(existing, extraction, source_record_id, now))

    def _create(
        self,
        user_id: str,
        account_id: str,
        service_name: str,
        extraction: ExtractionResult,
        source_record_id: Optional[int],
        now: datetime,
    ) -> Subscription:
        category = extraction.category or DEFAULT_CATEGORY
        vendor = self.vendors.get_or_create(service_name, category, now)

        subscription = Subscription(
            id=None,
            user_id=user_id,
            account_id=account_id,
            service_name=service_name,
            price=extraction.price,
            currency=extraction.currency,
            billing_cycle=extraction.billing_cycle,
            next_renewal_date=extraction.next_renewal_date,
            category=category,
            status=(
                SubscriptionStatus.TRIAL_ACTIVE
                if extraction.is_trial
                else SubscriptionStatus.ACTIVE
            ),
            confidence_score=extraction.confidence_score,
            requires_review=extraction.requires_review,
            vendor_id=vendor.id if vendor else None,
            cancellation_link=extraction.cancellation_link,
            created_at=now,
            updated_at=now,
            last_activity_at=now,
        )
        subscription = self.store.create_subscription(subscription)

        self._record(
            subscription,
            ChangeType.CREATED,
            "",
            f"Service: {service_name}, Price: {_money(extraction.price, extraction.currency)}"
            f"/{extraction.billing_cycle.value}",
            source_record_id,
            now,
        )
        logger.info(
            "Created subscription %d (%s) for %s, confidence %.2f%s",
            subscription.id,
            service_name,
            user_id,
            subscription.confidence_score,
            ", needs review" if subscription.requires_review else "",
        )
        return subscription

    def _update(
        self,
        subscription: Subscription,
        extraction: ExtractionResult,
        source_record_id: Optional[int],
        now: datetime,
    ) -> Subscription:
        changes: list[tuple[ChangeType, str, str]] = []

        # A zero price means the model could not read one; keep what we have
        if extraction.price > 0:
            currency = extraction.currency or subscription.currency
            if extraction.price != subscription.price:
                changes.append(
                    (
                        ChangeType.PRICE_CHANGE,
                        _money(subscription.price, subscription.currency),
                        _money(extraction.price, currency),
                    )
                )
                subscription.price = extraction.price
            if currency != subscription.currency:
                changes.append((ChangeType.CURRENCY_CHANGE, subscription.currency, currency))
                subscription.currency = currency

        if (
            extraction.billing_cycle != BillingCycle.UNKNOWN
            and extraction.billing_cycle != subscription.billing_cycle
        ):
            changes.append(
                (
                    ChangeType.BILLING_CYCLE_CHANGE,
                    subscription.billing_cycle.value,
                    extraction.billing_cycle.value,
                )
            )
            subscription.billing_cycle = extraction.billing_cycle

        if (
            extraction.next_renewal_date is not None
            and extraction.next_renewal_date != subscription.next_renewal_date
        ):
            changes.append(
                (
                    ChangeType.RENEWAL_DATE_CHANGE,
                    _date_text(subscription.next_renewal_date),
                    _date_text(extraction.next_renewal_date),
                )
            )
            subscription.next_renewal_date = extraction.next_renewal_date

        category = (extraction.category or "").strip()
        if category and category != DEFAULT_CATEGORY and category != subscription.category:
            changes.append((ChangeType.CATEGORY_CHANGE, subscription.category, category))
            subscription.category = category

        if (
            extraction.cancellation_link
            and extraction.cancellation_link != subscription.cancellation_link
        ):
            changes.append(
                (
                    ChangeType.CANCELLATION_LINK_CHANGE,
                    subscription.cancellation_link or "",
                    extraction.cancellation_link,
                )
            )
            subscription.cancellation_link = extraction.cancellation_link

        subscription.confidence_score = extraction.confidence_score
        subscription.requires_review = extraction.requires_review
        subscription.last_activity_at = now
        subscription.updated_at = now
        self.store.update_subscription(subscription)

        for change_type, old_value, new_value in changes:
            self._record(subscription, change_type, old_value, new_value, source_record_id, now)

        logger.info(
            "Updated subscription %d (%s): %d field change(s)",
            subscription.id,
            subscription.service_name,
            len(changes),
        )
        return subscription

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def refresh(self, subscription: Subscription, now: Optional[datetime] = None) -> list[HistoryEntry]:
        """
        Apply time-based transitions to one subscription.

        Returns the history entries written (empty when nothing changed).
        """
        if subscription.status in (SubscriptionStatus.ARCHIVED, SubscriptionStatus.CANCELLED):
            return []
        if subscription.next_renewal_date is None:
            return []

        now = now or datetime.now(timezone.utc)
        today = now.date()
        pending: list[tuple[ChangeType, str, str]] = []

        if (
            subscription.status == SubscriptionStatus.TRIAL_ACTIVE
            and subscription.next_renewal_date <= today
        ):
            logger.info(
                "Trial period ended for subscription %d (%s)",
                subscription.id,
                subscription.service_name,
            )
            subscription.status = SubscriptionStatus.ACTIVE
            pending.append(
                (
                    ChangeType.TRIAL_ENDED,
                    SubscriptionStatus.TRIAL_ACTIVE.value,
                    SubscriptionStatus.ACTIVE.value,
                )
            )

        if subscription.status == SubscriptionStatus.ACTIVE:
            days_past = (today - subscription.next_renewal_date).days

            # Flag only; status is never changed to CANCELLED here
            if days_past > self.overdue_grace_days and not self._overdue_logged(subscription):
                logger.info(
                    "Subscription %d (%s) is %d days past renewal date",
                    subscription.id,
                    subscription.service_name,
                    days_past,
                )
                subscription.requires_review = True
                pending.append(
                    (
                        ChangeType.RENEWAL_OVERDUE,
                        _date_text(subscription.next_renewal_date),
                        f"Overdue by {days_past} days",
                    )
                )

            if days_past >= 0:
                advanced = next_renewal_after(
                    subscription.next_renewal_date, subscription.billing_cycle, today
                )
                if advanced is not None:
                    pending.append(
                        (
                            ChangeType.RENEWAL_DATE_ADVANCED,
                            _date_text(subscription.next_renewal_date),
                            _date_text(advanced),
                        )
                    )
                    subscription.next_renewal_date = advanced

        if not pending:
            return []

        subscription.updated_at = now
        self.store.update_subscription(subscription)
        return [
            self._record(subscription, change_type, old_value, new_value, None, now)
            for change_type, old_value, new_value in pending
        ]

    def _overdue_logged(self, subscription: Subscription) -> bool:
        """True when this renewal date already has an overdue entry.

        Only matters for dates that cannot be advanced (unknown cycle); the
        review flag plays no part.
        """
        renewal = _date_text(subscription.next_renewal_date)
        return any(
            entry.old_value == renewal
            for entry in self.store.get_history(
                subscription.id, change_type=ChangeType.RENEWAL_OVERDUE
            )
        )

    def refresh_owner(self, user_id: str, now: Optional[datetime] = None) -> RefreshSummary:
        """Refresh every subscription of one owner; one failure does not stop the rest."""
        now = now or datetime.now(timezone.utc)
        summary = RefreshSummary()

        for subscription in self.store.list_subscriptions(user_id=user_id):
            summary.examined += 1
            try:
                entries = self.refresh(subscription, now)
            except Exception:
                logger.exception(
                    "Failed to refresh subscription %s for %s", subscription.id, user_id
                )
                summary.errors += 1
                continue

            if not entries:
                continue
            summary.updated += 1
            for entry in entries:
                if entry.change_type == ChangeType.TRIAL_ENDED:
                    summary.trials_ended += 1
                elif entry.change_type == ChangeType.RENEWAL_OVERDUE:
                    summary.overdue_flagged += 1
                elif entry.change_type == ChangeType.RENEWAL_DATE_ADVANCED:
                    summary.dates_advanced += 1

        return summary

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    def approve(self, subscription_id: int, now: Optional[datetime] = None) -> Result[Subscription]:
        """Confirm a subscription: review flag cleared, PENDING_REVIEW becomes ACTIVE."""
        subscription = self.store.get_subscription(subscription_id)
        if subscription is None:
            return Result.failure(ErrorCode.NOT_FOUND, f"Subscription {subscription_id} not found")

        now = now or datetime.now(timezone.utc)
        old_status = subscription.status
        if subscription.status == SubscriptionStatus.PENDING_REVIEW:
            subscription.status = SubscriptionStatus.ACTIVE
        subscription.requires_review = False
        subscription.updated_at = now
        self.store.update_subscription(subscription)

        self._record(
            subscription, ChangeType.APPROVED, old_status.value, subscription.status.value, None, now
        )
        return Result.success(subscription)

    def reject(self, subscription_id: int, now: Optional[datetime] = None) -> Result[Subscription]:
        """Discard a false positive: status ARCHIVED, review flag cleared."""
        subscription = self.store.get_subscription(subscription_id)
        if subscription is None:
            return Result.failure(ErrorCode.NOT_FOUND, f"Subscription {subscription_id} not found")

        now = now or datetime.now(timezone.utc)
        old_status = subscription.status
        subscription.status = SubscriptionStatus.ARCHIVED
        subscription.requires_review = False
        subscription.updated_at = now
        self.store.update_subscription(subscription)

        self._record(
            subscription,
            ChangeType.REJECTED,
            old_status.value,
            SubscriptionStatus.ARCHIVED.value,
            None,
            now,
        )
        return Result.success(subscription)

    def update_status(
        self,
        subscription_id: int,
        status: SubscriptionStatus,
        source_record_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Result[Subscription]:
        """Apply an explicit status signal (the only path to CANCELLED)."""
        subscription = self.store.get_subscription(subscription_id)
        if subscription is None:
            return Result.failure(ErrorCode.NOT_FOUND, f"Subscription {subscription_id} not found")
        if subscription.status == status:
            return Result.success(subscription)

        now = now or datetime.now(timezone.utc)
        old_status = subscription.status
        subscription.status = status
        subscription.updated_at = now
        if status == SubscriptionStatus.CANCELLED:
            subscription.cancelled_at = now
        self.store.update_subscription(subscription)

        self._record(
            subscription,
            ChangeType.STATUS_CHANGE,
            old_status.value,
            status.value,
            source_record_id,
            now,
        )
        logger.info(
            "Subscription %d status %s -> %s", subscription.id, old_status.value, status.value
        )
        return Result.success(subscription)

    # ------------------------------------------------------------------

    def _record(
        self,
        subscription: Subscription,
        change_type: ChangeType,
        old_value: str,
        new_value: str,
        source_record_id: Optional[int],
        now: datetime,
    ) -> HistoryEntry:
        return self.store.append_history(
            HistoryEntry(
                subscription_id=subscription.id,
                change_type=change_type,
                old_value=old_value,
                new_value=new_value,
                changed_at=now,
                source_record_id=source_record_id,
            )
        )


def _date_text(value: Optional[date]) -> str:
    return value.isoformat() if value else ""
