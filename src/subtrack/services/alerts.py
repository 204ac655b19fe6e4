"""
Renewal scanner and alert bookkeeping.

Alert producers (one pass per owner):
- RENEWAL_UPCOMING_7_DAYS: ACTIVE, renewal in 4..7 days
- RENEWAL_UPCOMING_3_DAYS: ACTIVE, renewal in 0..3 days
- TRIAL_ENDING: TRIAL_ACTIVE, trial ends in 0..3 days
- PRICE_INCREASE: a PriceChange history entry in the last 7 days with a higher new price
- UNUSED_SUBSCRIPTION: ACTIVE, no activity for 6 months

Every producer first checks for a non-failed alert of the same
(subscription, type) within the lookback window, so reruns never duplicate.
Delivery itself is external; mark_sent / mark_failed record its outcome.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

from dateutil.relativedelta import relativedelta

from ..config import AlertConfig
from ..schemas.result import ErrorCode, Result
from ..schemas.subscription import (
    Alert,
    AlertStatus,
    AlertType,
    BillingCycle,
    ChangeType,
    Subscription,
    SubscriptionStatus,
)
from ..state_store.base import SubscriptionStore

logger = logging.getLogger(__name__)

_MONTHLY_FACTORS = {
    BillingCycle.WEEKLY: Decimal(52) / Decimal(12),
    BillingCycle.MONTHLY: Decimal(1),
    BillingCycle.QUARTERLY: Decimal(1) / Decimal(3),
    BillingCycle.ANNUAL: Decimal(1) / Decimal(12),
}


def monthly_cost(price: Decimal, cycle: BillingCycle) -> Decimal:
    """Normalize a price to a monthly amount (UNKNOWN is treated as monthly)."""
    return price * _MONTHLY_FACTORS.get(cycle, Decimal(1))


def _leading_amount(value: str) -> Optional[Decimal]:
    """Amount from a history value such as "15.99 USD"."""
    if not value:
        return None
    try:
        return Decimal(value.split()[0])
    except (InvalidOperation, IndexError):
        return None


@dataclass
class AlertSummary:
    """Alerts created by one generate_all pass."""

    renewal: int = 0
    price_increase: int = 0
    trial_ending: int = 0
    unused: int = 0
    alerts: list[Alert] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.renewal + self.price_increase + self.trial_ending + self.unused


class AlertScanner:
    """Generates alerts for one owner's subscriptions and tracks delivery state."""

    def __init__(self, store: SubscriptionStore, config: Optional[AlertConfig] = None):
        self.store = store
        self.config = config or AlertConfig()

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    def scan_account(self, user_id: str, now: Optional[datetime] = None) -> list[Alert]:
        """Renewal alerts for ACTIVE subscriptions with a known renewal date."""
        now = now or datetime.now(timezone.utc)
        today = now.date()
        created = []

        for subscription in self.store.list_subscriptions(
            user_id=user_id, statuses=[SubscriptionStatus.ACTIVE]
        ):
            if subscription.next_renewal_date is None:
                continue
            days = (subscription.next_renewal_date - today).days

            if self.config.renewal_urgent_days < days <= self.config.renewal_warning_days:
                alert_type = AlertType.RENEWAL_UPCOMING_7_DAYS
            elif 0 <= days <= self.config.renewal_urgent_days:
                alert_type = AlertType.RENEWAL_UPCOMING_3_DAYS
            else:
                continue

            alert = self._create_if_absent(
                subscription, alert_type, self._renewal_message(subscription, days), now
            )
            if alert is not None:
                created.append(alert)

        return created

    def scan_trials(self, user_id: str, now: Optional[datetime] = None) -> list[Alert]:
        now = now or datetime.now(timezone.utc)
        today = now.date()
        created = []

        for subscription in self.store.list_subscriptions(
            user_id=user_id, statuses=[SubscriptionStatus.TRIAL_ACTIVE]
        ):
            if subscription.next_renewal_date is None:
                continue
            days = (subscription.next_renewal_date - today).days
            if not 0 <= days <= self.config.trial_ending_days:
                continue

            full_price = (
                f"{subscription.currency} {subscription.price:.2f}"
                f"/{subscription.billing_cycle.value.lower()}"
            )
            if days == 0:
                message = f"Trial ending TODAY for {subscription.service_name}! Full price: {full_price}"
            else:
                message = (
                    f"Trial ending in {days} day{'' if days == 1 else 's'} for "
                    f"{subscription.service_name}. Full price: {full_price}"
                )

            alert = self._create_if_absent(subscription, AlertType.TRIAL_ENDING, message, now)
            if alert is not None:
                created.append(alert)

        return created

    def scan_price_increases(self, user_id: str, now: Optional[datetime] = None) -> list[Alert]:
        now = now or datetime.now(timezone.utc)
        since = now - timedelta(days=self.config.price_change_window_days)
        created = []

        for subscription in self.store.list_subscriptions(user_id=user_id):
            if subscription.status == SubscriptionStatus.ARCHIVED:
                continue

            changes = self.store.get_history(
                subscription.id, change_type=ChangeType.PRICE_CHANGE, since=since
            )
            # Most recent increase wins
            for change in reversed(changes):
                old_price = _leading_amount(change.old_value)
                new_price = _leading_amount(change.new_value)
                if old_price is None or new_price is None or new_price <= old_price:
                    continue

                increase = new_price - old_price
                percent = (
                    f" (+{(increase / old_price * 100):.2f}%)" if old_price > 0 else ""
                )
                message = (
                    f"Price increased for {subscription.service_name}: "
                    f"{subscription.currency} {old_price:.2f} -> "
                    f"{subscription.currency} {new_price:.2f}{percent}"
                )
                alert = self._create_if_absent(
                    subscription, AlertType.PRICE_INCREASE, message, now
                )
                if alert is not None:
                    created.append(alert)
                break

        return created

    def scan_unused(self, user_id: str, now: Optional[datetime] = None) -> list[Alert]:
        now = now or datetime.now(timezone.utc)
        cutoff = now - relativedelta(months=self.config.unused_months)
        created = []

        for subscription in self.store.list_subscriptions(
            user_id=user_id, statuses=[SubscriptionStatus.ACTIVE]
        ):
            last_activity = subscription.last_activity_at or subscription.created_at
            if last_activity is None or last_activity >= cutoff:
                continue

            months_unused = (now - last_activity).days // 30
            savings = monthly_cost(subscription.price, subscription.billing_cycle) * months_unused
            message = (
                f"{subscription.service_name} appears unused for {months_unused} months. "
                f"Potential savings: {subscription.currency} {savings:.2f}. Consider cancelling?"
            )
            alert = self._create_if_absent(
                subscription, AlertType.UNUSED_SUBSCRIPTION, message, now
            )
            if alert is not None:
                created.append(alert)

        return created

    def generate_all(self, user_id: str, now: Optional[datetime] = None) -> AlertSummary:
        """Run every producer for one owner."""
        now = now or datetime.now(timezone.utc)
        summary = AlertSummary()

        renewal = self.scan_account(user_id, now)
        price = self.scan_price_increases(user_id, now)
        trial = self.scan_trials(user_id, now)
        unused = self.scan_unused(user_id, now)

        summary.renewal = len(renewal)
        summary.price_increase = len(price)
        summary.trial_ending = len(trial)
        summary.unused = len(unused)
        summary.alerts = renewal + price + trial + unused

        if summary.total:
            logger.info(
                "Generated %d alert(s) for %s (renewal=%d, price=%d, trial=%d, unused=%d)",
                summary.total,
                user_id,
                summary.renewal,
                summary.price_increase,
                summary.trial_ending,
                summary.unused,
            )
        return summary

    # ------------------------------------------------------------------
    # Delivery bookkeeping
    # ------------------------------------------------------------------

    def pending_alerts(self, as_of: Optional[datetime] = None) -> list[Alert]:
        """PENDING alerts due at or before as_of."""
        as_of = as_of or datetime.now(timezone.utc)
        return [
            alert
            for alert in self.store.list_alerts(status=AlertStatus.PENDING)
            if alert.scheduled_for <= as_of
        ]

    def mark_sent(self, alert_id: int, now: Optional[datetime] = None) -> Result[Alert]:
        alert = self.store.get_alert(alert_id)
        if alert is None:
            return Result.failure(ErrorCode.NOT_FOUND, f"Alert {alert_id} not found")

        alert.status = AlertStatus.SENT
        alert.sent_at = now or datetime.now(timezone.utc)
        self.store.update_alert(alert)
        return Result.success(alert)

    def mark_failed(self, alert_id: int, now: Optional[datetime] = None) -> Result[Alert]:
        """Count a failed delivery; reschedule with exponential backoff or give up."""
        alert = self.store.get_alert(alert_id)
        if alert is None:
            return Result.failure(ErrorCode.NOT_FOUND, f"Alert {alert_id} not found")

        now = now or datetime.now(timezone.utc)
        alert.retry_count += 1
        if alert.retry_count >= self.config.max_delivery_attempts:
            alert.status = AlertStatus.FAILED
            logger.warning(
                "Alert %d failed after %d delivery attempts", alert.id, alert.retry_count
            )
        else:
            alert.scheduled_for = now + timedelta(minutes=5 * 2**alert.retry_count)
        self.store.update_alert(alert)
        return Result.success(alert)

    def snooze(
        self, alert_id: int, hours: int = 24, now: Optional[datetime] = None
    ) -> Result[Alert]:
        alert = self.store.get_alert(alert_id)
        if alert is None:
            return Result.failure(ErrorCode.NOT_FOUND, f"Alert {alert_id} not found")

        alert.scheduled_for = (now or datetime.now(timezone.utc)) + timedelta(hours=hours)
        self.store.update_alert(alert)
        return Result.success(alert)

    # ------------------------------------------------------------------

    def _create_if_absent(
        self,
        subscription: Subscription,
        alert_type: AlertType,
        message: str,
        now: datetime,
    ) -> Optional[Alert]:
        since = now - timedelta(days=self.config.lookback_days)
        if self.store.find_recent_alert(subscription.id, alert_type, since) is not None:
            return None

        alert = self.store.create_alert(
            Alert(
                id=None,
                user_id=subscription.user_id,
                subscription_id=subscription.id,
                alert_type=alert_type,
                message=message,
                scheduled_for=now,
            )
        )
        logger.debug("Created %s alert for subscription %d", alert_type.value, subscription.id)
        return alert

    @staticmethod
    def _renewal_message(subscription: Subscription, days: int) -> str:
        when = "today" if days == 0 else f"in {days} day{'' if days == 1 else 's'}"
        return (
            f"{subscription.service_name} renews {when} "
            f"({subscription.next_renewal_date.isoformat()}) for "
            f"{subscription.currency} {subscription.price:.2f}"
        )
