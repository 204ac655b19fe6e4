"""Tests for the alert scanner and delivery bookkeeping."""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from conftest import NOW, make_subscription

from subtrack.config import AlertConfig
from subtrack.schemas.result import ErrorCode
from subtrack.schemas.subscription import (
    AlertStatus,
    AlertType,
    BillingCycle,
    ChangeType,
    HistoryEntry,
    SubscriptionStatus,
)
from subtrack.services.alerts import AlertScanner, monthly_cost


@pytest.fixture
def scanner(store) -> AlertScanner:
    return AlertScanner(store, AlertConfig())


def _in_days(days: int) -> date:
    return NOW.date() + timedelta(days=days)


class TestRenewalAlerts:
    """Tests for AlertScanner.scan_account."""

    def test_five_days_gives_one_seven_day_alert(self, scanner, store):
        """Renewal in 5 days: exactly one 7-day alert, none on rerun."""
        make_subscription(store, next_renewal_date=_in_days(5))

        first = scanner.scan_account("user-1", NOW)
        second = scanner.scan_account("user-1", NOW + timedelta(hours=6))

        assert [a.alert_type for a in first] == [AlertType.RENEWAL_UPCOMING_7_DAYS]
        assert second == []
        assert len(store.list_alerts(user_id="user-1")) == 1

    @pytest.mark.parametrize(
        "days, expected",
        [
            (8, None),
            (7, AlertType.RENEWAL_UPCOMING_7_DAYS),
            (4, AlertType.RENEWAL_UPCOMING_7_DAYS),
            (3, AlertType.RENEWAL_UPCOMING_3_DAYS),
            (0, AlertType.RENEWAL_UPCOMING_3_DAYS),
            (-1, None),
        ],
    )
    def test_windows(self, scanner, store, days, expected):
        make_subscription(store, next_renewal_date=_in_days(days))

        alerts = scanner.scan_account("user-1", NOW)

        assert [a.alert_type for a in alerts] == ([expected] if expected else [])

    def test_three_day_alert_after_seven_day_alert(self, scanner, store):
        sub = make_subscription(store, next_renewal_date=_in_days(6))
        scanner.scan_account("user-1", NOW)

        later = scanner.scan_account("user-1", NOW + timedelta(days=4))

        assert [a.alert_type for a in later] == [AlertType.RENEWAL_UPCOMING_3_DAYS]
        assert all(a.subscription_id == sub.id for a in later)

    def test_only_active_with_date(self, scanner, store):
        make_subscription(store, service_name="NoDate", next_renewal_date=None)
        make_subscription(
            store,
            service_name="Cancelled",
            status=SubscriptionStatus.CANCELLED,
            next_renewal_date=_in_days(2),
        )
        make_subscription(
            store, service_name="Other", user_id="user-2", next_renewal_date=_in_days(2)
        )

        assert scanner.scan_account("user-1", NOW) == []

    def test_failed_alert_does_not_block(self, scanner, store):
        make_subscription(store, next_renewal_date=_in_days(2))
        alert = scanner.scan_account("user-1", NOW)[0]
        alert.status = AlertStatus.FAILED
        store.update_alert(alert)

        again = scanner.scan_account("user-1", NOW)

        assert len(again) == 1

    def test_message_text(self, scanner, store):
        make_subscription(store, next_renewal_date=_in_days(1))

        alert = scanner.scan_account("user-1", NOW)[0]

        assert alert.message == "Netflix renews in 1 day (2025-03-11) for USD 15.99"
        assert alert.scheduled_for == NOW
        assert alert.status == AlertStatus.PENDING


class TestOtherProducers:
    """Tests for trial, price increase and unused alerts."""

    def test_trial_ending_today(self, scanner, store):
        make_subscription(
            store, status=SubscriptionStatus.TRIAL_ACTIVE, next_renewal_date=_in_days(0)
        )

        alerts = scanner.scan_trials("user-1", NOW)

        assert len(alerts) == 1
        assert alerts[0].message.startswith("Trial ending TODAY for Netflix!")

    def test_trial_ending_in_days(self, scanner, store):
        make_subscription(
            store, status=SubscriptionStatus.TRIAL_ACTIVE, next_renewal_date=_in_days(2)
        )

        alerts = scanner.scan_trials("user-1", NOW)

        assert alerts[0].message.startswith("Trial ending in 2 days for Netflix.")

    def test_trial_far_away(self, scanner, store):
        make_subscription(
            store, status=SubscriptionStatus.TRIAL_ACTIVE, next_renewal_date=_in_days(10)
        )

        assert scanner.scan_trials("user-1", NOW) == []

    def _price_change(self, store, sub, old, new, when):
        store.append_history(
            HistoryEntry(
                subscription_id=sub.id,
                change_type=ChangeType.PRICE_CHANGE,
                old_value=old,
                new_value=new,
                changed_at=when,
            )
        )

    def test_price_increase(self, scanner, store):
        sub = make_subscription(store, price="17.99")
        self._price_change(store, sub, "15.99 USD", "17.99 USD", NOW - timedelta(days=1))

        alerts = scanner.scan_price_increases("user-1", NOW)

        assert len(alerts) == 1
        assert alerts[0].message == (
            "Price increased for Netflix: USD 15.99 -> USD 17.99 (+12.51%)"
        )
        assert scanner.scan_price_increases("user-1", NOW) == []

    def test_price_decrease_ignored(self, scanner, store):
        sub = make_subscription(store, price="9.99")
        self._price_change(store, sub, "15.99 USD", "9.99 USD", NOW - timedelta(days=1))

        assert scanner.scan_price_increases("user-1", NOW) == []

    def test_old_price_change_ignored(self, scanner, store):
        sub = make_subscription(store, price="17.99")
        self._price_change(store, sub, "15.99 USD", "17.99 USD", NOW - timedelta(days=8))

        assert scanner.scan_price_increases("user-1", NOW) == []

    def test_unused_subscription(self, scanner, store):
        make_subscription(
            store,
            price="120.00",
            billing_cycle=BillingCycle.ANNUAL,
            created_at=NOW - timedelta(days=400),
            last_activity_at=NOW - timedelta(days=210),
        )

        alerts = scanner.scan_unused("user-1", NOW)

        assert len(alerts) == 1
        assert alerts[0].message == (
            "Netflix appears unused for 7 months. Potential savings: USD 70.00. "
            "Consider cancelling?"
        )

    def test_recent_activity_not_unused(self, scanner, store):
        make_subscription(
            store,
            created_at=NOW - timedelta(days=400),
            last_activity_at=NOW - timedelta(days=30),
        )

        assert scanner.scan_unused("user-1", NOW) == []

    def test_generate_all(self, scanner, store):
        make_subscription(store, service_name="Soon", next_renewal_date=_in_days(2))
        make_subscription(
            store,
            service_name="Trial",
            status=SubscriptionStatus.TRIAL_ACTIVE,
            next_renewal_date=_in_days(1),
        )

        summary = scanner.generate_all("user-1", NOW)

        assert summary.renewal == 1
        assert summary.trial_ending == 1
        assert summary.total == 2
        assert scanner.generate_all("user-1", NOW).total == 0

    @pytest.mark.parametrize(
        "cycle, expected",
        [
            (BillingCycle.WEEKLY, Decimal("52")),
            (BillingCycle.MONTHLY, Decimal("12")),
            (BillingCycle.QUARTERLY, Decimal("4")),
            (BillingCycle.ANNUAL, Decimal("1")),
            (BillingCycle.UNKNOWN, Decimal("12")),
        ],
    )
    def test_monthly_cost(self, cycle, expected):
        assert monthly_cost(Decimal("12"), cycle) == pytest.approx(expected)


class TestDeliveryBookkeeping:
    """Tests for mark_sent, mark_failed and snooze."""

    @pytest.fixture
    def alert(self, scanner, store):
        make_subscription(store, next_renewal_date=_in_days(2))
        return scanner.scan_account("user-1", NOW)[0]

    def test_mark_sent(self, scanner, store, alert):
        result = scanner.mark_sent(alert.id, NOW)

        assert result.ok
        stored = store.get_alert(alert.id)
        assert stored.status == AlertStatus.SENT
        assert stored.sent_at == NOW

    def test_mark_failed_backoff_then_failed(self, scanner, store, alert):
        first = scanner.mark_failed(alert.id, NOW).value
        assert first.retry_count == 1
        assert first.status == AlertStatus.PENDING
        assert first.scheduled_for == NOW + timedelta(minutes=10)

        second = scanner.mark_failed(alert.id, NOW).value
        assert second.scheduled_for == NOW + timedelta(minutes=20)

        third = scanner.mark_failed(alert.id, NOW).value
        assert third.retry_count == 3
        assert third.status == AlertStatus.FAILED
        assert store.get_alert(alert.id).status == AlertStatus.FAILED

    def test_pending_alerts_due(self, scanner, alert):
        scanner.mark_failed(alert.id, NOW)

        assert scanner.pending_alerts(NOW) == []
        assert [a.id for a in scanner.pending_alerts(NOW + timedelta(minutes=10))] == [alert.id]

    def test_snooze(self, scanner, store, alert):
        scanner.snooze(alert.id, hours=24, now=NOW)

        assert store.get_alert(alert.id).scheduled_for == NOW + timedelta(hours=24)

    def test_missing_alert(self, scanner):
        assert scanner.mark_sent(999).error.code == ErrorCode.NOT_FOUND
        assert scanner.mark_failed(999).error.code == ErrorCode.NOT_FOUND
        assert scanner.snooze(999).error.code == ErrorCode.NOT_FOUND
