"""Tests for subscription reconciliation and renewal maintenance."""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from conftest import NOW, make_subscription

from subtrack.schemas.extraction import ExtractionResult
from subtrack.schemas.result import ErrorCode
from subtrack.schemas.subscription import BillingCycle, ChangeType, SubscriptionStatus
from subtrack.services.reconciliation import SubscriptionReconciler, next_renewal_after

HIGH_CONFIDENCE = {"serviceName": 0.95, "price": 0.9, "billingCycle": 0.9, "nextRenewalDate": 0.9}


def _extraction(
    service_name: str = "Netflix",
    price: str = "15.99",
    currency: str = "USD",
    billing_cycle: BillingCycle = BillingCycle.MONTHLY,
    next_renewal_date: date | None = date(2025, 4, 1),
    category: str = "Entertainment",
    confidences: dict | None = None,
    **kwargs,
) -> ExtractionResult:
    return ExtractionResult(
        service_name=service_name,
        price=Decimal(price),
        currency=currency,
        billing_cycle=billing_cycle,
        next_renewal_date=next_renewal_date,
        category=category,
        field_confidences=dict(HIGH_CONFIDENCE if confidences is None else confidences),
        **kwargs,
    )


@pytest.fixture
def reconciler(store, config) -> SubscriptionReconciler:
    return SubscriptionReconciler(store, config)


class TestNextRenewalAfter:
    """Tests for cycle arithmetic."""

    @pytest.mark.parametrize(
        "cycle, renewal, today, expected",
        [
            (BillingCycle.WEEKLY, date(2025, 3, 1), date(2025, 3, 1), date(2025, 3, 8)),
            (BillingCycle.MONTHLY, date(2025, 3, 1), date(2025, 3, 1), date(2025, 4, 1)),
            (BillingCycle.QUARTERLY, date(2025, 1, 15), date(2025, 3, 1), date(2025, 4, 15)),
            (BillingCycle.ANNUAL, date(2024, 2, 29), date(2024, 3, 1), date(2025, 2, 28)),
            # Several missed cycles catch up in one step
            (BillingCycle.MONTHLY, date(2024, 12, 5), date(2025, 3, 10), date(2025, 4, 5)),
        ],
    )
    def test_increments(self, cycle, renewal, today, expected):
        assert next_renewal_after(renewal, cycle, today) == expected

    def test_month_end_does_not_drift(self):
        """Jan 31 -> Feb 28 -> Mar 31, stepping from the anchor."""
        assert next_renewal_after(date(2025, 1, 31), BillingCycle.MONTHLY, date(2025, 1, 31)) == date(2025, 2, 28)
        assert next_renewal_after(date(2025, 1, 31), BillingCycle.MONTHLY, date(2025, 3, 1)) == date(2025, 3, 31)

    def test_unknown_cycle(self):
        assert next_renewal_after(date(2025, 3, 1), BillingCycle.UNKNOWN, date(2025, 3, 5)) is None


class TestReconcile:
    """Tests for SubscriptionReconciler.reconcile."""

    def test_creates_subscription(self, reconciler, store):
        result = reconciler.reconcile("user-1", "acct-1", _extraction(), source_record_id=None, now=NOW)

        assert result.ok
        sub = result.value
        assert sub.id is not None
        assert sub.status == SubscriptionStatus.ACTIVE
        assert sub.price == Decimal("15.99")
        assert sub.requires_review is False
        assert sub.last_activity_at == NOW

        history = store.get_history(sub.id)
        assert [h.change_type for h in history] == [ChangeType.CREATED]
        assert history[0].new_value == "Service: Netflix, Price: 15.99 USD/MONTHLY"

    def test_new_subscription_linked_to_vendor(self, reconciler, store):
        first = reconciler.reconcile("user-1", "acct-1", _extraction(), now=NOW).value
        other = reconciler.reconcile(
            "user-2", "acct-2", _extraction(service_name="Netflix Inc."), now=NOW
        ).value

        vendor = store.get_vendor(first.vendor_id)
        assert vendor.name == "Netflix"
        assert vendor.category == "Entertainment"
        assert vendor.needs_enrichment is True
        # Different accounts, one shared vendor
        assert other.vendor_id == first.vendor_id
        assert store.get_subscription(first.id).vendor_id == vendor.id

    def test_unicode_name_matches_existing(self, reconciler, store):
        first = reconciler.reconcile("user-1", "acct-1", _extraction(service_name="Café Plus"), now=NOW)
        second = reconciler.reconcile("user-1", "acct-1", _extraction(service_name="CAFÉ PLUS"), now=NOW)

        assert second.value.id == first.value.id
        assert len(store.list_subscriptions(user_id="user-1")) == 1

    def test_trial_created_as_trial_active(self, reconciler):
        result = reconciler.reconcile("user-1", "acct-1", _extraction(is_trial=True), now=NOW)

        assert result.value.status == SubscriptionStatus.TRIAL_ACTIVE

    def test_low_confidence_sets_review_flag(self, reconciler):
        result = reconciler.reconcile(
            "user-1", "acct-1", _extraction(confidences={"serviceName": 0.4}), now=NOW
        )

        assert result.value.requires_review is True
        assert result.value.status == SubscriptionStatus.ACTIVE

    def test_netflix_twice_one_subscription_one_price_change(self, reconciler, store):
        """The same service reconciled twice with a new price yields one row and one PriceChange."""
        first = reconciler.reconcile("user-1", "acct-1", _extraction(price="15.99"), now=NOW)
        second = reconciler.reconcile(
            "user-1",
            "acct-1",
            _extraction(service_name="NETFLIX", price="17.99"),
            now=NOW + timedelta(days=1),
        )

        assert second.value.id == first.value.id
        assert len(store.list_subscriptions(user_id="user-1")) == 1
        assert store.get_subscription(first.value.id).price == Decimal("17.99")

        changes = store.get_history(first.value.id, change_type=ChangeType.PRICE_CHANGE)
        assert len(changes) == 1
        assert changes[0].old_value == "15.99 USD"
        assert changes[0].new_value == "17.99 USD"

    def test_unchanged_extraction_writes_no_history(self, reconciler, store):
        first = reconciler.reconcile("user-1", "acct-1", _extraction(), now=NOW)
        reconciler.reconcile("user-1", "acct-1", _extraction(), now=NOW + timedelta(hours=1))

        history = store.get_history(first.value.id)
        assert [h.change_type for h in history] == [ChangeType.CREATED]
        assert store.get_subscription(first.value.id).last_activity_at == NOW + timedelta(hours=1)

    def test_one_entry_per_changed_field(self, reconciler, store):
        first = reconciler.reconcile("user-1", "acct-1", _extraction(), now=NOW)
        reconciler.reconcile(
            "user-1",
            "acct-1",
            _extraction(
                price="99.00",
                currency="EUR",
                billing_cycle=BillingCycle.ANNUAL,
                next_renewal_date=date(2026, 1, 1),
                category="Streaming",
                cancellation_link="https://example.com/cancel",
            ),
            source_record_id=None,
            now=NOW,
        )

        types = [h.change_type for h in store.get_history(first.value.id)][1:]
        assert types == [
            ChangeType.PRICE_CHANGE,
            ChangeType.CURRENCY_CHANGE,
            ChangeType.BILLING_CYCLE_CHANGE,
            ChangeType.RENEWAL_DATE_CHANGE,
            ChangeType.CATEGORY_CHANGE,
            ChangeType.CANCELLATION_LINK_CHANGE,
        ]
        price_change = store.get_history(first.value.id, change_type=ChangeType.PRICE_CHANGE)[0]
        assert price_change.old_value == "15.99 USD"
        assert price_change.new_value == "99.00 EUR"

    def test_unknown_values_do_not_overwrite(self, reconciler, store):
        first = reconciler.reconcile("user-1", "acct-1", _extraction(), now=NOW)
        reconciler.reconcile(
            "user-1",
            "acct-1",
            _extraction(
                price="0",
                billing_cycle=BillingCycle.UNKNOWN,
                next_renewal_date=None,
                category="Other",
            ),
            now=NOW,
        )

        sub = store.get_subscription(first.value.id)
        assert sub.price == Decimal("15.99")
        assert sub.billing_cycle == BillingCycle.MONTHLY
        assert sub.next_renewal_date == date(2025, 4, 1)
        assert sub.category == "Entertainment"

    def test_archived_not_matched(self, reconciler, store):
        first = reconciler.reconcile("user-1", "acct-1", _extraction(), now=NOW)
        reconciler.reject(first.value.id, now=NOW)

        second = reconciler.reconcile("user-1", "acct-1", _extraction(), now=NOW)

        assert second.value.id != first.value.id

    def test_other_account_not_matched(self, reconciler):
        first = reconciler.reconcile("user-1", "acct-1", _extraction(), now=NOW)
        second = reconciler.reconcile("user-1", "acct-2", _extraction(), now=NOW)

        assert second.value.id != first.value.id

    @pytest.mark.parametrize(
        "user_id, extraction",
        [
            ("user-1", _extraction(service_name="  ")),
            ("user-1", _extraction(price="-1")),
            ("", _extraction()),
        ],
    )
    def test_validation(self, reconciler, store, user_id, extraction):
        result = reconciler.reconcile(user_id, "acct-1", extraction, now=NOW)

        assert not result.ok
        assert result.error.code == ErrorCode.INVALID_EXTRACTION
        assert store.list_subscriptions() == []


class TestRefresh:
    """Tests for time-based maintenance."""

    def test_advances_passed_renewal(self, reconciler, store):
        sub = make_subscription(store, next_renewal_date=date(2025, 3, 8))

        entries = reconciler.refresh(sub, NOW)

        assert [e.change_type for e in entries] == [ChangeType.RENEWAL_DATE_ADVANCED]
        assert store.get_subscription(sub.id).next_renewal_date == date(2025, 4, 8)

    def test_renewal_today_advances(self, reconciler, store):
        sub = make_subscription(store, next_renewal_date=NOW.date())

        reconciler.refresh(sub, NOW)

        assert store.get_subscription(sub.id).next_renewal_date == date(2025, 4, 10)

    def test_future_renewal_untouched(self, reconciler, store):
        sub = make_subscription(store, next_renewal_date=date(2025, 3, 20))

        assert reconciler.refresh(sub, NOW) == []

    def test_overdue_flagged_never_cancelled(self, reconciler, store):
        """More than 7 days past renewal: review flag and history, status unchanged."""
        sub = make_subscription(store, next_renewal_date=date(2025, 3, 1))

        entries = reconciler.refresh(sub, NOW)

        types = [e.change_type for e in entries]
        assert ChangeType.RENEWAL_OVERDUE in types
        assert entries[types.index(ChangeType.RENEWAL_OVERDUE)].new_value == "Overdue by 9 days"

        stored = store.get_subscription(sub.id)
        assert stored.requires_review is True
        assert stored.status == SubscriptionStatus.ACTIVE
        assert stored.cancelled_at is None

    def test_overdue_logged_when_already_flagged(self, reconciler, store):
        """A subscription flagged at extraction time still gets its overdue entry."""
        sub = make_subscription(store, next_renewal_date=date(2025, 3, 1), requires_review=True)

        entries = reconciler.refresh(sub, NOW)

        assert [e.change_type for e in entries] == [
            ChangeType.RENEWAL_OVERDUE,
            ChangeType.RENEWAL_DATE_ADVANCED,
        ]
        assert entries[0].new_value == "Overdue by 9 days"
        assert store.get_subscription(sub.id).requires_review is True

    def test_overdue_at_grace_boundary_not_flagged(self, reconciler, store):
        sub = make_subscription(store, next_renewal_date=NOW.date() - timedelta(days=7))

        entries = reconciler.refresh(sub, NOW)

        assert ChangeType.RENEWAL_OVERDUE not in [e.change_type for e in entries]
        assert store.get_subscription(sub.id).requires_review is False

    def test_unknown_cycle_flagged_once(self, reconciler, store):
        sub = make_subscription(
            store, billing_cycle=BillingCycle.UNKNOWN, next_renewal_date=date(2025, 2, 1)
        )

        first = reconciler.refresh(sub, NOW)
        second = reconciler.refresh(store.get_subscription(sub.id), NOW)

        assert [e.change_type for e in first] == [ChangeType.RENEWAL_OVERDUE]
        assert second == []
        assert store.get_subscription(sub.id).next_renewal_date == date(2025, 2, 1)

    def test_trial_ends(self, reconciler, store):
        sub = make_subscription(
            store, status=SubscriptionStatus.TRIAL_ACTIVE, next_renewal_date=date(2025, 3, 9)
        )

        entries = reconciler.refresh(sub, NOW)

        assert entries[0].change_type == ChangeType.TRIAL_ENDED
        stored = store.get_subscription(sub.id)
        assert stored.status == SubscriptionStatus.ACTIVE
        assert stored.next_renewal_date == date(2025, 4, 9)

    @pytest.mark.parametrize(
        "status", [SubscriptionStatus.CANCELLED, SubscriptionStatus.ARCHIVED]
    )
    def test_inactive_skipped(self, reconciler, store, status):
        sub = make_subscription(store, status=status, next_renewal_date=date(2025, 1, 1))

        assert reconciler.refresh(sub, NOW) == []

    def test_refresh_owner_summary(self, reconciler, store):
        make_subscription(store, service_name="A", next_renewal_date=date(2025, 3, 5))
        make_subscription(store, service_name="B", next_renewal_date=date(2025, 5, 1))
        make_subscription(
            store,
            service_name="C",
            status=SubscriptionStatus.TRIAL_ACTIVE,
            next_renewal_date=date(2025, 3, 10),
        )

        summary = reconciler.refresh_owner("user-1", NOW)

        assert summary.examined == 3
        assert summary.updated == 2
        assert summary.trials_ended == 1
        assert summary.dates_advanced == 2
        assert summary.errors == 0


class TestUserActions:
    """Tests for approve, reject and explicit status updates."""

    def test_approve_clears_review(self, reconciler, store):
        sub = make_subscription(
            store, status=SubscriptionStatus.PENDING_REVIEW, requires_review=True
        )

        result = reconciler.approve(sub.id, now=NOW)

        assert result.value.status == SubscriptionStatus.ACTIVE
        assert result.value.requires_review is False
        assert store.get_history(sub.id)[-1].change_type == ChangeType.APPROVED

    def test_reject_archives(self, reconciler, store):
        sub = make_subscription(store, requires_review=True)

        result = reconciler.reject(sub.id, now=NOW)

        assert result.value.status == SubscriptionStatus.ARCHIVED
        assert result.value.requires_review is False
        assert store.get_history(sub.id)[-1].change_type == ChangeType.REJECTED

    def test_cancel_sets_cancelled_at(self, reconciler, store):
        sub = make_subscription(store)

        result = reconciler.update_status(sub.id, SubscriptionStatus.CANCELLED, now=NOW)

        assert result.value.cancelled_at == NOW
        entry = store.get_history(sub.id)[-1]
        assert entry.change_type == ChangeType.STATUS_CHANGE
        assert (entry.old_value, entry.new_value) == ("ACTIVE", "CANCELLED")

    def test_same_status_no_history(self, reconciler, store):
        sub = make_subscription(store)

        reconciler.update_status(sub.id, SubscriptionStatus.ACTIVE, now=NOW)

        assert store.get_history(sub.id) == []

    def test_missing_subscription(self, reconciler):
        assert reconciler.approve(999).error.code == ErrorCode.NOT_FOUND
        assert reconciler.reject(999).error.code == ErrorCode.NOT_FOUND
        assert (
            reconciler.update_status(999, SubscriptionStatus.CANCELLED).error.code
            == ErrorCode.NOT_FOUND
        )
