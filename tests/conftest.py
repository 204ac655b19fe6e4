"""Test fixtures and utilities."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from subtrack.config import Config, LLMConfig, ResilienceConfig
from subtrack.schemas.messages import MailAccount, RawMessage
from subtrack.schemas.subscription import BillingCycle, Subscription, SubscriptionStatus
from subtrack.state_store import StateStore

# Fixed clock for every time-dependent test
NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)

SAMPLE_RECEIPT_BODY = """
Hi Alex,

Thanks for being a Netflix member. Your Standard plan renews on
April 1, 2025 and you will be charged $15.99.

Plan: Standard
Amount: $15.99 / month
Next billing date: 2025-04-01

Manage your membership: https://www.netflix.com/cancelplan
"""

SAMPLE_NEWSLETTER_BODY = """
This week in gardening: five tomatoes that survive a cold spring,
and how to keep slugs off your lettuce without chemicals.
"""


@pytest.fixture
def now() -> datetime:
    """Fixed 'current' time."""
    return NOW


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"


@pytest.fixture
def store(temp_db) -> StateStore:
    """Fresh state store with all migrations applied."""
    return StateStore(temp_db)


@pytest.fixture
def account(store) -> MailAccount:
    """Registered source account owned by user-1."""
    acct = MailAccount(account_id="acct-1", user_id="user-1")
    store.upsert_account(acct)
    return acct


@pytest.fixture
def config(temp_db) -> Config:
    """Config pointing at a local model endpoint, with zero retry delays."""
    return Config(
        llm=LLMConfig(base_url="http://localhost:11434/v1", model="test-model"),
        resilience=ResilienceConfig(retry_delays=[0.0], jitter=0.0),
        state_db_path=temp_db,
    )


@pytest.fixture
def receipt_message() -> RawMessage:
    """Subscription receipt received one hour ago."""
    return RawMessage(
        external_id="msg-netflix-1",
        sender="info@account.netflix.com",
        subject="Your Netflix membership",
        body=SAMPLE_RECEIPT_BODY,
        received_at=NOW - timedelta(hours=1),
    )


@pytest.fixture
def newsletter_message() -> RawMessage:
    """Message unrelated to any subscription."""
    return RawMessage(
        external_id="msg-garden-1",
        sender="news@garden.example",
        subject="Spring gardening tips",
        body=SAMPLE_NEWSLETTER_BODY,
        received_at=NOW - timedelta(days=2),
    )


def make_message(external_id: str, age: timedelta, subject: str = "Receipt") -> RawMessage:
    """Build a message received `age` before NOW."""
    return RawMessage(
        external_id=external_id,
        sender="billing@example.com",
        subject=subject,
        body=f"{subject} body",
        received_at=NOW - age,
    )


def make_subscription(
    store: StateStore,
    service_name: str = "Netflix",
    price: str = "15.99",
    billing_cycle: BillingCycle = BillingCycle.MONTHLY,
    next_renewal_date: date | None = None,
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    requires_review: bool = False,
    user_id: str = "user-1",
    account_id: str = "acct-1",
    created_at: datetime = NOW,
    last_activity_at: datetime | None = NOW,
) -> Subscription:
    """Insert a subscription directly through the store."""
    return store.create_subscription(
        Subscription(
            id=None,
            user_id=user_id,
            account_id=account_id,
            service_name=service_name,
            price=Decimal(price),
            currency="USD",
            billing_cycle=billing_cycle,
            next_renewal_date=next_renewal_date,
            category="Entertainment",
            status=status,
            confidence_score=0.9,
            requires_review=requires_review,
            created_at=created_at,
            updated_at=created_at,
            last_activity_at=last_activity_at,
        )
    )


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep SUBTRACK_* variables from the host out of the tests."""
    for name in [
        "SUBTRACK_LLM_URL",
        "SUBTRACK_LLM_API_KEY",
        "SUBTRACK_LLM_MODEL",
        "SUBTRACK_LLM_TIMEOUT",
        "SUBTRACK_STATE_DB",
        "SUBTRACK_WORKERS",
    ]:
        monkeypatch.delenv(name, raising=False)
