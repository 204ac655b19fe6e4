"""
Scheduler entry points.

The outer scheduler (cron, a task runner, the CLI) calls these jobs:
- scan_all_accounts: pull new messages from the mail source and admit them
- process_pending_emails(account_id): drain pending work with N worker threads
- generate_alerts: run the alert producers for every owner
- update_all_subscriptions: renewal maintenance for every owner
- enrich_vendors: link unlinked subscriptions to vendors and enrich marked vendors

Every job is safe to rerun. Expected failures are absorbed into records and
summaries; unexpected exceptions propagate so the scheduler can retry.
"""

import json
import logging
import threading
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Protocol

from ..config import Config
from ..resilience import CancellationToken
from ..schemas.messages import (
    MailAccount,
    ProcessingStatus,
    QueuedMessage,
    RawMessage,
    determine_priority,
)
from ..state_store.base import SubscriptionStore
from .alerts import AlertScanner, AlertSummary
from .dispatcher import PriorityDispatcher
from .intake import IntakeDeduplicator, IntakeSummary
from .reconciliation import RefreshSummary, SubscriptionReconciler
from .vendors import VendorEnrichmentSummary, VendorMatcher
from .worker import MessageWorker, WorkerStats

logger = logging.getLogger(__name__)


class MailSource(Protocol):
    """Where messages come from. Connecting to real mailboxes is out of scope."""

    def list_accounts(self) -> list[MailAccount]: ...

    def fetch_messages(
        self, account_id: str, since: Optional[datetime] = None
    ) -> Iterable[RawMessage]: ...


class JsonMailSource:
    """
    Mail source backed by a JSON export.

    Accepted layouts:
        {"accounts": [{"account_id": ..., "user_id": ..., "messages": [...]}]}
        [ {message}, ... ]   (requires account_id and user_id arguments)
    """

    def __init__(
        self,
        path: Path,
        account_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ):
        self.path = Path(path)
        self._accounts: dict[str, MailAccount] = {}
        self._messages: dict[str, list[RawMessage]] = {}
        self._load(account_id, user_id)

    def _load(self, account_id: Optional[str], user_id: Optional[str]) -> None:
        with open(self.path, encoding="utf-8") as f:
            data = json.load(f)

        if isinstance(data, list):
            if not account_id or not user_id:
                raise ValueError(
                    f"{self.path} holds a bare message list; account_id and user_id are required"
                )
            entries = [{"account_id": account_id, "user_id": user_id, "messages": data}]
        elif isinstance(data, dict):
            entries = data.get("accounts", [])
        else:
            raise ValueError(f"{self.path} is not a mail export")

        for entry in entries:
            acct = entry.get("account_id") or account_id
            owner = entry.get("user_id") or user_id
            if not acct or not owner:
                raise ValueError("Every account needs account_id and user_id")

            self._accounts[acct] = MailAccount(account_id=acct, user_id=owner)
            messages = self._messages.setdefault(acct, [])
            for raw in entry.get("messages", []):
                try:
                    messages.append(RawMessage.from_dict(raw))
                except ValueError as e:
                    logger.warning("Skipping unreadable message in %s: %s", self.path, e)

    def list_accounts(self) -> list[MailAccount]:
        return list(self._accounts.values())

    def fetch_messages(
        self, account_id: str, since: Optional[datetime] = None
    ) -> Iterable[RawMessage]:
        for message in self._messages.get(account_id, []):
            if since is None or message.received_at >= since:
                yield message


class PipelineJobs:
    """Owns the per-account dispatchers and wires the services together."""

    def __init__(
        self,
        store: SubscriptionStore,
        config: Config,
        ai_service,
        source: Optional[MailSource] = None,
    ):
        self.store = store
        self.config = config
        self.ai_service = ai_service
        self.source = source
        self.vendors = VendorMatcher(store)
        self.reconciler = SubscriptionReconciler(store, config, vendors=self.vendors)
        self.scanner = AlertScanner(store, config.alerts)

        self._dispatchers: dict[str, PriorityDispatcher] = {}
        self._lock = threading.Lock()

    def dispatcher_for(self, account_id: str) -> PriorityDispatcher:
        with self._lock:
            dispatcher = self._dispatchers.get(account_id)
            if dispatcher is None:
                dispatcher = PriorityDispatcher(self.config.pipeline.queue_capacity)
                self._dispatchers[account_id] = dispatcher
            return dispatcher

    def scan_all_accounts(self, now: Optional[datetime] = None) -> dict[str, IntakeSummary]:
        """Admit new messages for every source account."""
        if self.source is None:
            raise RuntimeError("No mail source configured")

        now = now or datetime.now(timezone.utc)
        summaries: dict[str, IntakeSummary] = {}

        for account in self.source.list_accounts():
            self.store.upsert_account(
                MailAccount(account_id=account.account_id, user_id=account.user_id)
            )
            known = self.store.get_account(account.account_id)
            since = known.last_scan_at if known else None

            intake = IntakeDeduplicator(self.store, self.dispatcher_for(account.account_id))
            summary = intake.admit_many(
                account.account_id, self.source.fetch_messages(account.account_id, since), now
            )
            summaries[account.account_id] = summary

            self.store.upsert_account(
                MailAccount(account_id=account.account_id, user_id=account.user_id, last_scan_at=now)
            )
            logger.info(
                "Scanned %s: %d new, %d duplicate, %d invalid",
                account.account_id,
                summary.admitted,
                summary.duplicates,
                summary.invalid,
            )

        return summaries

    def process_pending_emails(
        self,
        account_id: str,
        workers: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None,
        now: Optional[datetime] = None,
    ) -> WorkerStats:
        """
        Rebuild the account's queue from durable state and drain it.

        Stale PROCESSING claims go back to PENDING first, then every
        PENDING/QUEUED record not already in memory is enqueued.
        """
        now = now or datetime.now(timezone.utc)
        workers = workers or self.config.pipeline.workers
        cancel_token = cancel_token or CancellationToken()
        dispatcher = self.dispatcher_for(account_id)

        stale_before = now - timedelta(minutes=self.config.pipeline.stale_claim_minutes)
        reset = self.store.reset_stale_claims(stale_before, account_id)
        if reset:
            logger.warning("Reset %d stale claim(s) for %s", reset, account_id)

        requeued = 0
        for record in self.store.list_records(
            account_id=account_id,
            statuses=[ProcessingStatus.PENDING, ProcessingStatus.QUEUED],
        ):
            if record.id in dispatcher:
                continue
            item = QueuedMessage.from_record(record, determine_priority(record.received_at, now))
            item.queued_at = now
            self.store.update_record_status(record.id, ProcessingStatus.QUEUED)
            if dispatcher.enqueue(item):
                requeued += 1
            else:
                self.store.update_record_status(record.id, ProcessingStatus.PENDING)

        queued = len(dispatcher)
        if not queued:
            logger.debug("Nothing pending for %s", account_id)
            return WorkerStats()

        logger.info(
            "Processing %d message(s) for %s with %d worker(s) (%d requeued from storage)",
            queued,
            account_id,
            workers,
            requeued,
        )

        stats = WorkerStats()
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="subtrack-worker") as pool:
            futures = [
                pool.submit(
                    MessageWorker(self.store, self.ai_service, self.reconciler, dispatcher).run,
                    cancel_token,
                    0,
                )
                for _ in range(workers)
            ]
            for future in futures:
                stats.merge(future.result())

        logger.info(
            "Finished %s: %d completed, %d unrelated, %d failed, %d released",
            account_id,
            stats.completed,
            stats.ignored,
            stats.failed,
            stats.released,
        )
        return stats

    def generate_alerts(self, now: Optional[datetime] = None) -> AlertSummary:
        """Run every alert producer for every subscription owner."""
        now = now or datetime.now(timezone.utc)
        total = AlertSummary()
        for user_id in self.store.list_subscription_owners():
            summary = self.scanner.generate_all(user_id, now)
            total.renewal += summary.renewal
            total.price_increase += summary.price_increase
            total.trial_ending += summary.trial_ending
            total.unused += summary.unused
            total.alerts.extend(summary.alerts)
        return total

    def update_all_subscriptions(self, now: Optional[datetime] = None) -> RefreshSummary:
        """Renewal maintenance for every subscription owner."""
        now = now or datetime.now(timezone.utc)
        total = RefreshSummary()
        for user_id in self.store.list_subscription_owners():
            summary = self.reconciler.refresh_owner(user_id, now)
            total.examined += summary.examined
            total.updated += summary.updated
            total.trials_ended += summary.trials_ended
            total.overdue_flagged += summary.overdue_flagged
            total.dates_advanced += summary.dates_advanced
            total.errors += summary.errors

        if total.updated:
            logger.info(
                "Updated %d of %d subscription(s) (%d trials ended, %d overdue, %d advanced)",
                total.updated,
                total.examined,
                total.trials_ended,
                total.overdue_flagged,
                total.dates_advanced,
            )
        return total

    def enrich_vendors(self, now: Optional[datetime] = None) -> VendorEnrichmentSummary:
        """Link subscriptions that have no vendor yet, then enrich marked vendors."""
        return self.vendors.run(now)
