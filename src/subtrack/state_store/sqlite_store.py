"""
SQLite-based state store implementation.

Tables:
- mail_accounts: Source account -> owning user mapping
- processing_records: One row per ingested message (UNIQUE per account + external id)
- subscriptions: Reconciled subscription records (migration 001)
- subscription_history: Append-only change log (migration 001)
- alerts: Generated alerts and delivery bookkeeping (migration 002)
- vendors: Service provider metadata and the enrichment marker (migration 004)

Timestamps are stored as fixed-width UTC ISO strings so that string
comparison in SQL matches chronological order.
"""

import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

from ..errors import DuplicateRecordError, StoreError
from ..schemas.messages import MailAccount, ProcessingRecord, ProcessingStatus, RawMessage
from ..schemas.subscription import (
    Alert,
    AlertStatus,
    AlertType,
    BillingCycle,
    ChangeType,
    HistoryEntry,
    Subscription,
    SubscriptionStatus,
    Vendor,
)
from .base import SubscriptionStore

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def _ts(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as fixed-width UTC text (naive values are taken as UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_TS_FORMAT)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _service_key(service_name: str) -> str:
    """Matching key for a service name; casefold() also folds non-ASCII letters."""
    return service_name.strip().casefold()


def _record_from_row(row: sqlite3.Row) -> ProcessingRecord:
    return ProcessingRecord(
        id=row["id"],
        account_id=row["account_id"],
        external_id=row["external_id"],
        sender=row["sender"],
        subject=row["subject"],
        received_at=_parse_ts(row["received_at"]),
        status=ProcessingStatus(row["status"]),
        created_at=_parse_ts(row["created_at"]),
        processed_at=_parse_ts(row["processed_at"]),
        claimed_at=_parse_ts(row["claimed_at"]),
        subscription_id=row["subscription_id"],
        failure_reason=row["failure_reason"],
    )


def _subscription_from_row(row: sqlite3.Row) -> Subscription:
    return Subscription(
        id=row["id"],
        user_id=row["user_id"],
        account_id=row["account_id"],
        service_name=row["service_name"],
        price=Decimal(row["price"]),
        currency=row["currency"],
        billing_cycle=BillingCycle(row["billing_cycle"]),
        next_renewal_date=_parse_date(row["next_renewal_date"]),
        category=row["category"],
        status=SubscriptionStatus(row["status"]),
        confidence_score=row["confidence_score"],
        requires_review=bool(row["requires_review"]),
        vendor_id=int(row["vendor_id"]) if row["vendor_id"] is not None else None,
        cancellation_link=row["cancellation_link"],
        created_at=_parse_ts(row["created_at"]),
        updated_at=_parse_ts(row["updated_at"]),
        cancelled_at=_parse_ts(row["cancelled_at"]),
        last_activity_at=_parse_ts(row["last_activity_at"]),
    )


def _history_from_row(row: sqlite3.Row) -> HistoryEntry:
    return HistoryEntry(
        id=row["id"],
        subscription_id=row["subscription_id"],
        change_type=ChangeType(row["change_type"]),
        old_value=row["old_value"],
        new_value=row["new_value"],
        changed_at=_parse_ts(row["changed_at"]),
        source_record_id=row["source_record_id"],
    )


def _alert_from_row(row: sqlite3.Row) -> Alert:
    return Alert(
        id=row["id"],
        user_id=row["user_id"],
        subscription_id=row["subscription_id"],
        alert_type=AlertType(row["alert_type"]),
        message=row["message"],
        scheduled_for=_parse_ts(row["scheduled_for"]),
        status=AlertStatus(row["status"]),
        sent_at=_parse_ts(row["sent_at"]),
        retry_count=row["retry_count"],
    )


def _vendor_from_row(row: sqlite3.Row) -> Vendor:
    return Vendor(
        id=row["id"],
        name=row["name"],
        normalized_name=row["normalized_name"],
        category=row["category"],
        website_url=row["website_url"],
        logo_url=row["logo_url"],
        account_management_url=row["account_management_url"],
        needs_enrichment=bool(row["needs_enrichment"]),
        created_at=_parse_ts(row["created_at"]),
        updated_at=_parse_ts(row["updated_at"]),
    )


def _account_from_row(row: sqlite3.Row) -> MailAccount:
    return MailAccount(
        account_id=row["account_id"],
        user_id=row["user_id"],
        last_scan_at=_parse_ts(row["last_scan_at"]),
    )


class StateStore(SubscriptionStore):
    """
    SQLite-based state store for the pipeline.

    Provides persistent tracking of:
    - Processing records (intake deduplication and worker claims)
    - Subscriptions and their change history
    - Alerts
    - Mail account ownership

    Every public method opens its own short transaction, so one instance can
    be shared by worker threads.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str, run_migrations: bool = True):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            # Schema version tracking
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS mail_accounts (
                    account_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    last_scan_at TEXT
                )
            """
            )

            # Message bodies are deliberately not stored
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS processing_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    account_id TEXT NOT NULL,
                    external_id TEXT NOT NULL,
                    sender TEXT NOT NULL,
                    subject TEXT NOT NULL,
                    received_at TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'PENDING',
                    created_at TEXT NOT NULL,
                    processed_at TEXT,
                    subscription_id INTEGER,
                    UNIQUE (account_id, external_id)
                )
            """
            )

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_records_status ON processing_records(account_id, status)"
            )

            # Set schema version
            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.run_pending()
        finally:
            conn.close()

    # Processing record methods

    def get_record(self, record_id: int) -> Optional[ProcessingRecord]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM processing_records WHERE id = ?", (record_id,)
            ).fetchone()
            return _record_from_row(row) if row else None

    def get_record_by_external_id(
        self, account_id: str, external_id: str
    ) -> Optional[ProcessingRecord]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM processing_records WHERE account_id = ? AND external_id = ?",
                (account_id, external_id),
            ).fetchone()
            return _record_from_row(row) if row else None

    def create_record(
        self, account_id: str, message: RawMessage, now: datetime
    ) -> ProcessingRecord:
        """Insert a PENDING record for a message (metadata only, no body)."""
        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO processing_records
                    (account_id, external_id, sender, subject, received_at, status, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        account_id,
                        message.external_id,
                        message.sender,
                        message.subject,
                        _ts(message.received_at),
                        ProcessingStatus.PENDING.value,
                        _ts(now),
                    ),
                )
                record_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise DuplicateRecordError(account_id, message.external_id) from e

        record = self.get_record(record_id)
        if record is None:
            raise StoreError(f"Record {record_id} missing right after insert")
        return record

    def update_record_status(self, record_id: int, status: ProcessingStatus) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE processing_records SET status = ? WHERE id = ?",
                (status.value, record_id),
            )
            return cursor.rowcount > 0

    def claim_record(self, record_id: int, now: datetime) -> bool:
        """Conditional update; exactly one concurrent caller wins."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE processing_records
                SET status = ?, claimed_at = ?
                WHERE id = ? AND status IN (?, ?)
            """,
                (
                    ProcessingStatus.PROCESSING.value,
                    _ts(now),
                    record_id,
                    ProcessingStatus.PENDING.value,
                    ProcessingStatus.QUEUED.value,
                ),
            )
            return cursor.rowcount == 1

    def release_claim(self, record_id: int) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE processing_records
                SET status = ?, claimed_at = NULL
                WHERE id = ? AND status = ?
            """,
                (ProcessingStatus.PENDING.value, record_id, ProcessingStatus.PROCESSING.value),
            )
            return cursor.rowcount == 1

    def complete_record(
        self, record_id: int, now: datetime, subscription_id: Optional[int] = None
    ) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE processing_records
                SET status = ?, processed_at = ?, subscription_id = ?, failure_reason = NULL
                WHERE id = ?
            """,
                (ProcessingStatus.COMPLETED.value, _ts(now), subscription_id, record_id),
            )

    def fail_record(self, record_id: int, reason: str, now: datetime) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE processing_records
                SET status = ?, processed_at = ?, failure_reason = ?
                WHERE id = ?
            """,
                (ProcessingStatus.FAILED.value, _ts(now), reason, record_id),
            )

    def list_records(
        self,
        account_id: Optional[str] = None,
        statuses: Optional[Iterable[ProcessingStatus]] = None,
        limit: Optional[int] = None,
    ) -> list[ProcessingRecord]:
        """List records, oldest message first."""
        query = "SELECT * FROM processing_records WHERE 1 = 1"
        params: list[Any] = []

        if account_id is not None:
            query += " AND account_id = ?"
            params.append(account_id)
        if statuses is not None:
            values = [s.value for s in statuses]
            if not values:
                return []
            query += f" AND status IN ({', '.join('?' for _ in values)})"
            params.extend(values)

        query += " ORDER BY received_at ASC, id ASC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
            return [_record_from_row(row) for row in rows]

    def reset_stale_claims(self, claimed_before: datetime, account_id: Optional[str] = None) -> int:
        query = """
            UPDATE processing_records
            SET status = ?, claimed_at = NULL
            WHERE status = ? AND (claimed_at IS NULL OR claimed_at < ?)
        """
        params: list[Any] = [
            ProcessingStatus.PENDING.value,
            ProcessingStatus.PROCESSING.value,
            _ts(claimed_before),
        ]
        if account_id is not None:
            query += " AND account_id = ?"
            params.append(account_id)

        with self._transaction() as conn:
            return conn.execute(query, params).rowcount

    # Subscription methods

    def get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM subscriptions WHERE id = ?", (subscription_id,)
            ).fetchone()
            return _subscription_from_row(row) if row else None

    def find_subscription(self, account_id: str, service_name: str) -> Optional[Subscription]:
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT * FROM subscriptions
                WHERE account_id = ? AND service_key = ? AND status != ?
                ORDER BY id ASC
                LIMIT 1
            """,
                (account_id, _service_key(service_name), SubscriptionStatus.ARCHIVED.value),
            ).fetchone()
            return _subscription_from_row(row) if row else None

    def create_subscription(self, subscription: Subscription) -> Subscription:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO subscriptions
                (user_id, account_id, service_name, price, currency, billing_cycle,
                 next_renewal_date, category, status, confidence_score, requires_review,
                 vendor_id, cancellation_link, created_at, updated_at, cancelled_at,
                 last_activity_at, service_key)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                self._subscription_values(subscription),
            )
            subscription.id = cursor.lastrowid
        return subscription

    def update_subscription(self, subscription: Subscription) -> None:
        if subscription.id is None:
            raise ValueError("Cannot update a subscription without an id")
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE subscriptions
                SET user_id = ?, account_id = ?, service_name = ?, price = ?, currency = ?,
                    billing_cycle = ?, next_renewal_date = ?, category = ?, status = ?,
                    confidence_score = ?, requires_review = ?, vendor_id = ?,
                    cancellation_link = ?, created_at = ?, updated_at = ?, cancelled_at = ?,
                    last_activity_at = ?, service_key = ?
                WHERE id = ?
            """,
                (*self._subscription_values(subscription), subscription.id),
            )

    @staticmethod
    def _subscription_values(subscription: Subscription) -> tuple:
        return (
            subscription.user_id,
            subscription.account_id,
            subscription.service_name,
            str(subscription.price),
            subscription.currency,
            subscription.billing_cycle.value,
            subscription.next_renewal_date.isoformat() if subscription.next_renewal_date else None,
            subscription.category,
            subscription.status.value,
            subscription.confidence_score,
            1 if subscription.requires_review else 0,
            subscription.vendor_id,
            subscription.cancellation_link,
            _ts(subscription.created_at),
            _ts(subscription.updated_at),
            _ts(subscription.cancelled_at),
            _ts(subscription.last_activity_at),
            _service_key(subscription.service_name),
        )

    def list_subscriptions(
        self,
        user_id: Optional[str] = None,
        statuses: Optional[Iterable[SubscriptionStatus]] = None,
    ) -> list[Subscription]:
        query = "SELECT * FROM subscriptions WHERE 1 = 1"
        params: list[Any] = []

        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        if statuses is not None:
            values = [s.value for s in statuses]
            if not values:
                return []
            query += f" AND status IN ({', '.join('?' for _ in values)})"
            params.extend(values)

        query += " ORDER BY id ASC"

        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
            return [_subscription_from_row(row) for row in rows]

    def list_subscription_owners(self) -> list[str]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT DISTINCT user_id FROM subscriptions ORDER BY user_id"
            ).fetchall()
            return [row["user_id"] for row in rows]

    def list_unlinked_subscriptions(self) -> list[Subscription]:
        """Subscriptions without a vendor link, ARCHIVED excluded."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM subscriptions
                WHERE vendor_id IS NULL AND status != ?
                ORDER BY id ASC
            """,
                (SubscriptionStatus.ARCHIVED.value,),
            ).fetchall()
            return [_subscription_from_row(row) for row in rows]

    # Vendor methods

    def get_vendor(self, vendor_id: int) -> Optional[Vendor]:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM vendors WHERE id = ?", (vendor_id,)).fetchone()
            return _vendor_from_row(row) if row else None

    def find_vendor(self, normalized_name: str) -> Optional[Vendor]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM vendors WHERE normalized_name = ?", (normalized_name,)
            ).fetchone()
            return _vendor_from_row(row) if row else None

    def create_vendor(self, vendor: Vendor) -> Vendor:
        """
        Insert a vendor, or return the existing row for its normalized name.

        Two workers creating the same vendor both end up with the one row.
        """
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO vendors
                (name, normalized_name, category, website_url, logo_url,
                 account_management_url, needs_enrichment, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(normalized_name) DO NOTHING
            """,
                (
                    vendor.name,
                    vendor.normalized_name,
                    vendor.category,
                    vendor.website_url,
                    vendor.logo_url,
                    vendor.account_management_url,
                    1 if vendor.needs_enrichment else 0,
                    _ts(vendor.created_at),
                    _ts(vendor.updated_at),
                ),
            )
            row = conn.execute(
                "SELECT * FROM vendors WHERE normalized_name = ?", (vendor.normalized_name,)
            ).fetchone()

        if row is None:
            raise StoreError(f"Vendor {vendor.normalized_name!r} missing right after insert")
        return _vendor_from_row(row)

    def update_vendor(self, vendor: Vendor) -> None:
        if vendor.id is None:
            raise ValueError("Cannot update a vendor without an id")
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE vendors
                SET name = ?, category = ?, website_url = ?, logo_url = ?,
                    account_management_url = ?, needs_enrichment = ?, updated_at = ?
                WHERE id = ?
            """,
                (
                    vendor.name,
                    vendor.category,
                    vendor.website_url,
                    vendor.logo_url,
                    vendor.account_management_url,
                    1 if vendor.needs_enrichment else 0,
                    _ts(vendor.updated_at),
                    vendor.id,
                ),
            )

    def list_vendors(self, needs_enrichment: Optional[bool] = None) -> list[Vendor]:
        query = "SELECT * FROM vendors"
        params: list[Any] = []
        if needs_enrichment is not None:
            query += " WHERE needs_enrichment = ?"
            params.append(1 if needs_enrichment else 0)
        query += " ORDER BY id ASC"

        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
            return [_vendor_from_row(row) for row in rows]

    # History methods

    def append_history(self, entry: HistoryEntry) -> HistoryEntry:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO subscription_history
                (subscription_id, change_type, old_value, new_value, changed_at, source_record_id)
                VALUES (?, ?, ?, ?, ?, ?)
            """,
                (
                    entry.subscription_id,
                    entry.change_type.value,
                    entry.old_value,
                    entry.new_value,
                    _ts(entry.changed_at),
                    entry.source_record_id,
                ),
            )
            new_id = cursor.lastrowid

        return HistoryEntry(
            id=new_id,
            subscription_id=entry.subscription_id,
            change_type=entry.change_type,
            old_value=entry.old_value,
            new_value=entry.new_value,
            changed_at=entry.changed_at,
            source_record_id=entry.source_record_id,
        )

    def get_history(
        self,
        subscription_id: int,
        change_type: Optional[ChangeType] = None,
        since: Optional[datetime] = None,
    ) -> list[HistoryEntry]:
        query = "SELECT * FROM subscription_history WHERE subscription_id = ?"
        params: list[Any] = [subscription_id]

        if change_type is not None:
            query += " AND change_type = ?"
            params.append(change_type.value)
        if since is not None:
            query += " AND changed_at >= ?"
            params.append(_ts(since))

        query += " ORDER BY changed_at ASC, id ASC"

        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
            return [_history_from_row(row) for row in rows]

    def delete_history_before(self, cutoff: datetime) -> int:
        with self._transaction() as conn:
            return conn.execute(
                "DELETE FROM subscription_history WHERE changed_at < ?", (_ts(cutoff),)
            ).rowcount

    # Alert methods

    def find_recent_alert(
        self, subscription_id: int, alert_type: AlertType, since: datetime
    ) -> Optional[Alert]:
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT * FROM alerts
                WHERE subscription_id = ? AND alert_type = ? AND status != ?
                  AND scheduled_for >= ?
                ORDER BY scheduled_for DESC
                LIMIT 1
            """,
                (subscription_id, alert_type.value, AlertStatus.FAILED.value, _ts(since)),
            ).fetchone()
            return _alert_from_row(row) if row else None

    def create_alert(self, alert: Alert) -> Alert:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO alerts
                (user_id, subscription_id, alert_type, message, scheduled_for, status,
                 sent_at, retry_count)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    alert.user_id,
                    alert.subscription_id,
                    alert.alert_type.value,
                    alert.message,
                    _ts(alert.scheduled_for),
                    alert.status.value,
                    _ts(alert.sent_at),
                    alert.retry_count,
                ),
            )
            alert.id = cursor.lastrowid
        return alert

    def get_alert(self, alert_id: int) -> Optional[Alert]:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM alerts WHERE id = ?", (alert_id,)).fetchone()
            return _alert_from_row(row) if row else None

    def update_alert(self, alert: Alert) -> None:
        if alert.id is None:
            raise ValueError("Cannot update an alert without an id")
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE alerts
                SET message = ?, scheduled_for = ?, status = ?, sent_at = ?, retry_count = ?
                WHERE id = ?
            """,
                (
                    alert.message,
                    _ts(alert.scheduled_for),
                    alert.status.value,
                    _ts(alert.sent_at),
                    alert.retry_count,
                    alert.id,
                ),
            )

    def list_alerts(
        self, user_id: Optional[str] = None, status: Optional[AlertStatus] = None
    ) -> list[Alert]:
        query = "SELECT * FROM alerts WHERE 1 = 1"
        params: list[Any] = []
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY scheduled_for ASC, id ASC"

        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
            return [_alert_from_row(row) for row in rows]

    # Account methods

    def upsert_account(self, account: MailAccount) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO mail_accounts (account_id, user_id, last_scan_at)
                VALUES (?, ?, ?)
                ON CONFLICT(account_id) DO UPDATE SET
                    user_id = excluded.user_id,
                    last_scan_at = COALESCE(excluded.last_scan_at, mail_accounts.last_scan_at)
            """,
                (account.account_id, account.user_id, _ts(account.last_scan_at)),
            )

    def get_account(self, account_id: str) -> Optional[MailAccount]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM mail_accounts WHERE account_id = ?", (account_id,)
            ).fetchone()
            return _account_from_row(row) if row else None

    def list_accounts(self) -> list[MailAccount]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM mail_accounts ORDER BY account_id").fetchall()
            return [_account_from_row(row) for row in rows]

    # Statistics

    def get_stats(self) -> dict[str, Any]:
        """Get pipeline statistics."""
        with self._transaction() as conn:
            record_rows = conn.execute(
                "SELECT status, COUNT(*) as count FROM processing_records GROUP BY status"
            ).fetchall()
            subscription_rows = conn.execute(
                "SELECT status, COUNT(*) as count FROM subscriptions GROUP BY status"
            ).fetchall()
            needs_review = conn.execute(
                "SELECT COUNT(*) as count FROM subscriptions WHERE requires_review = 1"
            ).fetchone()
            alert_rows = conn.execute(
                "SELECT status, COUNT(*) as count FROM alerts GROUP BY status"
            ).fetchall()
            vendors = conn.execute(
                """
                SELECT COUNT(*) as count, COALESCE(SUM(needs_enrichment), 0) as pending
                FROM vendors
            """
            ).fetchone()

            return {
                "records": {row["status"]: row["count"] for row in record_rows},
                "subscriptions": {row["status"]: row["count"] for row in subscription_rows},
                "subscriptions_needing_review": needs_review["count"] if needs_review else 0,
                "alerts": {row["status"]: row["count"] for row in alert_rows},
                "vendors": vendors["count"],
                "vendors_needing_enrichment": vendors["pending"],
            }
