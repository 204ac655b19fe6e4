"""
Migration 001: Subscriptions and their change history.

- subscriptions: one row per reconciled subscription
- subscription_history: append-only change log, one row per changed field
"""

import sqlite3

VERSION = 1
NAME = "subscriptions"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create the subscriptions and subscription_history tables."""
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS subscriptions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            account_id TEXT NOT NULL,
            service_name TEXT NOT NULL,

            -- Decimal stored as text to avoid float rounding
            price TEXT NOT NULL,
            currency TEXT NOT NULL DEFAULT 'USD',
            billing_cycle TEXT NOT NULL DEFAULT 'UNKNOWN',
            next_renewal_date TEXT,  -- YYYY-MM-DD
            category TEXT NOT NULL DEFAULT 'Other',

            -- ACTIVE, TRIAL_ACTIVE, PENDING_REVIEW, CANCELLED, ARCHIVED
            status TEXT NOT NULL DEFAULT 'ACTIVE',
            confidence_score REAL NOT NULL DEFAULT 0.0,
            requires_review INTEGER NOT NULL DEFAULT 0,

            vendor_id TEXT,
            cancellation_link TEXT,

            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            cancelled_at TEXT,
            last_activity_at TEXT
        )
    """)

    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_subscriptions_account_service
        ON subscriptions (account_id, service_name COLLATE NOCASE)
    """)
    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_subscriptions_user_status
        ON subscriptions (user_id, status)
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS subscription_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            subscription_id INTEGER NOT NULL,
            change_type TEXT NOT NULL,
            old_value TEXT NOT NULL DEFAULT '',
            new_value TEXT NOT NULL DEFAULT '',
            changed_at TEXT NOT NULL,
            source_record_id INTEGER,
            FOREIGN KEY (subscription_id) REFERENCES subscriptions(id)
        )
    """)

    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_history_subscription
        ON subscription_history (subscription_id, changed_at)
    """)

    conn.commit()


def downgrade(conn: sqlite3.Connection) -> None:
    """Drop the subscription tables."""
    cursor = conn.cursor()
    cursor.execute("DROP INDEX IF EXISTS idx_history_subscription")
    cursor.execute("DROP TABLE IF EXISTS subscription_history")
    cursor.execute("DROP INDEX IF EXISTS idx_subscriptions_user_status")
    cursor.execute("DROP INDEX IF EXISTS idx_subscriptions_account_service")
    cursor.execute("DROP TABLE IF EXISTS subscriptions")
    conn.commit()
