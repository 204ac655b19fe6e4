"""
Migration 002: Alerts table.

Alerts are generated by the renewal scanner and carry delivery bookkeeping
(status, sent time, retry count). At most one non-failed alert per
(subscription, type) inside the lookback window is enforced by the scanner.
"""

import sqlite3

VERSION = 2
NAME = "alerts"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create the alerts table."""
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS alerts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            subscription_id INTEGER NOT NULL,
            alert_type TEXT NOT NULL,
            message TEXT NOT NULL,
            scheduled_for TEXT NOT NULL,

            -- PENDING, SENT, FAILED
            status TEXT NOT NULL DEFAULT 'PENDING',
            sent_at TEXT,
            retry_count INTEGER NOT NULL DEFAULT 0,
            FOREIGN KEY (subscription_id) REFERENCES subscriptions(id)
        )
    """)

    # Duplicate check: (subscription, type, window)
    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_alerts_subscription_type
        ON alerts (subscription_id, alert_type, scheduled_for)
    """)
    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_alerts_user_status
        ON alerts (user_id, status)
    """)

    conn.commit()


def downgrade(conn: sqlite3.Connection) -> None:
    """Drop the alerts table."""
    cursor = conn.cursor()
    cursor.execute("DROP INDEX IF EXISTS idx_alerts_user_status")
    cursor.execute("DROP INDEX IF EXISTS idx_alerts_subscription_type")
    cursor.execute("DROP TABLE IF EXISTS alerts")
    conn.commit()
