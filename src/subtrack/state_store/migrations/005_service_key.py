"""
Migration 005: Unicode-aware service-name key on subscriptions.

SQLite's NOCASE collation only folds ASCII, so "CAFÉ" and "Café" would be
two services. service_key holds str.casefold() of the trimmed name and is
what find-or-create matches on.
"""

import sqlite3

VERSION = 5
NAME = "service_key"


def upgrade(conn: sqlite3.Connection) -> None:
    """Add and backfill subscriptions.service_key."""
    cursor = conn.execute("PRAGMA table_info(subscriptions)")
    columns = [row[1] for row in cursor.fetchall()]

    if "service_key" not in columns:
        conn.execute("ALTER TABLE subscriptions ADD COLUMN service_key TEXT")

    # casefold() has no SQL counterpart, so the backfill runs here
    rows = conn.execute("SELECT id, service_name FROM subscriptions").fetchall()
    conn.executemany(
        "UPDATE subscriptions SET service_key = ? WHERE id = ?",
        [(name.strip().casefold(), sub_id) for sub_id, name in rows],
    )

    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_subscriptions_account_key
        ON subscriptions (account_id, service_key)
    """)
    conn.commit()


def downgrade(conn: sqlite3.Connection) -> None:
    """
    Remove service_key.

    Note: SQLite doesn't support DROP COLUMN before 3.35.0.
    """
    if sqlite3.sqlite_version_info < (3, 35, 0):
        raise NotImplementedError("Dropping columns requires SQLite 3.35.0 or newer")
    conn.execute("DROP INDEX IF EXISTS idx_subscriptions_account_key")
    conn.execute("ALTER TABLE subscriptions DROP COLUMN service_key")
    conn.commit()
