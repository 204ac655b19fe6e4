"""
Migration 003: Worker claim columns on processing_records.

- claimed_at: when a worker moved the record to PROCESSING (stale-claim recovery)
- failure_reason: error code of a FAILED record
"""

import sqlite3

VERSION = 3
NAME = "record_claims"


def upgrade(conn: sqlite3.Connection) -> None:
    """Add claimed_at and failure_reason to processing_records."""
    # Check if columns already exist
    cursor = conn.execute("PRAGMA table_info(processing_records)")
    columns = [row[1] for row in cursor.fetchall()]

    if "claimed_at" not in columns:
        conn.execute("ALTER TABLE processing_records ADD COLUMN claimed_at TEXT")
    if "failure_reason" not in columns:
        conn.execute("ALTER TABLE processing_records ADD COLUMN failure_reason TEXT")


def downgrade(conn: sqlite3.Connection) -> None:
    """
    Remove the claim columns.

    Note: SQLite doesn't support DROP COLUMN before 3.35.0.
    """
    if sqlite3.sqlite_version_info < (3, 35, 0):
        raise NotImplementedError("Dropping columns requires SQLite 3.35.0 or newer")
    conn.execute("ALTER TABLE processing_records DROP COLUMN failure_reason")
    conn.execute("ALTER TABLE processing_records DROP COLUMN claimed_at")
