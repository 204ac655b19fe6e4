"""
Migration 004: Vendor metadata.

- vendors: one row per service provider, keyed by normalized name
- needs_enrichment: durable marker for vendors still waiting on the
  enrichment job

subscriptions.vendor_id (migration 001) references vendors.id.
"""

import sqlite3

VERSION = 4
NAME = "vendors"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create the vendors table."""
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS vendors (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            normalized_name TEXT NOT NULL UNIQUE,
            category TEXT NOT NULL DEFAULT 'Other',
            website_url TEXT,
            logo_url TEXT,
            account_management_url TEXT,
            needs_enrichment INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)

    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_vendors_needs_enrichment
        ON vendors (needs_enrichment)
    """)
    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_subscriptions_vendor
        ON subscriptions (vendor_id)
    """)

    conn.commit()


def downgrade(conn: sqlite3.Connection) -> None:
    """Drop the vendors table and unlink subscriptions."""
    cursor = conn.cursor()
    cursor.execute("UPDATE subscriptions SET vendor_id = NULL")
    cursor.execute("DROP INDEX IF EXISTS idx_subscriptions_vendor")
    cursor.execute("DROP INDEX IF EXISTS idx_vendors_needs_enrichment")
    cursor.execute("DROP TABLE IF EXISTS vendors")
    conn.commit()
