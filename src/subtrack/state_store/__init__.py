"""
State Store (SQLite-based).

Lightweight persistent DB for tracking:
- Processing records per ingested message
- Subscriptions and their append-only history
- Alerts
- Mail account ownership

Enforces uniqueness on (account_id, external_id).
"""

from .base import SubscriptionStore
from .sqlite_store import StateStore

__all__ = [
    "StateStore",
    "SubscriptionStore",
]
