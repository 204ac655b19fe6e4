"""
Mail → Subscription Extraction → Confidence Gate → Reconciliation → Alerts

A deterministic, testable pipeline that turns subscription-related messages
from a mail source into durable subscription records with confidence scoring,
optional human review, an auditable change history and renewal alerts.
"""

__version__ = "0.1.0"
