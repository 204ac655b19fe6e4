"""
CLI runner module.

Provides commands:
- init: Write default config, create database
- ingest: Admit messages from a JSON mail export
- process: Classify, extract and reconcile pending messages
- update: Renewal maintenance
- alerts: Alert generation
- approve / reject: Review decisions
- status: Pipeline statistics
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
