"""
Priority dispatcher handing queued messages to workers.

Three tiers (HIGH > NORMAL > LOW), each a heap ordered by message receive
time so the oldest message in the best non-empty tier goes first. All state
sits behind one threading.Condition; enqueue signals waiters, cancellation
wakes them through a token callback. Nothing polls.
"""

import heapq
import itertools
import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

from ..resilience import CancellationToken
from ..schemas.messages import Priority, QueuedMessage

logger = logging.getLogger(__name__)

_TIER_ORDER = (Priority.HIGH, Priority.NORMAL, Priority.LOW)


@dataclass
class QueueStatus:
    """Snapshot of queued items per tier."""

    high: int = 0
    normal: int = 0
    low: int = 0

    @property
    def total(self) -> int:
        return self.high + self.normal + self.low

    def to_dict(self) -> dict:
        return {"high": self.high, "normal": self.normal, "low": self.low, "total": self.total}


class PriorityDispatcher:
    """
    Bounded, thread-safe, three-tier priority queue.

    A record id is held at most once; re-enqueueing a queued record is a no-op.
    """

    def __init__(self, capacity: int = 10_000):
        self.capacity = capacity
        self._cond = threading.Condition()
        self._tiers: dict[Priority, list] = {tier: [] for tier in _TIER_ORDER}
        self._queued_ids: set[int] = set()
        self._seq = itertools.count()

    def enqueue(self, item: QueuedMessage) -> bool:
        """Add an item. Returns False for a duplicate record id or when full."""
        with self._cond:
            if item.record_id in self._queued_ids:
                logger.debug("Record %d already queued", item.record_id)
                return False
            if len(self._queued_ids) >= self.capacity:
                logger.warning(
                    "Dispatcher full (%d items); record %d left pending",
                    self.capacity,
                    item.record_id,
                )
                return False

            key = (item.message.received_at.timestamp(), next(self._seq))
            heapq.heappush(self._tiers[item.priority], (key, item))
            self._queued_ids.add(item.record_id)
            self._cond.notify()
            return True

    def dispatch(
        self,
        cancel_token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
    ) -> Optional[QueuedMessage]:
        """
        Remove and return the next item, blocking until one is available.

        Returns None when cancelled or when `timeout` seconds pass without
        work (timeout=0 never blocks).
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            if not self.wait_for_work(cancel_token, remaining):
                return None

            with self._cond:
                # Another worker may have taken the item between the wait and here
                for tier in _TIER_ORDER:
                    heap = self._tiers[tier]
                    if heap:
                        _, item = heapq.heappop(heap)
                        self._queued_ids.discard(item.record_id)
                        return item

    def wait_for_work(
        self,
        cancel_token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
    ) -> bool:
        """Block until work is queued. False on cancellation or timeout."""
        unregister = cancel_token.register(self._wake) if cancel_token else None
        deadline = None if timeout is None else time.monotonic() + timeout
        try:
            with self._cond:
                while not self._queued_ids:
                    if cancel_token is not None and cancel_token.cancelled:
                        return False
                    remaining = None if deadline is None else deadline - time.monotonic()
                    if remaining is not None and remaining <= 0:
                        return False
                    self._cond.wait(remaining)
                return not (cancel_token is not None and cancel_token.cancelled)
        finally:
            if unregister is not None:
                unregister()

    def status(self) -> QueueStatus:
        with self._cond:
            return QueueStatus(
                high=len(self._tiers[Priority.HIGH]),
                normal=len(self._tiers[Priority.NORMAL]),
                low=len(self._tiers[Priority.LOW]),
            )

    def __len__(self) -> int:
        with self._cond:
            return len(self._queued_ids)

    def __contains__(self, record_id: int) -> bool:
        with self._cond:
            return record_id in self._queued_ids

    def _wake(self) -> None:
        with self._cond:
            self._cond.notify_all()
