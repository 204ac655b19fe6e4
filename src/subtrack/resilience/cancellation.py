"""
Cooperative cancellation.

A CancellationToken is handed down from the owning job to every blocking
wait (dispatcher, permit pool, retry delay). Waiters register a wake-up
callback so cancellation interrupts a condition wait without polling.
"""

import logging
import threading
from collections.abc import Callable

from ..errors import OperationCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe one-shot cancellation signal."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Signal cancellation and wake every registered waiter."""
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()

        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning("Cancellation callback failed: %s", e)

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Register a wake-up callback.

        Runs immediately if already cancelled. Returns a function that
        unregisters the callback.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return lambda: self._unregister(callback)
        callback()
        return lambda: None

    def _unregister(self, callback: Callable[[], None]) -> None:
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

    def wait(self, timeout: float | None = None) -> bool:
        """Block up to timeout seconds. Returns True if cancelled."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError("Operation cancelled")
