"""
Permit pool limiting simultaneous in-flight calls to one target.

Prevents overwhelming the remote model with too many concurrent requests and
keeps within externally imposed concurrency limits.
"""

import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager

from ..errors import ConcurrencyLimitError, OperationCancelledError
from .cancellation import CancellationToken


class PermitPool:
    """Condition-based semaphore whose waits can be cancelled.

    Thread-safe for synchronous usage.
    """

    def __init__(self, name: str, limit: int = 2) -> None:
        self.name = name
        self.limit = max(1, limit)
        self._cond = threading.Condition()
        self._available = self.limit

    def acquire(
        self,
        timeout: float | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> bool:
        """Acquire a permit.

        Args:
            timeout: Maximum time to wait (None = blocking)
            cancel_token: Raises OperationCancelledError if cancelled while waiting

        Returns:
            True if acquired, False if timeout
        """
        unregister = cancel_token.register(self._wake) if cancel_token else None
        deadline = None if timeout is None else time.monotonic() + timeout
        try:
            with self._cond:
                while self._available == 0:
                    if cancel_token is not None and cancel_token.cancelled:
                        raise OperationCancelledError(f"Cancelled waiting for {self.name} permit")
                    remaining = None if deadline is None else deadline - time.monotonic()
                    if remaining is not None and remaining <= 0:
                        return False
                    self._cond.wait(remaining)
                if cancel_token is not None and cancel_token.cancelled:
                    raise OperationCancelledError(f"Cancelled waiting for {self.name} permit")
                self._available -= 1
                return True
        finally:
            if unregister is not None:
                unregister()

    def release(self) -> None:
        """Release a permit after the call completes."""
        with self._cond:
            self._available = min(self.limit, self._available + 1)
            self._cond.notify()

    @contextmanager
    def permit(
        self,
        timeout: float | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> Iterator[None]:
        if not self.acquire(timeout=timeout, cancel_token=cancel_token):
            raise ConcurrencyLimitError(
                f"No permit for {self.name} within {timeout}s", target=self.name
            )
        try:
            yield
        finally:
            self.release()

    @property
    def active_requests(self) -> int:
        """Current number of in-flight calls."""
        with self._cond:
            return self.limit - self._available

    def _wake(self) -> None:
        with self._cond:
            self._cond.notify_all()
