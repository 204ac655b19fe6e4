"""
Per-target circuit breaker.

States:
- CLOSED: calls pass through; outcomes are sampled in a rolling window
- OPEN: calls are rejected immediately for break_seconds
- HALF_OPEN: exactly one probe call is admitted; success closes, failure reopens

The circuit opens when the window holds at least minimum_throughput outcomes
and the failure ratio reaches failure_ratio (1.0 = every sampled call failed).
"""

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from enum import Enum

from ..errors import CircuitOpenError

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Thread-safe rolling-window circuit breaker for one target."""

    def __init__(
        self,
        name: str,
        minimum_throughput: int = 3,
        failure_ratio: float = 1.0,
        sampling_seconds: float = 60.0,
        break_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        on_transition: Callable[[str, CircuitState], None] | None = None,
    ) -> None:
        self.name = name
        self.minimum_throughput = minimum_throughput
        self.failure_ratio = failure_ratio
        self.sampling_seconds = sampling_seconds
        self.break_seconds = break_seconds
        self._clock = clock
        self._on_transition = on_transition

        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._outcomes: deque[tuple[float, bool]] = deque()  # (timestamp, succeeded)
        self._opened_at: float | None = None
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    def before_call(self) -> None:
        """Admit or reject a call. Raises CircuitOpenError when rejected."""
        with self._lock:
            now = self._clock()
            if self._state == CircuitState.OPEN:
                elapsed = now - (self._opened_at or now)
                if elapsed < self.break_seconds:
                    raise CircuitOpenError(self.name, retry_after=self.break_seconds - elapsed)
                self._transition(CircuitState.HALF_OPEN)

            if self._state == CircuitState.HALF_OPEN:
                if self._probe_in_flight:
                    raise CircuitOpenError(self.name)
                self._probe_in_flight = True

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.CLOSED)
                return
            self._outcomes.append((self._clock(), True))
            self._prune()

    def record_failure(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN)
                return
            if self._state == CircuitState.OPEN:
                return

            self._outcomes.append((self._clock(), False))
            self._prune()

            total = len(self._outcomes)
            if total < self.minimum_throughput:
                return
            failures = sum(1 for _, ok in self._outcomes if not ok)
            if failures / total >= self.failure_ratio:
                self._transition(CircuitState.OPEN)

    def record_ignored(self) -> None:
        """Release an admitted call without counting it (e.g. cancellation)."""
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._probe_in_flight = False

    def reset(self) -> None:
        with self._lock:
            self._transition(CircuitState.CLOSED)

    def _prune(self) -> None:
        cutoff = self._clock() - self.sampling_seconds
        while self._outcomes and self._outcomes[0][0] < cutoff:
            self._outcomes.popleft()

    def _transition(self, target: CircuitState) -> None:
        # Caller holds the lock
        previous = self._state
        self._state = target
        self._probe_in_flight = False
        self._outcomes.clear()
        self._opened_at = self._clock() if target == CircuitState.OPEN else None

        if previous == target:
            return

        if target == CircuitState.OPEN:
            logger.error(
                "Circuit breaker OPENED for %s; calls rejected for %.0fs",
                self.name,
                self.break_seconds,
            )
        elif target == CircuitState.HALF_OPEN:
            logger.info("Circuit breaker HALF-OPEN for %s; admitting one probe call", self.name)
        else:
            logger.info("Circuit breaker CLOSED for %s; target available again", self.name)

        if self._on_transition is not None:
            try:
                self._on_transition(self.name, target)
            except Exception as e:
                logger.warning("Circuit transition hook failed for %s: %s", self.name, e)
