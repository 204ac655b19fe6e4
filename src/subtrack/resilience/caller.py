"""
Resilient caller for unreliable remote dependencies.

Every call goes through a per-target pipeline:

    retry (outer) -> circuit breaker -> permit pool -> operation

Pipelines are created once per target name and cached in a lock-protected
registry. Retry delays follow a configured sequence (last one repeats) scaled
by jitter. Fatal failures, cancellations and open circuits are never retried.
"""

import logging
import random
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

import httpx

from ..config import ResilienceConfig
from ..errors import (
    CircuitOpenError,
    ConcurrencyLimitError,
    MalformedResponseError,
    OperationCancelledError,
    RemoteHTTPError,
)
from .cancellation import CancellationToken
from .circuit import CircuitBreaker, CircuitState
from .permits import PermitPool

logger = logging.getLogger(__name__)

T = TypeVar("T")

TransientException = (TimeoutError, ConnectionError, OSError)


def classify_exception(exc: BaseException) -> bool:
    """Return True if the failure is transient and worth retrying."""
    if isinstance(exc, (MalformedResponseError, OperationCancelledError, CircuitOpenError)):
        return False
    if isinstance(exc, ConcurrencyLimitError):
        return True
    if isinstance(exc, RemoteHTTPError):
        # Rate limiting and server-side errors are transient
        return exc.status_code == 429 or exc.status_code >= 500
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    if isinstance(exc, httpx.TransportError):
        # Includes httpx.TimeoutException
        return True
    if isinstance(exc, TransientException):
        return True
    return False


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget and delay sequence."""

    max_retries: int = 3
    delays: tuple[float, ...] = (1.0, 5.0, 15.0)
    jitter: float = 0.2

    def delay_for(self, retry_index: int, rng: random.Random) -> float:
        """Delay before retry number retry_index (0-based)."""
        if not self.delays:
            return 0.0
        base = self.delays[min(retry_index, len(self.delays) - 1)]
        if self.jitter <= 0:
            return base
        return max(0.0, base * rng.uniform(1.0 - self.jitter, 1.0 + self.jitter))

    @classmethod
    def from_config(cls, config: ResilienceConfig) -> "RetryPolicy":
        return cls(
            max_retries=config.max_retries,
            delays=tuple(config.retry_delays),
            jitter=config.jitter,
        )


@dataclass(frozen=True)
class TargetPipeline:
    """Immutable per-target bundle; the breaker and pool carry their own locks."""

    name: str
    breaker: CircuitBreaker
    permits: PermitPool


def _cancellable_sleep(seconds: float, cancel_token: CancellationToken | None) -> None:
    if cancel_token is None:
        time.sleep(seconds)
        return
    if cancel_token.wait(seconds):
        raise OperationCancelledError("Cancelled during retry delay")


class ResilientCaller:
    """Bounded-concurrency, retrying, circuit-broken executor for remote calls."""

    def __init__(
        self,
        config: ResilienceConfig | None = None,
        classify: Callable[[BaseException], bool] = classify_exception,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float, CancellationToken | None], None] = _cancellable_sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or ResilienceConfig()
        self.policy = RetryPolicy.from_config(self.config)
        self._classify = classify
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()

        self._pipelines: dict[str, TargetPipeline] = {}
        self._lock = threading.Lock()

    def pipeline_for(self, target_name: str) -> TargetPipeline:
        """Get or create the pipeline for a target (created once per name)."""
        pipeline = self._pipelines.get(target_name)
        if pipeline is not None:
            return pipeline

        with self._lock:
            pipeline = self._pipelines.get(target_name)
            if pipeline is None:
                pipeline = TargetPipeline(
                    name=target_name,
                    breaker=CircuitBreaker(
                        target_name,
                        minimum_throughput=self.config.minimum_throughput,
                        failure_ratio=self.config.failure_ratio,
                        sampling_seconds=self.config.sampling_seconds,
                        break_seconds=self.config.break_seconds,
                        clock=self._clock,
                    ),
                    permits=PermitPool(target_name, self.config.max_concurrent),
                )
                self._pipelines[target_name] = pipeline
            return pipeline

    def get_circuit_state(self, target_name: str) -> CircuitState:
        pipeline = self._pipelines.get(target_name)
        if pipeline is None:
            return CircuitState.CLOSED
        return pipeline.breaker.state

    def execute(
        self,
        target_name: str,
        operation: Callable[[], T],
        cancel_token: CancellationToken | None = None,
    ) -> T:
        """Run operation against target_name with retry, breaker and permits.

        Raises the last failure when the retry budget is exhausted, or the
        first fatal failure immediately.
        """
        pipeline = self.pipeline_for(target_name)
        retries = 0

        while True:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            try:
                return self._attempt(pipeline, operation, cancel_token)
            except Exception as exc:
                if not self._classify(exc) or retries >= self.policy.max_retries:
                    raise

                delay = self.policy.delay_for(retries, self._rng)
                retries += 1
                logger.warning(
                    "Retry attempt %d for %s after %.0fms: %s",
                    retries,
                    target_name,
                    delay * 1000,
                    exc,
                )
                self._sleep(delay, cancel_token)

    def _attempt(
        self,
        pipeline: TargetPipeline,
        operation: Callable[[], T],
        cancel_token: CancellationToken | None,
    ) -> T:
        pipeline.breaker.before_call()

        try:
            acquired = pipeline.permits.acquire(
                timeout=self.config.permit_timeout_seconds,
                cancel_token=cancel_token,
            )
        except OperationCancelledError:
            pipeline.breaker.record_ignored()
            raise
        if not acquired:
            pipeline.breaker.record_ignored()
            logger.warning(
                "Timed out waiting for %s permit (max=%d, active=%d)",
                pipeline.name,
                pipeline.permits.limit,
                pipeline.permits.active_requests,
            )
            raise ConcurrencyLimitError(
                f"No permit for {pipeline.name} within {self.config.permit_timeout_seconds}s",
                target=pipeline.name,
            )

        try:
            result = operation()
        except OperationCancelledError:
            pipeline.breaker.record_ignored()
            raise
        except Exception:
            pipeline.breaker.record_failure()
            raise
        finally:
            pipeline.permits.release()

        pipeline.breaker.record_success()
        return result
