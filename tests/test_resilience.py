"""Tests for the resilience layer: breaker, permits, cancellation, retrying caller."""

import random
import threading

import httpx
import pytest

from subtrack.config import ResilienceConfig
from subtrack.errors import (
    CircuitOpenError,
    ConcurrencyLimitError,
    MalformedResponseError,
    OperationCancelledError,
    RemoteHTTPError,
)
from subtrack.resilience import (
    CancellationToken,
    CircuitBreaker,
    CircuitState,
    PermitPool,
    ResilientCaller,
    RetryPolicy,
    classify_exception,
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestClassifyException:
    """Tests for transient vs fatal classification."""

    @pytest.mark.parametrize("status", [429, 500, 502, 503])
    def test_transient_http_status(self, status):
        """Rate limiting and server errors are retried."""
        assert classify_exception(RemoteHTTPError(status, "boom")) is True

    @pytest.mark.parametrize("status", [400, 401, 404, 422])
    def test_client_http_status_fatal(self, status):
        """Other client errors are fatal."""
        assert classify_exception(RemoteHTTPError(status, "nope")) is False

    def test_transport_errors_transient(self):
        request = httpx.Request("POST", "http://localhost/chat/completions")
        assert classify_exception(httpx.ConnectError("refused", request=request)) is True
        assert classify_exception(httpx.ReadTimeout("slow", request=request)) is True
        assert classify_exception(TimeoutError()) is True

    def test_fatal_kinds(self):
        """Malformed answers, cancellation and open circuits are never retried."""
        assert classify_exception(MalformedResponseError("bad json")) is False
        assert classify_exception(OperationCancelledError("stop")) is False
        assert classify_exception(CircuitOpenError("llm")) is False
        assert classify_exception(ValueError("bug")) is False

    def test_permit_timeout_transient(self):
        assert classify_exception(ConcurrencyLimitError("busy", target="llm")) is True


class TestRetryPolicy:
    """Tests for the delay sequence."""

    def test_sequence_without_jitter(self):
        policy = RetryPolicy(max_retries=5, delays=(1.0, 5.0, 15.0), jitter=0.0)
        rng = random.Random(0)

        delays = [policy.delay_for(i, rng) for i in range(5)]

        assert delays == [1.0, 5.0, 15.0, 15.0, 15.0]

    def test_jitter_bounds(self):
        """Jittered delays stay within +/- jitter of the base delay."""
        policy = RetryPolicy(delays=(10.0,), jitter=0.2)
        rng = random.Random(42)

        for _ in range(100):
            assert 8.0 <= policy.delay_for(0, rng) <= 12.0

    def test_from_config(self):
        config = ResilienceConfig(max_retries=2, retry_delays=[0.5, 2.0], jitter=0.1)

        policy = RetryPolicy.from_config(config)

        assert policy.max_retries == 2
        assert policy.delays == (0.5, 2.0)
        assert policy.jitter == 0.1


class TestCircuitBreaker:
    """Tests for circuit state transitions."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def breaker(self, clock):
        return CircuitBreaker("llm", minimum_throughput=3, break_seconds=30.0, clock=clock)

    def _fail(self, breaker, times=1):
        for _ in range(times):
            breaker.before_call()
            breaker.record_failure()

    def test_opens_after_three_failures(self, breaker):
        """Three consecutive failures open the circuit."""
        self._fail(breaker, 2)
        assert breaker.state == CircuitState.CLOSED

        self._fail(breaker)
        assert breaker.state == CircuitState.OPEN

    def test_open_rejects_calls(self, breaker):
        self._fail(breaker, 3)

        with pytest.raises(CircuitOpenError) as exc_info:
            breaker.before_call()

        assert exc_info.value.retry_after == pytest.approx(30.0)

    def test_success_in_window_keeps_closed(self, breaker):
        """Failure ratio 1.0 needs every sampled call to fail."""
        self._fail(breaker, 2)
        breaker.before_call()
        breaker.record_success()
        self._fail(breaker, 2)

        assert breaker.state == CircuitState.CLOSED

    def test_half_open_probe_success_closes(self, breaker, clock):
        self._fail(breaker, 3)
        clock.advance(30.0)

        breaker.before_call()
        assert breaker.state == CircuitState.HALF_OPEN
        breaker.record_success()

        assert breaker.state == CircuitState.CLOSED

    def test_half_open_admits_single_probe(self, breaker, clock):
        self._fail(breaker, 3)
        clock.advance(31.0)

        breaker.before_call()
        with pytest.raises(CircuitOpenError):
            breaker.before_call()

    def test_half_open_probe_failure_reopens(self, breaker, clock):
        self._fail(breaker, 3)
        clock.advance(30.0)

        breaker.before_call()
        breaker.record_failure()

        assert breaker.state == CircuitState.OPEN

    def test_ignored_probe_frees_slot(self, breaker, clock):
        """A cancelled probe lets the next call probe instead."""
        self._fail(breaker, 3)
        clock.advance(30.0)
        breaker.before_call()

        breaker.record_ignored()
        breaker.before_call()

        assert breaker.state == CircuitState.HALF_OPEN

    def test_old_failures_leave_window(self, breaker, clock):
        self._fail(breaker, 2)
        clock.advance(61.0)
        self._fail(breaker)

        assert breaker.state == CircuitState.CLOSED

    def test_transition_hook(self, clock):
        seen = []
        breaker = CircuitBreaker(
            "llm", clock=clock, on_transition=lambda name, state: seen.append((name, state))
        )
        self._fail(breaker, 3)

        assert seen == [("llm", CircuitState.OPEN)]


class TestPermitPool:
    """Tests for concurrency permits."""

    def test_limit(self):
        pool = PermitPool("llm", limit=2)

        assert pool.acquire(timeout=0)
        assert pool.acquire(timeout=0)
        assert pool.acquire(timeout=0) is False
        assert pool.active_requests == 2

        pool.release()
        assert pool.active_requests == 1

    def test_context_manager_timeout(self):
        pool = PermitPool("llm", limit=1)
        pool.acquire()

        with pytest.raises(ConcurrencyLimitError):
            with pool.permit(timeout=0.01):
                pass

    def test_cancel_wakes_waiter(self):
        """A blocked acquire raises once the token is cancelled."""
        pool = PermitPool("llm", limit=1)
        pool.acquire()
        token = CancellationToken()
        errors = []

        def wait():
            try:
                pool.acquire(cancel_token=token)
            except OperationCancelledError as e:
                errors.append(e)

        thread = threading.Thread(target=wait)
        thread.start()
        token.cancel()
        thread.join(timeout=5)

        assert not thread.is_alive()
        assert len(errors) == 1


class TestCancellationToken:
    """Tests for cancellation callbacks."""

    def test_callbacks_run_once(self):
        token = CancellationToken()
        calls = []
        token.register(lambda: calls.append(1))

        token.cancel()
        token.cancel()

        assert calls == [1]
        assert token.cancelled

    def test_register_after_cancel_runs_immediately(self):
        token = CancellationToken()
        token.cancel()
        calls = []

        token.register(lambda: calls.append(1))

        assert calls == [1]

    def test_unregister(self):
        token = CancellationToken()
        calls = []
        unregister = token.register(lambda: calls.append(1))

        unregister()
        token.cancel()

        assert calls == []

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel()

        with pytest.raises(OperationCancelledError):
            token.raise_if_cancelled()


class TestResilientCaller:
    """Tests for the retrying, circuit-broken executor."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def sleeps(self):
        return []

    @pytest.fixture
    def caller(self, clock, sleeps):
        config = ResilienceConfig(max_retries=3, retry_delays=[1.0, 5.0, 15.0], jitter=0.0)
        return ResilientCaller(
            config,
            clock=clock,
            sleep=lambda seconds, token: sleeps.append(seconds),
        )

    def test_success_first_try(self, caller, sleeps):
        assert caller.execute("llm", lambda: 42) == 42
        assert sleeps == []

    def test_retries_transient_then_succeeds(self, caller, sleeps):
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise RemoteHTTPError(503, "unavailable")
            return "ok"

        assert caller.execute("llm", flaky) == "ok"
        assert len(attempts) == 3
        assert sleeps == [1.0, 5.0]

    def test_fatal_not_retried(self, caller, sleeps):
        attempts = []

        def bad():
            attempts.append(1)
            raise MalformedResponseError("not json")

        with pytest.raises(MalformedResponseError):
            caller.execute("llm", bad)

        assert len(attempts) == 1
        assert sleeps == []

    def test_budget_exhausted_raises_last_error(self, clock, sleeps):
        # High throughput so the breaker stays out of the way
        config = ResilienceConfig(
            max_retries=2, retry_delays=[1.0], jitter=0.0, minimum_throughput=10
        )
        caller = ResilientCaller(config, clock=clock, sleep=lambda s, t: sleeps.append(s))
        attempts = []

        def down():
            attempts.append(1)
            raise RemoteHTTPError(500, f"attempt {len(attempts)}")

        with pytest.raises(RemoteHTTPError, match="attempt 3"):
            caller.execute("llm", down)

        assert len(attempts) == 3
        assert sleeps == [1.0, 1.0]

    def test_circuit_opens_and_blocks_operation(self, caller):
        """After three failures the circuit is open and the operation is not invoked."""
        attempts = []

        def down():
            attempts.append(1)
            raise RemoteHTTPError(503, "down")

        # Three failed attempts open the circuit; the fourth is rejected
        with pytest.raises(CircuitOpenError):
            caller.execute("llm", down)
        assert len(attempts) == 3
        assert caller.get_circuit_state("llm") == CircuitState.OPEN

        called = []
        with pytest.raises(CircuitOpenError):
            caller.execute("llm", lambda: called.append(1))
        assert called == []

    def test_half_open_probe_closes(self, caller, clock):
        def down():
            raise RemoteHTTPError(503, "down")

        with pytest.raises(CircuitOpenError):
            caller.execute("llm", down)

        clock.advance(30.0)

        assert caller.execute("llm", lambda: "back") == "back"
        assert caller.get_circuit_state("llm") == CircuitState.CLOSED

    def test_targets_isolated(self, caller):
        def down():
            raise RemoteHTTPError(503, "down")

        with pytest.raises(CircuitOpenError):
            caller.execute("llm", down)

        assert caller.get_circuit_state("other") == CircuitState.CLOSED
        assert caller.execute("other", lambda: 1) == 1

    def test_pipeline_created_once(self, caller):
        assert caller.pipeline_for("llm") is caller.pipeline_for("llm")

    def test_cancelled_before_start(self, caller):
        token = CancellationToken()
        token.cancel()
        called = []

        with pytest.raises(OperationCancelledError):
            caller.execute("llm", lambda: called.append(1), cancel_token=token)

        assert called == []

    def test_cancellation_does_not_count_as_failure(self, caller):
        def cancelled():
            raise OperationCancelledError("stop")

        for _ in range(5):
            with pytest.raises(OperationCancelledError):
                caller.execute("llm", cancelled)

        assert caller.get_circuit_state("llm") == CircuitState.CLOSED

    def test_permit_released_after_failure(self, caller):
        def bad():
            raise MalformedResponseError("x")

        with pytest.raises(MalformedResponseError):
            caller.execute("llm", bad)

        assert caller.pipeline_for("llm").permits.active_requests == 0

    def test_cancel_during_retry_delay(self):
        """The real sleep wakes up on cancellation."""
        config = ResilienceConfig(max_retries=3, retry_delays=[30.0], jitter=0.0)
        caller = ResilientCaller(config)
        token = CancellationToken()

        def down():
            token.cancel()
            raise RemoteHTTPError(503, "down")

        with pytest.raises(OperationCancelledError):
            caller.execute("llm", down, cancel_token=token)
