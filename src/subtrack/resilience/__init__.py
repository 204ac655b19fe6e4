"""
Resilience for remote calls.

Provides:
- Retry with a configured backoff sequence plus jitter
- Per-target circuit breaker (closed / open / half-open)
- Per-target permit pool bounding in-flight calls
- Cooperative cancellation tokens
"""

from .caller import ResilientCaller, RetryPolicy, classify_exception
from .cancellation import CancellationToken
from .circuit import CircuitBreaker, CircuitState
from .permits import PermitPool

__all__ = [
    "CancellationToken",
    "CircuitBreaker",
    "CircuitState",
    "PermitPool",
    "ResilientCaller",
    "RetryPolicy",
    "classify_exception",
]
