"""
Explicit success/failure results for expected pipeline outcomes.

Pipeline functions return a Result instead of raising for business failures
(bad input, malformed model output, circuit open). Exceptions are reserved
for programming errors and for the resilience layer internals.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorCode(str, Enum):
    """Structured error codes carried by a failed Result."""

    INVALID_MESSAGE = "INVALID_MESSAGE"
    MALFORMED_RESPONSE = "MALFORMED_RESPONSE"
    REMOTE_UNAVAILABLE = "REMOTE_UNAVAILABLE"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    CANCELLED = "CANCELLED"
    INVALID_EXTRACTION = "INVALID_EXTRACTION"
    NOT_FOUND = "NOT_FOUND"


@dataclass(frozen=True)
class PipelineError:
    """A structured failure: machine-readable code plus a human message."""

    code: ErrorCode
    message: str

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value or a PipelineError, never both."""

    value: T | None = None
    error: PipelineError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, code: ErrorCode, message: str) -> "Result[T]":
        return cls(error=PipelineError(code=code, message=message))

    def unwrap(self) -> T:
        """Return the value or raise ValueError for a failed result."""
        if self.error is not None:
            raise ValueError(f"Result is a failure: {self.error}")
        return self.value  # type: ignore[return-value]
