"""
Exception hierarchy.

Exceptions stay inside the resilience layer and the remote client; the
pipeline boundary converts them into Result failures (see schemas.result).
"""


class SubtrackError(Exception):
    """Base exception for the pipeline."""

    pass


class OperationCancelledError(SubtrackError):
    """The owning job or request cancelled the operation."""

    pass


class RemoteCallError(SubtrackError):
    """A call to a remote dependency failed."""

    def __init__(self, message: str, target: str | None = None):
        super().__init__(message)
        self.target = target


class RemoteHTTPError(RemoteCallError):
    """Remote dependency answered with a non-success HTTP status."""

    def __init__(self, status_code: int, message: str, target: str | None = None):
        super().__init__(f"HTTP {status_code}: {message}", target)
        self.status_code = status_code


class MalformedResponseError(RemoteCallError):
    """Remote answer was empty, not JSON, or not the expected shape. Never retried."""

    pass


class CircuitOpenError(RemoteCallError):
    """The circuit for a target is open; the call was rejected without being made."""

    def __init__(self, target: str, retry_after: float | None = None):
        super().__init__(f"{target} is temporarily unavailable (circuit open)", target)
        self.retry_after = retry_after


class ConcurrencyLimitError(RemoteCallError):
    """No permit became available for the target within the permit timeout."""

    pass


class DuplicateRecordError(SubtrackError):
    """A processing record for this (account, external id) pair already exists."""

    def __init__(self, account_id: str, external_id: str):
        super().__init__(f"Record for {account_id}/{external_id} already exists")
        self.account_id = account_id
        self.external_id = external_id


class StoreError(SubtrackError):
    """The state store did not hold a row it just wrote."""

    pass
