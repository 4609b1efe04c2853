from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Failure categories reported on a `RunOutcome`.

    Example:
        ```python
        kind = ErrorKind.EXECUTION_TIMEOUT
        ```
    """

    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    VALIDATION_FAILED = "validation_failed"
    ISOLATION_UNAVAILABLE = "isolation_unavailable"
    EXECUTION_TIMEOUT = "execution_timeout"
    GUEST_RUNTIME_ERROR = "guest_runtime_error"
    TRANSPORT_FAILURE = "transport_failure"
    INTERNAL_ERROR = "internal_error"


class RunnerError(Exception):
    """Base class for infrastructure errors raised inside the runner.

    Example:
        ```python
        raise RunnerError("unit crashed")
        ```
    """

    kind = ErrorKind.INTERNAL_ERROR


class IsolationUnavailable(RunnerError):
    """The environment cannot create an isolated unit."""

    kind = ErrorKind.ISOLATION_UNAVAILABLE


class TransportFailure(IsolationUnavailable):
    """The message channel to a unit failed; handled like `IsolationUnavailable`."""

    kind = ErrorKind.TRANSPORT_FAILURE
