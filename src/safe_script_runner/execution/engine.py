from __future__ import annotations

from typing import Protocol

from .types import ExecutionRequest, ExecutionResponse


class IsolatedUnit(Protocol):
    """One execution unit reachable only through request/response messages."""

    def dispatch(self, request: ExecutionRequest) -> None:
        """Send the request message; raise `TransportFailure` if it cannot be sent.

        Example:
            ```python
            unit.dispatch(ExecutionRequest(code="print(1)", timeout_ms=1000))
            ```
        """
        ...

    def receive(self) -> ExecutionResponse:
        """Block until the unit answers; raise `TransportFailure` on a broken channel.

        Example:
            ```python
            response = unit.receive()
            ```
        """
        ...

    def terminate(self) -> None:
        """Discard the unit unconditionally; safe to call more than once.

        Example:
            ```python
            unit.terminate()
            ```
        """
        ...


class ExecutionEngine(Protocol):
    """Factory for isolated units."""

    def create_unit(self) -> IsolatedUnit:
        """Create a fresh unit or raise `IsolationUnavailable`.

        Example:
            ```python
            unit = engine.create_unit()
            ```
        """
        ...
