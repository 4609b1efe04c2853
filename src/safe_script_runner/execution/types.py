from __future__ import annotations

from dataclasses import dataclass
from typing import Any

TIMEOUT_MESSAGE = "Execution timeout exceeded"
BLOCKED_MESSAGE = "Dangerous code pattern detected"


def _clamp_timeout(value: Any) -> int:
    """Clamp a wire timeout to a non-negative integer, treating missing as zero.

    Example:
        ```python
        assert _clamp_timeout(-5) == 0
        ```
    """
    if value is None or isinstance(value, bool):
        return 0
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """Request message sent from the orchestrator to an execution unit.

    Example:
        ```python
        req = ExecutionRequest(code="print(2 + 2)", timeout_ms=5000)
        ```
    """

    code: str
    timeout_ms: int = 0
    memory_limit_mb: int | None = None
    max_output_kb: int | None = None

    def __post_init__(self) -> None:
        """Normalize the timeout so negative values become zero.

        Example:
            ```python
            assert ExecutionRequest(code="", timeout_ms=-1).timeout_ms == 0
            ```
        """
        object.__setattr__(self, "timeout_ms", _clamp_timeout(self.timeout_ms))

    def to_message(self) -> dict[str, Any]:
        """Serialize the request into its JSON wire form.

        Example:
            ```python
            payload = ExecutionRequest(code="x = 1", timeout_ms=10).to_message()
            ```
        """
        message: dict[str, Any] = {"code": self.code, "timeout_ms": self.timeout_ms}
        if self.memory_limit_mb is not None:
            message["memory_limit_mb"] = self.memory_limit_mb
        if self.max_output_kb is not None:
            message["max_output_kb"] = self.max_output_kb
        return message

    @classmethod
    def from_message(cls, message: Any) -> "ExecutionRequest":
        """Parse a wire message, clamping missing or negative timeouts to zero.

        Example:
            ```python
            req = ExecutionRequest.from_message({"code": "x = 1"})
            ```
        """
        if not isinstance(message, dict):
            raise ValueError("Request message must be a JSON object")
        code = message.get("code", "")
        if not isinstance(code, str):
            raise ValueError("'code' must be a string")
        memory = message.get("memory_limit_mb")
        output = message.get("max_output_kb")
        return cls(
            code=code,
            timeout_ms=_clamp_timeout(message.get("timeout_ms")),
            memory_limit_mb=int(memory) if memory is not None else None,
            max_output_kb=int(output) if output is not None else None,
        )


@dataclass(frozen=True, slots=True)
class ExecutionResponse:
    """Response message sent from an execution unit back to the orchestrator.

    Example:
        ```python
        resp = ExecutionResponse(result="4", output="4")
        ```
    """

    result: str = ""
    output: str = ""
    error: str | None = None

    def __post_init__(self) -> None:
        """Drop the result whenever an error is present.

        Example:
            ```python
            assert ExecutionResponse(result="1", error="boom").result == ""
            ```
        """
        if self.error is not None and self.result:
            object.__setattr__(self, "result", "")

    @property
    def ok(self) -> bool:
        """Return whether the unit completed without an error.

        Example:
            ```python
            assert ExecutionResponse(result="1").ok
            ```
        """
        return self.error is None

    @property
    def timed_out(self) -> bool:
        """Return whether the unit's own timer won the race.

        Example:
            ```python
            assert ExecutionResponse(error=TIMEOUT_MESSAGE).timed_out
            ```
        """
        return self.error == TIMEOUT_MESSAGE

    @property
    def blocked(self) -> bool:
        """Return whether the unit refused the code before executing it.

        Example:
            ```python
            assert ExecutionResponse(error=BLOCKED_MESSAGE).blocked
            ```
        """
        return self.error == BLOCKED_MESSAGE

    def to_message(self) -> dict[str, Any]:
        """Serialize the response into its JSON wire form.

        Example:
            ```python
            payload = ExecutionResponse(error="boom").to_message()
            ```
        """
        return {"result": self.result, "output": self.output, "error": self.error}

    @classmethod
    def from_message(cls, message: Any) -> "ExecutionResponse":
        """Parse a wire response, rejecting malformed payloads.

        Example:
            ```python
            resp = ExecutionResponse.from_message({"result": "", "output": "", "error": None})
            ```
        """
        if not isinstance(message, dict):
            raise ValueError("Response message must be a JSON object")
        error = message.get("error")
        if error is not None and not isinstance(error, str):
            raise ValueError("'error' must be a string or null")
        return cls(
            result=str(message.get("result") or ""),
            output=str(message.get("output") or ""),
            error=error,
        )
