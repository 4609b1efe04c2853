from __future__ import annotations

import time
from typing import NoReturn

from ..errors import IsolationUnavailable
from ..evaluation import evaluate
from .types import TIMEOUT_MESSAGE, ExecutionRequest, ExecutionResponse


class InProcessEngine:
    """Evaluate guest code directly in the calling thread.

    This is the fallback path: there is no isolation boundary and no
    preemption, so a guest that never returns blocks the caller. A run that
    finishes after its budget is reported as a timeout.

    Example:
        ```python
        response = InProcessEngine().execute(ExecutionRequest(code="print(1)", timeout_ms=1000))
        ```
    """

    def __init__(self, *, max_output_kb: int | None = None) -> None:
        """Initialize the engine with an optional output size cap.

        Example:
            ```python
            engine = InProcessEngine(max_output_kb=64)
            ```
        """
        self._max_output_kb = max_output_kb

    def create_unit(self) -> NoReturn:
        """Refuse to create an isolated unit; this engine has none.

        Example:
            ```python
            engine.create_unit()  # raises IsolationUnavailable
            ```
        """
        raise IsolationUnavailable("Isolation is disabled; using in-process execution")

    def execute(self, request: ExecutionRequest) -> ExecutionResponse:
        """Run the request synchronously and normalize it into a response.

        Example:
            ```python
            response = engine.execute(ExecutionRequest(code="return 2 + 2", timeout_ms=1000))
            ```
        """
        max_output_kb = request.max_output_kb if request.max_output_kb is not None else self._max_output_kb
        started = time.monotonic()
        evaluation = evaluate(request.code, max_output_kb=max_output_kb)
        elapsed_ms = (time.monotonic() - started) * 1000
        if elapsed_ms > request.timeout_ms:
            return ExecutionResponse(result="", output="", error=TIMEOUT_MESSAGE)
        if evaluation.error is not None:
            return ExecutionResponse(result="", output=evaluation.output, error=evaluation.error)
        return ExecutionResponse(result=evaluation.result, output=evaluation.output, error=None)
