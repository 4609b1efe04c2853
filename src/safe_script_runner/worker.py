from __future__ import annotations

import contextlib
import io
import json
import os
import re
import sys
import threading
from typing import Any

from safe_script_runner.evaluation import Evaluation, evaluate
from safe_script_runner.execution.types import (
    BLOCKED_MESSAGE,
    TIMEOUT_MESSAGE,
    ExecutionRequest,
    ExecutionResponse,
)

_resource: Any
try:
    import resource as _resource_module  # POSIX only
    _resource = _resource_module
except ImportError:  # pragma: no cover - platform specific
    _resource = None

# Kept apart from the validator's deny-list so a regression there cannot
# silently disable this screen.
_BLOCKED_PATTERNS = tuple(
    re.compile(raw, re.IGNORECASE)
    for raw in (
        r"\beval\s*\(",
        r"\bexec\s*\(",
        r"\bcompile\s*\(",
        r"\b__import__\b",
        r"\bimport\s+",
        r"\bopen\s*\(",
        r"\bglobals\s*\(",
        r"\b__builtins__\b",
        r"\b__subclasses__\b",
        r"\bos\b",
        r"\bsys\b",
        r"\bsocket\b",
    )
)

TIMEOUT_EXIT_CODE = 124


def _set_limits(memory_limit_mb: int) -> list[str]:
    """Cap the unit's address space; return notes for limits that could not apply.

    Example:
        ```python
        notes = _set_limits(256)
        ```
    """
    errors: list[str] = []
    if _resource is None:
        errors.append("RLIMIT limits unavailable on this platform")
        return errors

    mem_bytes = int(memory_limit_mb) * 1024 * 1024

    try:
        _, current_hard = _resource.getrlimit(_resource.RLIMIT_AS)
        if current_hard in (-1, _resource.RLIM_INFINITY):
            target_hard = mem_bytes
        else:
            target_hard = min(mem_bytes, current_hard)
        target_soft = min(mem_bytes, target_hard)
        _resource.setrlimit(_resource.RLIMIT_AS, (target_soft, target_hard))
    except (ValueError, OSError) as exc:
        errors.append(f"RLIMIT_AS not applied: {exc}")

    return errors


def screen(code: str) -> bool:
    """Return True when `code` passes the unit's reduced deny-list.

    Example:
        ```python
        assert screen("print(1)")
        assert not screen("eval('1')")
        ```
    """
    return not any(pattern.search(code) for pattern in _BLOCKED_PATTERNS)


def run_with_timer(code: str, timeout_ms: int, max_output_kb: int | None = None) -> ExecutionResponse:
    """Race guest evaluation on a daemon thread against a wall-clock timer.

    When the timer wins the evaluation thread is left running; callers must
    end the process promptly.

    Example:
        ```python
        response = run_with_timer("print(2 + 2)", timeout_ms=1000)
        ```
    """
    box: dict[str, Evaluation] = {}

    def _target() -> None:
        """Evaluate with process streams redirected for the duration of the call.

        Example:
            ```python
            _target()
            ```
        """
        stray = io.StringIO()
        with contextlib.redirect_stdout(stray), contextlib.redirect_stderr(stray):
            evaluation = evaluate(code, max_output_kb=max_output_kb)
        leaked = stray.getvalue().rstrip("\n")
        if leaked:
            evaluation.output = "\n".join(part for part in (evaluation.output, leaked) if part)
        box["evaluation"] = evaluation

    thread = threading.Thread(target=_target, name="guest-evaluation", daemon=True)
    thread.start()
    thread.join(timeout_ms / 1000)

    evaluation = box.get("evaluation")
    if thread.is_alive() or evaluation is None:
        return ExecutionResponse(result="", output="", error=TIMEOUT_MESSAGE)
    if evaluation.error is not None:
        return ExecutionResponse(result="", output=evaluation.output, error=evaluation.error)
    return ExecutionResponse(result=evaluation.result, output=evaluation.output, error=None)


def handle_request(message: Any) -> ExecutionResponse:
    """Process one decoded request message and build the response.

    Example:
        ```python
        response = handle_request({"code": "print(1)", "timeout_ms": 1000})
        ```
    """
    request = ExecutionRequest.from_message(message)
    if request.memory_limit_mb is not None:
        _set_limits(memory_limit_mb=request.memory_limit_mb)
    if not screen(request.code):
        return ExecutionResponse(result="", output="", error=BLOCKED_MESSAGE)
    return run_with_timer(request.code, request.timeout_ms, request.max_output_kb)


def main() -> int:
    """Read one request from stdin, write one response to stdout.

    Example:
        ```python
        # echo '{"code": "print(1)", "timeout_ms": 1000}' | python -m safe_script_runner.worker
        ```
    """
    stream = sys.stdout
    try:
        response = handle_request(json.loads(sys.stdin.read() or "{}"))
    except MemoryError:
        response = ExecutionResponse(result="", output="", error="MemoryError: Memory limit exceeded")
    except (ValueError, TypeError) as exc:
        response = ExecutionResponse(result="", output="", error=f"Invalid request: {exc}")

    stream.write(json.dumps(response.to_message(), default=str))
    stream.flush()
    if response.timed_out:
        # The guest thread may still be spinning; skip interpreter shutdown.
        os._exit(TIMEOUT_EXIT_CODE)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
