from __future__ import annotations

import json
import logging
import subprocess
import sys
from pathlib import Path

from ..errors import IsolationUnavailable, TransportFailure
from .types import ExecutionRequest, ExecutionResponse

logger = logging.getLogger(__name__)

WORKER_MODULE = "safe_script_runner.worker"


def _package_root() -> Path:
    """Return the directory holding the `safe_script_runner` package.

    Example:
        ```python
        root = _package_root()
        ```
    """
    return Path(__file__).resolve().parents[2]


class SubprocessUnit:
    """A child Python process running the worker module for one request.

    Example:
        ```python
        unit = SubprocessEngine().create_unit()
        ```
    """

    def __init__(self, process: subprocess.Popen[str]) -> None:
        """Wrap an already spawned worker process.

        Example:
            ```python
            unit = SubprocessUnit(process)
            ```
        """
        self._process = process
        self._payload: str | None = None

    @property
    def pid(self) -> int:
        """Return the worker process id.

        Example:
            ```python
            pid = unit.pid
            ```
        """
        return self._process.pid

    def dispatch(self, request: ExecutionRequest) -> None:
        """Serialize the request for the worker; `receive()` delivers it on stdin.

        Example:
            ```python
            unit.dispatch(ExecutionRequest(code="print(1)", timeout_ms=1000))
            ```
        """
        if self._process.stdin is None or self._process.poll() is not None:
            raise TransportFailure("Worker stdin is not available")
        try:
            self._payload = json.dumps(request.to_message())
        except (TypeError, ValueError) as exc:
            raise TransportFailure(f"Failed to encode request for worker: {exc}") from exc

    def receive(self) -> ExecutionResponse:
        """Send the dispatched request, wait for the worker to exit and decode its response.

        Example:
            ```python
            response = unit.receive()
            ```
        """
        if self._payload is None:
            raise TransportFailure("No request was dispatched to the worker")
        try:
            stdout, stderr = self._process.communicate(input=self._payload)
        except (OSError, ValueError) as exc:
            raise TransportFailure(f"Failed to read worker response: {exc}") from exc

        raw = (stdout or "").strip()
        if not raw:
            logger.debug("Worker %s exited with %s and no response: %s", self.pid, self._process.returncode, stderr)
            raise TransportFailure(f"Worker exited with code {self._process.returncode} without a response")
        try:
            return ExecutionResponse.from_message(json.loads(raw))
        except ValueError as exc:
            raise TransportFailure("Worker returned an invalid response") from exc

    def terminate(self) -> None:
        """Kill the worker if it is still running and reap it.

        Example:
            ```python
            unit.terminate()
            ```
        """
        if self._process.poll() is not None:
            return
        self._process.kill()
        logger.debug("Killed worker %s", self.pid)
        try:
            self._process.wait(timeout=1)
        except subprocess.TimeoutExpired:
            logger.warning("Worker %s did not exit after kill", self.pid)


class SubprocessEngine:
    """Create isolated units as child Python processes.

    Example:
        ```python
        engine = SubprocessEngine(python_executable="/usr/bin/python3")
        ```
    """

    def __init__(self, *, python_executable: str | None = None) -> None:
        """Initialize the engine with the interpreter used for workers.

        Example:
            ```python
            engine = SubprocessEngine()
            ```
        """
        cleaned = (python_executable or sys.executable or "").strip()
        if not cleaned:
            raise ValueError("SubprocessEngine requires a Python executable")
        self._python = cleaned

    def create_unit(self) -> SubprocessUnit:
        """Spawn one worker process; raise `IsolationUnavailable` if that fails.

        Example:
            ```python
            unit = engine.create_unit()
            ```
        """
        cmd = [self._python, "-m", WORKER_MODULE]
        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                cwd=str(_package_root()),
            )
        except OSError as exc:
            raise IsolationUnavailable(f"Cannot start worker process: {exc}") from exc
        logger.debug("Started worker %s", process.pid)
        return SubprocessUnit(process)
