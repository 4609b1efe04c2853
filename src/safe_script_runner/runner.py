from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from functools import partial
from typing import Any

from .errors import ErrorKind, IsolationUnavailable
from .execution.capabilities import preflight_validate_engine_capabilities
from .execution.engine import ExecutionEngine, IsolatedUnit
from .execution.inprocess_engine import InProcessEngine
from .execution.subprocess_engine import SubprocessEngine
from .execution.types import ExecutionRequest, ExecutionResponse
from .outcome import RunOutcome
from .policy import SandboxPolicy
from .rate_limiter import RateLimiter
from .validator import ValidationResult, sanitize_code, validate_code

logger = logging.getLogger(__name__)

ISOLATED = "subprocess"
FALLBACK = "inprocess"


def _resolve_policy(policy: SandboxPolicy | None, policy_file: str | None) -> SandboxPolicy:
    """Resolve the effective policy object for a runner.

    Example:
        ```python
        policy = _resolve_policy(None, "/tmp/policy.toml")
        ```
    """
    if policy is not None and policy_file is not None:
        raise ValueError("Provide either 'policy' or 'policy_file', not both")
    if policy is None and policy_file is not None:
        return SandboxPolicy.from_file(policy_file)
    if policy is None:
        return SandboxPolicy()
    if policy.config_path is not None:
        return SandboxPolicy.from_file(policy.config_path)
    return policy


def _default_engine(policy: SandboxPolicy) -> ExecutionEngine:
    """Pick the primary engine named by the policy's isolation mode.

    Example:
        ```python
        engine = _default_engine(SandboxPolicy(isolation="none"))
        ```
    """
    if policy.isolation == "none":
        return InProcessEngine(max_output_kb=policy.max_output_kb)
    return SubprocessEngine()


class _Race:
    """First-wins latch between the unit's response and the outer timer."""

    def __init__(self) -> None:
        """Create an unresolved race.

        Example:
            ```python
            race = _Race()
            ```
        """
        self._lock = threading.Lock()
        self.winner: str | None = None

    def resolve(self, contender: str) -> bool:
        """Claim the race for `contender`; return False if someone already won.

        Example:
            ```python
            assert _Race().resolve("unit")
            ```
        """
        with self._lock:
            if self.winner is not None:
                return False
            self.winner = contender
            return True


class _Submission:
    """Tracks one `run_code` call so it settles exactly once."""

    def __init__(self, identifier: str) -> None:
        """Start a submission in the executing state.

        Example:
            ```python
            submission = _Submission("user-1")
            ```
        """
        self.identifier = identifier
        self.executing = True
        self._lock = threading.Lock()
        self._outcome: RunOutcome | None = None

    def settle(self, outcome: RunOutcome) -> bool:
        """Record the terminal outcome; later calls are ignored and return False.

        Example:
            ```python
            submission.settle(RunOutcome.success(output_text="4"))
            ```
        """
        with self._lock:
            if self._outcome is not None:
                logger.debug("Ignoring second outcome for submission from %s", self.identifier)
                return False
            self._outcome = outcome
            self.executing = False
            return True

    @property
    def outcome(self) -> RunOutcome:
        """Return the settled outcome.

        Example:
            ```python
            outcome = submission.outcome
            ```
        """
        if self._outcome is None:
            raise RuntimeError("Submission has not settled")
        return self._outcome


def _to_outcome(response: ExecutionResponse, warnings: tuple[str, ...], engine: str) -> RunOutcome:
    """Convert a unit response into a terminal outcome.

    Example:
        ```python
        outcome = _to_outcome(ExecutionResponse(result="4"), (), "subprocess")
        ```
    """
    if response.ok:
        return RunOutcome.success(
            result_text=response.result,
            output_text=response.output,
            warnings=warnings,
            engine=engine,
        )
    if response.timed_out:
        return RunOutcome.failure(
            ErrorKind.EXECUTION_TIMEOUT,
            "Error: Code execution timeout exceeded",
            engine=engine,
        )
    if response.blocked:
        return RunOutcome.failure(
            ErrorKind.VALIDATION_FAILED,
            f"Security Error: {response.error}",
            engine=engine,
        )
    message = f"Error: {response.error}"
    if response.output:
        message = f"{message}\n{response.output}"
    return RunOutcome.failure(ErrorKind.GUEST_RUNTIME_ERROR, message, engine=engine)


class CodeRunner:
    """Sequences rate gate, validation, sanitizing and dispatch for guest code.

    The runner owns its rate limiter and a small thread pool that waits on
    unit responses so the outer deadline can be enforced from the caller's
    thread. Use it as a context manager, or call `start()`/`stop()`.

    Example:
        ```python
        with CodeRunner() as runner:
            outcome = runner.run_code("print(2 + 2)", identifier="user-1")
        ```
    """

    def __init__(
        self,
        *,
        policy: SandboxPolicy | None = None,
        policy_file: str | None = None,
        engine: ExecutionEngine | None = None,
        fallback: InProcessEngine | None = None,
        limiter: RateLimiter | None = None,
    ) -> None:
        """Wire the pipeline from a policy plus optional collaborators.

        Example:
            ```python
            runner = CodeRunner(policy=SandboxPolicy(timeout_ms=2000))
            ```
        """
        self.policy = _resolve_policy(policy, policy_file)
        self.engine = engine if engine is not None else _default_engine(self.policy)
        self.fallback = fallback if fallback is not None else InProcessEngine(max_output_kb=self.policy.max_output_kb)
        self.limiter = limiter if limiter is not None else RateLimiter(self.policy.max_requests, self.policy.window_ms)
        self._engine_name = type(self.engine).__name__.lower()
        preflight_validate_engine_capabilities(self._engine_name)
        self._receivers = ThreadPoolExecutor(max_workers=4, thread_name_prefix="unit-receiver")
        self._active: dict[str, int] = {}
        self._active_lock = threading.Lock()

    def start(self) -> "CodeRunner":
        """Start the limiter's periodic cleanup.

        Example:
            ```python
            runner.start()
            ```
        """
        self.limiter.start_cleanup(self.policy.cleanup_interval_ms)
        return self

    def stop(self) -> None:
        """Stop periodic cleanup and release the receiver threads.

        Example:
            ```python
            runner.stop()
            ```
        """
        self.limiter.stop_cleanup()
        self._receivers.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "CodeRunner":
        """Start the runner on entering a `with` block.

        Example:
            ```python
            with CodeRunner() as runner:
                ...
            ```
        """
        return self.start()

    def __exit__(self, *exc_info: Any) -> None:
        """Stop the runner on leaving a `with` block.

        Example:
            ```python
            runner.__exit__(None, None, None)
            ```
        """
        self.stop()

    def is_executing(self, identifier: str) -> bool:
        """Return whether `identifier` has a submission that has not settled yet.

        Example:
            ```python
            busy = runner.is_executing("user-1")
            ```
        """
        with self._active_lock:
            return self._active.get(identifier, 0) > 0

    def _track(self, identifier: str, delta: int) -> None:
        """Adjust the count of unsettled submissions for `identifier`.

        Example:
            ```python
            runner._track("user-1", 1)
            ```
        """
        with self._active_lock:
            count = self._active.get(identifier, 0) + delta
            if count > 0:
                self._active[identifier] = count
            else:
                self._active.pop(identifier, None)

    def run_code(self, code: str, identifier: str) -> RunOutcome:
        """Run guest code for a caller and return one sanitized outcome.

        Example:
            ```python
            outcome = runner.run_code("print(2 + 2)", identifier="user-1")
            assert outcome.ok and "4" in outcome.output_text
            ```
        """
        submission = _Submission(identifier)
        self._track(identifier, 1)
        try:
            submission.settle(self._execute(code, identifier))
        except Exception:
            logger.exception("Unexpected failure while running code for %s", identifier)
            submission.settle(RunOutcome.failure(ErrorKind.INTERNAL_ERROR, "Error: Code execution failed"))
        finally:
            self._track(identifier, -1)
        return submission.outcome.sanitized()

    def _execute(self, code: str, identifier: str) -> RunOutcome:
        """Apply the rate gate and validation, then dispatch.

        Example:
            ```python
            outcome = runner._execute("print(1)", "user-1")
            ```
        """
        if not self.limiter.is_allowed(identifier):
            remaining = self.limiter.get_remaining(identifier)
            return RunOutcome.failure(
                ErrorKind.RATE_LIMIT_EXCEEDED,
                f"Rate limit exceeded. Please wait before running code again. Remaining requests: {remaining}",
                remaining=remaining,
            )

        validation = validate_code(
            code,
            max_length=self.policy.max_code_length,
            max_depth=self.policy.max_nesting_depth,
        )
        if not validation.valid:
            logger.info("Rejected submission from %s: %d validation error(s)", identifier, len(validation.errors))
            return RunOutcome.failure(
                ErrorKind.VALIDATION_FAILED,
                "Security Error: Code validation failed.\n" + "\n".join(validation.errors),
                errors=validation.errors,
            )

        request = ExecutionRequest(
            code=sanitize_code(code),
            timeout_ms=self.policy.timeout_ms,
            memory_limit_mb=self.policy.memory_limit_mb,
            max_output_kb=self.policy.max_output_kb,
        )
        return self._dispatch(request, validation)

    def _dispatch(self, request: ExecutionRequest, validation: ValidationResult) -> RunOutcome:
        """Race an isolated unit against the outer deadline, falling back on failure.

        Example:
            ```python
            outcome = runner._dispatch(ExecutionRequest(code="print(1)", timeout_ms=1000), validate_code("print(1)"))
            ```
        """
        try:
            unit: IsolatedUnit = self.engine.create_unit()
        except IsolationUnavailable as exc:
            logger.warning("Isolated unit unavailable (%s); running fallback", exc)
            return self._run_fallback(request, validation)

        race = _Race()
        try:
            unit.dispatch(request)
            receiver = self._receivers.submit(unit.receive)
            response = receiver.result(timeout=self.policy.outer_timeout_ms / 1000)
            race.resolve("unit")
        except FutureTimeoutError:
            race.resolve("timer")
            logger.warning("Unit did not answer within %d ms; discarding it", self.policy.outer_timeout_ms)
            unit.terminate()
            receiver.add_done_callback(partial(self._discard_late_response, race))
            return self._run_fallback(request, validation)
        except IsolationUnavailable as exc:
            race.resolve("transport")
            logger.warning("Unit channel failed (%s); running fallback", exc)
            unit.terminate()
            return self._run_fallback(request, validation)
        finally:
            unit.terminate()

        return _to_outcome(response, validation.warnings, ISOLATED)

    @staticmethod
    def _discard_late_response(race: _Race, receiver: Future) -> None:
        """Drop a unit response that arrives after the outer timer already won.

        Example:
            ```python
            receiver.add_done_callback(partial(CodeRunner._discard_late_response, race))
            ```
        """
        if race.resolve("unit"):
            return
        if receiver.cancelled() or receiver.exception() is not None:
            return
        logger.debug("Discarded late unit response after %s won the race", race.winner)

    def _run_fallback(self, request: ExecutionRequest, validation: ValidationResult) -> RunOutcome:
        """Evaluate in the caller's thread with the same safe context.

        Example:
            ```python
            outcome = runner._run_fallback(ExecutionRequest(code="print(1)", timeout_ms=1000), validate_code("print(1)"))
            ```
        """
        try:
            response = self.fallback.execute(request)
        except Exception:
            logger.exception("Fallback execution failed")
            return RunOutcome.failure(
                ErrorKind.ISOLATION_UNAVAILABLE,
                "Error: Execution environment unavailable",
                engine=FALLBACK,
            )
        return _to_outcome(response, validation.warnings, FALLBACK)


def run_code(
    code: str,
    identifier: str = "anonymous",
    *,
    policy: SandboxPolicy | None = None,
    policy_file: str | None = None,
    engine: ExecutionEngine | None = None,
) -> RunOutcome:
    """Run one submission through a short-lived `CodeRunner`.

    Rate limiting only applies within that runner, so long-lived callers
    should keep a `CodeRunner` instead.

    Example:
        ```python
        from safe_script_runner import run_code
        outcome = run_code("print(2 + 2)")
        ```
    """
    runner = CodeRunner(policy=policy, policy_file=policy_file, engine=engine)
    try:
        return runner.run_code(code, identifier)
    finally:
        runner.stop()
