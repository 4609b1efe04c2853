import threading
import time
from pathlib import Path

import pytest

from safe_script_runner import (
    CodeRunner,
    ErrorKind,
    InProcessEngine,
    IsolationUnavailable,
    RunOutcome,
    SandboxPolicy,
    TransportFailure,
    run_code,
)
from safe_script_runner.execution.types import BLOCKED_MESSAGE, ExecutionRequest, ExecutionResponse
from safe_script_runner.runner import FALLBACK, ISOLATED, _Submission


class _SpyEngine:
    def __init__(self, unit=None) -> None:
        self.created = 0
        self.requests: list[ExecutionRequest] = []
        self._unit = unit

    def create_unit(self):
        self.created += 1
        if self._unit is None:
            raise IsolationUnavailable("no units in this test")
        return self._unit


class _ScriptedUnit:
    def __init__(self, response: ExecutionResponse, on_receive=None) -> None:
        self.response = response
        self.on_receive = on_receive
        self.requests: list[ExecutionRequest] = []
        self.terminated = False

    def dispatch(self, request: ExecutionRequest) -> None:
        self.requests.append(request)

    def receive(self) -> ExecutionResponse:
        if self.on_receive is not None:
            self.on_receive()
        return self.response

    def terminate(self) -> None:
        self.terminated = True


class _HungUnit:
    """Never answers until terminated; then answers late or fails."""

    def __init__(self, late_response: ExecutionResponse | None = None) -> None:
        self.late_response = late_response
        self.killed = threading.Event()
        self.answered = threading.Event()

    def dispatch(self, request: ExecutionRequest) -> None:
        pass

    def receive(self) -> ExecutionResponse:
        self.killed.wait(timeout=10)
        self.answered.set()
        if self.late_response is None:
            raise TransportFailure("worker killed")
        return self.late_response

    def terminate(self) -> None:
        self.killed.set()


class _BrokenPipeUnit(_ScriptedUnit):
    def dispatch(self, request: ExecutionRequest) -> None:
        raise TransportFailure("broken pipe")


def _policy(**overrides) -> SandboxPolicy:
    values = {"timeout_ms": 2000, "outer_timeout_buffer_ms": 3000}
    values.update(overrides)
    return SandboxPolicy(**values)


def test_isolated_run_returns_output() -> None:
    with CodeRunner(policy=_policy()) as runner:
        outcome = runner.run_code("print(2 + 2)", identifier="user")
    assert outcome.ok
    assert outcome.output_text == "4"
    assert outcome.error_kind is None
    assert outcome.engine == ISOLATED


def test_isolated_run_reports_guest_error_with_output() -> None:
    with CodeRunner(policy=_policy()) as runner:
        outcome = runner.run_code("print('partial')\nraise ValueError('bad')", identifier="user")
    assert outcome.error_kind is ErrorKind.GUEST_RUNTIME_ERROR
    assert outcome.error_message == "Error: ValueError: bad\npartial"


def test_infinite_loop_times_out_in_isolated_unit() -> None:
    policy = _policy(timeout_ms=500, outer_timeout_buffer_ms=3000)
    started = time.monotonic()
    with CodeRunner(policy=policy) as runner:
        outcome = runner.run_code("while True:\n    pass", identifier="user")
    elapsed = time.monotonic() - started
    assert outcome.error_kind is ErrorKind.EXECUTION_TIMEOUT
    assert outcome.error_message == "Error: Code execution timeout exceeded"
    assert outcome.engine == ISOLATED
    assert elapsed < policy.outer_timeout_ms / 1000 + 1


def test_validation_rejects_before_any_unit_exists() -> None:
    engine = _SpyEngine()
    with CodeRunner(policy=_policy(), engine=engine) as runner:
        outcome = runner.run_code("eval('1 + 1')", identifier="user")
    assert outcome.error_kind is ErrorKind.VALIDATION_FAILED
    assert outcome.error_message.startswith("Security Error: Code validation failed.")
    assert "Dangerous function call detected: eval()" in outcome.errors
    assert engine.created == 0


def test_rate_limit_is_checked_before_validation() -> None:
    engine = _SpyEngine()
    with CodeRunner(policy=_policy(max_requests=1, isolation="none"), engine=engine) as runner:
        first = runner.run_code("print(1)", identifier="user")
        second = runner.run_code("eval('1')", identifier="user")
    assert first.ok
    assert second.error_kind is ErrorKind.RATE_LIMIT_EXCEEDED
    assert second.remaining == 0
    assert second.error_message.endswith("Remaining requests: 0")
    assert second.errors == ()
    assert engine.created == 1


def test_rate_limits_are_per_identifier() -> None:
    with CodeRunner(policy=_policy(max_requests=1, isolation="none")) as runner:
        assert runner.run_code("print(1)", identifier="a").ok
        assert not runner.run_code("print(1)", identifier="a").ok
        assert runner.run_code("print(1)", identifier="b").ok
        assert runner.limiter.get_remaining("c") == 1


def test_unavailable_isolation_falls_back_in_process() -> None:
    engine = _SpyEngine()
    with CodeRunner(policy=_policy(), engine=engine) as runner:
        outcome = runner.run_code("print(2 + 2)", identifier="user")
    assert outcome.ok
    assert outcome.output_text == "4"
    assert outcome.engine == FALLBACK
    assert engine.created == 1


def test_isolation_none_routes_to_fallback() -> None:
    with CodeRunner(policy=_policy(isolation="none")) as runner:
        outcome = runner.run_code("return 'local'", identifier="user")
    assert outcome.result_text == "local"
    assert outcome.engine == FALLBACK


def test_outer_timer_discards_hung_unit_and_falls_back() -> None:
    unit = _HungUnit()
    policy = _policy(timeout_ms=100, outer_timeout_buffer_ms=100)
    with CodeRunner(policy=policy, engine=_SpyEngine(unit)) as runner:
        outcome = runner.run_code("print(2 + 2)", identifier="user")
    assert unit.killed.is_set()
    assert outcome.ok
    assert outcome.output_text == "4"
    assert outcome.engine == FALLBACK


def test_late_unit_response_never_replaces_outcome() -> None:
    unit = _HungUnit(late_response=ExecutionResponse(result="late"))
    policy = _policy(timeout_ms=100, outer_timeout_buffer_ms=100)
    with CodeRunner(policy=policy, engine=_SpyEngine(unit)) as runner:
        outcome = runner.run_code("return 'fresh'", identifier="user")
        assert unit.answered.wait(timeout=5)
    assert outcome.result_text == "fresh"
    assert outcome.engine == FALLBACK


def test_transport_failure_falls_back() -> None:
    unit = _BrokenPipeUnit(ExecutionResponse(result="unused"))
    with CodeRunner(policy=_policy(), engine=_SpyEngine(unit)) as runner:
        outcome = runner.run_code("return 3", identifier="user")
    assert outcome.result_text == "3"
    assert outcome.engine == FALLBACK
    assert unit.terminated


def test_unit_receives_sanitized_code_and_policy_limits() -> None:
    unit = _ScriptedUnit(ExecutionResponse(output="ok"))
    policy = _policy(timeout_ms=1234, memory_limit_mb=64, max_output_kb=8)
    with CodeRunner(policy=policy, engine=_SpyEngine(unit)) as runner:
        outcome = runner.run_code("print(1)\x00", identifier="user")
    assert outcome.output_text == "ok"
    assert unit.requests == [ExecutionRequest(code="print(1)", timeout_ms=1234, memory_limit_mb=64, max_output_kb=8)]
    assert unit.terminated


def test_unit_block_maps_to_validation_failure() -> None:
    unit = _ScriptedUnit(ExecutionResponse(error=BLOCKED_MESSAGE))
    with CodeRunner(policy=_policy(), engine=_SpyEngine(unit)) as runner:
        outcome = runner.run_code("print(1)", identifier="user")
    assert outcome.error_kind is ErrorKind.VALIDATION_FAILED
    assert outcome.error_message == f"Security Error: {BLOCKED_MESSAGE}"


def test_warnings_travel_with_success() -> None:
    unit = _ScriptedUnit(ExecutionResponse(output="done"))
    with CodeRunner(policy=_policy(), engine=_SpyEngine(unit)) as runner:
        outcome = runner.run_code("while True:\n    break", identifier="user")
    assert outcome.ok
    assert outcome.warnings == ("Potential infinite loop detected",)


def test_is_executing_tracks_unsettled_submission() -> None:
    seen: list[bool] = []
    holder: dict[str, CodeRunner] = {}
    unit = _ScriptedUnit(
        ExecutionResponse(output="x"),
        on_receive=lambda: seen.append(holder["runner"].is_executing("user")),
    )
    with CodeRunner(policy=_policy(), engine=_SpyEngine(unit)) as runner:
        holder["runner"] = runner
        assert not runner.is_executing("user")
        runner.run_code("print(1)", identifier="user")
        assert not runner.is_executing("user")
    assert seen == [True]


def test_submission_settles_exactly_once() -> None:
    submission = _Submission("user")
    first = RunOutcome.success(output_text="first")
    assert submission.executing
    assert submission.settle(first)
    assert not submission.settle(RunOutcome.success(output_text="second"))
    assert submission.outcome is first
    assert not submission.executing


def test_unsettled_submission_has_no_outcome() -> None:
    with pytest.raises(RuntimeError):
        _Submission("user").outcome


def test_unexpected_failure_becomes_internal_error() -> None:
    class _ExplodingEngine:
        def create_unit(self):
            raise RuntimeError("boom")

    with CodeRunner(policy=_policy(), engine=_ExplodingEngine()) as runner:
        outcome = runner.run_code("print(1)", identifier="user")
        assert not runner.is_executing("user")
    assert outcome.error_kind is ErrorKind.INTERNAL_ERROR
    assert outcome.error_message == "Error: Code execution failed"


def test_outcome_text_is_markup_escaped() -> None:
    with CodeRunner(policy=_policy(isolation="none")) as runner:
        outcome = runner.run_code("print(\"<b>Tom & 'Jerry'</b>\")", identifier="user")
    assert outcome.output_text == "&lt;b&gt;Tom &amp; &#039;Jerry&#039;&lt;/b&gt;"


def test_error_messages_are_escaped_too() -> None:
    with CodeRunner(policy=_policy(isolation="none")) as runner:
        outcome = runner.run_code("raise ValueError(\"it's <bad>\")", identifier="user")
    assert outcome.error_kind is ErrorKind.GUEST_RUNTIME_ERROR
    assert outcome.error_message == "Error: ValueError: it&#039;s &lt;bad&gt;"


def test_policy_and_policy_file_are_mutually_exclusive(tmp_path: Path) -> None:
    path = tmp_path / "policy.toml"
    path.write_text("[policy]\nmax_requests = 1\n", encoding="utf-8")
    with pytest.raises(ValueError, match="either 'policy' or 'policy_file'"):
        CodeRunner(policy=SandboxPolicy(), policy_file=str(path))


def test_policy_file_configures_runner(tmp_path: Path) -> None:
    path = tmp_path / "policy.toml"
    path.write_text('[policy]\nisolation = "none"\nmax_requests = 1\n', encoding="utf-8")
    with CodeRunner(policy_file=str(path)) as runner:
        assert runner.run_code("print(1)", identifier="user").ok
        outcome = runner.run_code("print(1)", identifier="user")
    assert outcome.error_kind is ErrorKind.RATE_LIMIT_EXCEEDED


def test_module_level_run_code() -> None:
    outcome = run_code("print('hi')", policy=_policy(isolation="none"))
    assert outcome.output_text == "hi"


def test_runner_starts_and_stops_cleanup() -> None:
    runner = CodeRunner(policy=_policy(isolation="none"))
    runner.start()
    assert runner.limiter.cleanup_running
    runner.stop()
    assert not runner.limiter.cleanup_running


def test_isolated_run_needs_no_fallback(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level("WARNING", logger="safe_script_runner.runner"):
        with CodeRunner(policy=_policy()) as runner:
            outcome = runner.run_code("for i in range(3):\n    print(i)", identifier="user")
    assert outcome.engine == ISOLATED
    assert outcome.output_text == "0\n1\n2"
    assert "fallback" not in caplog.text
    assert "discarding" not in caplog.text


def test_guest_cannot_rebind_shared_helpers_for_later_callers() -> None:
    with CodeRunner(policy=_policy(isolation="none")) as runner:
        attacker = runner.run_code('JSON.dumps = lambda *a, **k: "hijacked"\nmath.pi = 3', identifier="attacker")
        victim = runner.run_code("print(JSON.dumps([1]), math.pi)", identifier="victim")
    assert attacker.error_kind is ErrorKind.GUEST_RUNTIME_ERROR
    assert "AttributeError" in attacker.error_message
    assert victim.ok
    assert victim.output_text == "[1] 3.141592653589793"


def test_module_spec_reach_is_rejected() -> None:
    with CodeRunner(policy=_policy(isolation="none")) as runner:
        outcome = runner.run_code("loader = math.__spec__", identifier="user")
    assert outcome.error_kind is ErrorKind.VALIDATION_FAILED


def test_base_exception_reach_is_rejected() -> None:
    with CodeRunner(policy=_policy(isolation="none")) as runner:
        outcome = runner.run_code("raise Exception.__base__('boom')", identifier="user")
    assert outcome.error_kind is ErrorKind.VALIDATION_FAILED


def test_fallback_contains_base_exception_raised_by_guest() -> None:
    response = InProcessEngine().execute(
        ExecutionRequest(code="raise Exception.__base__('boom')", timeout_ms=5000)
    )
    assert response.error == "BaseException: boom"
