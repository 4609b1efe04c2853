from pathlib import Path

import pytest

from safe_script_runner import SandboxPolicy
from safe_script_runner.policy import DEFAULT_MAX_REQUESTS, DEFAULT_TIMEOUT_MS


def test_bundled_defaults() -> None:
    policy = SandboxPolicy()
    assert policy.isolation == "subprocess"
    assert policy.timeout_ms == DEFAULT_TIMEOUT_MS == 5000
    assert policy.max_requests == DEFAULT_MAX_REQUESTS == 10
    assert policy.window_ms == 60_000
    assert policy.outer_timeout_ms == 6500


def test_policy_file_overrides_selected_fields(tmp_path: Path) -> None:
    path = tmp_path / "policy.toml"
    path.write_text(
        '[policy]\nisolation = "none"\ntimeout_ms = 750\nmax_requests = 3\n',
        encoding="utf-8",
    )
    policy = SandboxPolicy.from_file(str(path))
    assert policy.isolation == "none"
    assert policy.timeout_ms == 750
    assert policy.max_requests == 3
    assert policy.window_ms == 60_000
    assert policy.config_path == str(path)


def test_top_level_table_is_accepted(tmp_path: Path) -> None:
    path = tmp_path / "policy.toml"
    path.write_text("max_code_length = 20\n", encoding="utf-8")
    assert SandboxPolicy.from_file(str(path)).max_code_length == 20


def test_missing_file_falls_back_to_defaults(tmp_path: Path) -> None:
    policy = SandboxPolicy.from_file(str(tmp_path / "absent.toml"))
    assert policy.timeout_ms == 5000


@pytest.mark.parametrize(
    "overrides",
    [
        {"isolation": "docker"},
        {"timeout_ms": -1},
        {"timeout_ms": True},
        {"max_requests": 0},
        {"cleanup_interval_ms": 0},
        {"window_ms": "60000"},
    ],
)
def test_invalid_values_are_rejected(overrides: dict) -> None:
    with pytest.raises(ValueError):
        SandboxPolicy(**overrides)


def test_invalid_file_values_are_rejected(tmp_path: Path) -> None:
    path = tmp_path / "policy.toml"
    path.write_text('[policy]\ntimeout_ms = "fast"\n', encoding="utf-8")
    with pytest.raises(ValueError, match="timeout_ms"):
        SandboxPolicy.from_file(str(path))
