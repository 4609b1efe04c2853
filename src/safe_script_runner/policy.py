from __future__ import annotations

import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

ISOLATION_MODES = {"subprocess", "none"}


def _default_policy_path() -> Path:
    """Return bundled default policy TOML path.

    Example:
        ```python
        path = _default_policy_path()
        ```
    """
    return Path(__file__).with_name("default_policy.toml")


def _read_policy_toml(path: Path) -> dict[str, Any]:
    """Read policy TOML and return normalized policy dictionary.

    Example:
        ```python
        raw = _read_policy_toml(Path("/tmp/policy.toml"))
        ```
    """
    if not path.exists():
        return {
            "isolation": "subprocess",
            "timeout_ms": 5000,
            "outer_timeout_buffer_ms": 1500,
            "max_requests": 10,
            "window_ms": 60000,
            "cleanup_interval_ms": 300000,
            "max_code_length": 10000,
            "max_nesting_depth": 50,
            "memory_limit_mb": 256,
            "max_output_kb": 128,
        }
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    policy_obj = raw.get("policy", raw)
    if not isinstance(policy_obj, dict):
        raise ValueError("Policy config must be a TOML table")
    return policy_obj


def _non_negative_int(value: Any, field_name: str) -> int:
    """Validate and normalize a non-negative integer policy field.

    Example:
        ```python
        timeout = _non_negative_int(5000, "timeout_ms")
        ```
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{field_name}' must be an integer")
    if value < 0:
        raise ValueError(f"'{field_name}' must not be negative")
    return value


_DEFAULT_POLICY_RAW = _read_policy_toml(_default_policy_path())
DEFAULT_ISOLATION = str(_DEFAULT_POLICY_RAW.get("isolation", "subprocess"))
DEFAULT_TIMEOUT_MS = int(_DEFAULT_POLICY_RAW.get("timeout_ms", 5000))
DEFAULT_OUTER_TIMEOUT_BUFFER_MS = int(_DEFAULT_POLICY_RAW.get("outer_timeout_buffer_ms", 1500))
DEFAULT_MAX_REQUESTS = int(_DEFAULT_POLICY_RAW.get("max_requests", 10))
DEFAULT_WINDOW_MS = int(_DEFAULT_POLICY_RAW.get("window_ms", 60000))
DEFAULT_CLEANUP_INTERVAL_MS = int(_DEFAULT_POLICY_RAW.get("cleanup_interval_ms", 300000))
DEFAULT_MAX_CODE_LENGTH = int(_DEFAULT_POLICY_RAW.get("max_code_length", 10000))
DEFAULT_MAX_NESTING_DEPTH = int(_DEFAULT_POLICY_RAW.get("max_nesting_depth", 50))
DEFAULT_MEMORY_LIMIT_MB = int(_DEFAULT_POLICY_RAW.get("memory_limit_mb", 256))
DEFAULT_MAX_OUTPUT_KB = int(_DEFAULT_POLICY_RAW.get("max_output_kb", 128))

_INT_FIELDS = (
    "timeout_ms",
    "outer_timeout_buffer_ms",
    "max_requests",
    "window_ms",
    "cleanup_interval_ms",
    "max_code_length",
    "max_nesting_depth",
    "memory_limit_mb",
    "max_output_kb",
)


@dataclass(slots=True)
class SandboxPolicy:
    """Execution, validation and rate-limit settings for guest code.

    Example:
        ```python
        policy = SandboxPolicy(timeout_ms=2000, max_requests=5)
        ```
    """

    isolation: str = DEFAULT_ISOLATION
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    outer_timeout_buffer_ms: int = DEFAULT_OUTER_TIMEOUT_BUFFER_MS
    max_requests: int = DEFAULT_MAX_REQUESTS
    window_ms: int = DEFAULT_WINDOW_MS
    cleanup_interval_ms: int = DEFAULT_CLEANUP_INTERVAL_MS
    max_code_length: int = DEFAULT_MAX_CODE_LENGTH
    max_nesting_depth: int = DEFAULT_MAX_NESTING_DEPTH
    memory_limit_mb: int = DEFAULT_MEMORY_LIMIT_MB
    max_output_kb: int = DEFAULT_MAX_OUTPUT_KB
    config_path: str | None = None

    def __post_init__(self) -> None:
        """Validate isolation mode and numeric limits after initialization.

        Example:
            ```python
            SandboxPolicy(isolation="none")
            ```
        """
        if self.isolation not in ISOLATION_MODES:
            raise ValueError("isolation must be 'subprocess' or 'none'")
        for name in _INT_FIELDS:
            _non_negative_int(getattr(self, name), name)
        if self.max_requests < 1:
            raise ValueError("'max_requests' must be at least 1")
        if self.cleanup_interval_ms < 1:
            raise ValueError("'cleanup_interval_ms' must be at least 1")

    @property
    def outer_timeout_ms(self) -> int:
        """Return the orchestrator-owned deadline `timeout_ms + buffer`.

        Example:
            ```python
            assert SandboxPolicy(timeout_ms=100, outer_timeout_buffer_ms=50).outer_timeout_ms == 150
            ```
        """
        return self.timeout_ms + self.outer_timeout_buffer_ms

    @classmethod
    def from_file(cls, config_path: str) -> "SandboxPolicy":
        """Create a policy instance from a TOML file.

        Example:
            ```python
            policy = SandboxPolicy.from_file("/tmp/policy.toml")
            ```
        """
        raw = _read_policy_toml(Path(config_path))
        values: dict[str, Any] = {
            "isolation": str(raw.get("isolation", DEFAULT_ISOLATION)),
            "config_path": config_path,
        }
        for name in _INT_FIELDS:
            if name in raw:
                values[name] = _non_negative_int(raw[name], name)
        return cls(**values)
