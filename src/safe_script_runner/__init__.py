from .errors import ErrorKind, IsolationUnavailable, TransportFailure
from .execution.inprocess_engine import InProcessEngine
from .execution.subprocess_engine import SubprocessEngine
from .outcome import RunOutcome, sanitize_output
from .policy import SandboxPolicy
from .rate_limiter import RateLimiter
from .runner import CodeRunner, run_code
from .safe_context import create_safe_context
from .validator import ValidationResult, sanitize_code, validate_code

__all__ = [
    "CodeRunner",
    "ErrorKind",
    "InProcessEngine",
    "IsolationUnavailable",
    "RateLimiter",
    "RunOutcome",
    "SandboxPolicy",
    "SubprocessEngine",
    "TransportFailure",
    "ValidationResult",
    "create_safe_context",
    "run_code",
    "sanitize_code",
    "sanitize_output",
    "validate_code",
]
