from .engine import ExecutionEngine, IsolatedUnit
from .inprocess_engine import InProcessEngine
from .subprocess_engine import SubprocessEngine, SubprocessUnit
from .types import ExecutionRequest, ExecutionResponse

__all__ = [
    "ExecutionEngine",
    "ExecutionRequest",
    "ExecutionResponse",
    "InProcessEngine",
    "IsolatedUnit",
    "SubprocessEngine",
    "SubprocessUnit",
]
