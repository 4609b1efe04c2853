from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EngineCapabilities:
    """Capability flags advertised by an execution engine.

    Example:
        ```python
        caps = EngineCapabilities(True, True, True)
        ```
    """

    isolated: bool
    preemptive_timeout: bool
    memory_limit: bool


def capabilities_for_engine(engine: str) -> EngineCapabilities:
    """Return capability flags for an engine name.

    Example:
        ```python
        caps = capabilities_for_engine("subprocess")
        ```
    """
    if engine in {"subprocess", "subprocessengine"}:
        return EngineCapabilities(True, True, True)
    if engine in {"inprocess", "inprocessengine"}:
        return EngineCapabilities(False, False, False)
    return EngineCapabilities(False, False, False)


def preflight_validate_engine_capabilities(engine: str) -> EngineCapabilities:
    """Look up an engine's capabilities and warn when it offers no isolation.

    Example:
        ```python
        caps = preflight_validate_engine_capabilities("inprocess")
        ```
    """
    caps = capabilities_for_engine(engine)
    if not caps.isolated:
        logger.warning(
            "Engine %r provides no isolation boundary; guest code will run in-process without preemption",
            engine,
        )
    return caps
