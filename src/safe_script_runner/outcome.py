from __future__ import annotations

import json
from dataclasses import dataclass, replace
from typing import Any

from .errors import ErrorKind

_MARKUP_ESCAPES = str.maketrans(
    {
        "&": "&amp;",
        "<": "&lt;",
        ">": "&gt;",
        '"': "&quot;",
        "'": "&#039;",
    }
)


def escape_markup(text: Any) -> str:
    """Escape the characters that are significant in HTML markup.

    Example:
        ```python
        assert escape_markup("<b>") == "&lt;b&gt;"
        ```
    """
    return str(text).translate(_MARKUP_ESCAPES)


def sanitize_output(value: Any) -> str:
    """Render any value as markup-safe text; containers are shown as indented JSON.

    Example:
        ```python
        safe = sanitize_output({"html": "<i>"})
        ```
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return escape_markup(value)
    if isinstance(value, (dict, list, tuple)):
        try:
            return escape_markup(json.dumps(value, indent=2, default=str))
        except (TypeError, ValueError):
            return "[Object]"
    return escape_markup(value)


@dataclass(frozen=True, slots=True)
class RunOutcome:
    """Terminal outcome of one submission: a success or a failure, never both.

    Example:
        ```python
        outcome = RunOutcome.success(result_text="4", output_text="4")
        ```
    """

    ok: bool
    result_text: str = ""
    output_text: str = ""
    warnings: tuple[str, ...] = ()
    error_kind: ErrorKind | None = None
    error_message: str | None = None
    errors: tuple[str, ...] = ()
    remaining: int | None = None
    engine: str | None = None

    def __post_init__(self) -> None:
        """Enforce that success and failure fields are never both populated.

        Example:
            ```python
            RunOutcome(ok=False, error_kind=ErrorKind.EXECUTION_TIMEOUT, error_message="timeout")
            ```
        """
        if self.ok:
            if self.error_kind is not None or self.error_message is not None or self.errors:
                raise ValueError("A successful outcome cannot carry error fields")
        else:
            if self.error_kind is None or self.error_message is None:
                raise ValueError("A failed outcome requires error_kind and error_message")
            if self.result_text or self.output_text or self.warnings:
                raise ValueError("A failed outcome cannot carry success fields")

    @classmethod
    def success(
        cls,
        *,
        result_text: str = "",
        output_text: str = "",
        warnings: tuple[str, ...] | list[str] = (),
        engine: str | None = None,
    ) -> "RunOutcome":
        """Build a successful outcome.

        Example:
            ```python
            outcome = RunOutcome.success(output_text="hello")
            ```
        """
        return cls(
            ok=True,
            result_text=result_text,
            output_text=output_text,
            warnings=tuple(warnings),
            engine=engine,
        )

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        message: str,
        *,
        errors: tuple[str, ...] | list[str] = (),
        remaining: int | None = None,
        engine: str | None = None,
    ) -> "RunOutcome":
        """Build a failed outcome.

        Example:
            ```python
            outcome = RunOutcome.failure(ErrorKind.RATE_LIMIT_EXCEEDED, "slow down", remaining=0)
            ```
        """
        return cls(
            ok=False,
            error_kind=kind,
            error_message=message,
            errors=tuple(errors),
            remaining=remaining,
            engine=engine,
        )

    def sanitized(self) -> "RunOutcome":
        """Return a copy whose every text field is markup-escaped.

        Example:
            ```python
            safe = RunOutcome.success(output_text="<b>").sanitized()
            ```
        """
        return replace(
            self,
            result_text=sanitize_output(self.result_text),
            output_text=sanitize_output(self.output_text),
            warnings=tuple(sanitize_output(w) for w in self.warnings),
            error_message=None if self.error_message is None else sanitize_output(self.error_message),
            errors=tuple(sanitize_output(e) for e in self.errors),
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the presentation-layer payload for this outcome.

        Example:
            ```python
            payload = RunOutcome.success(output_text="4").to_dict()
            ```
        """
        if self.ok:
            return {
                "result_text": self.result_text,
                "output_text": self.output_text,
                "warnings": list(self.warnings),
            }
        payload: dict[str, Any] = {
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error_message": self.error_message,
        }
        if self.errors:
            payload["errors"] = list(self.errors)
        if self.remaining is not None:
            payload["remaining"] = self.remaining
        return payload
