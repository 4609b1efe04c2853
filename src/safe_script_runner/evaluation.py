from __future__ import annotations

import ast
from dataclasses import dataclass
from types import CodeType
from typing import Any

from .safe_context import create_safe_context, format_value

GUEST_FILENAME = "<guest>"
GUEST_MODULE = "__guest__"
_ENTRYPOINT = "__guest_main__"


@dataclass(slots=True)
class Evaluation:
    """Result of evaluating guest code against a safe context.

    Example:
        ```python
        ev = Evaluation(result="4", output="", error=None)
        ```
    """

    result: str = ""
    output: str = ""
    error: str | None = None


def compile_guest(code: str) -> CodeType:
    """Compile guest text as the body of a generated function.

    Wrapping keeps every top-level name local to one call and lets a
    top-level `return` supply the result value.

    Example:
        ```python
        byte_code = compile_guest("return 2 + 2")
        ```
    """
    tree = ast.parse(code, filename=GUEST_FILENAME, mode="exec")
    wrapper = ast.parse(f"def {_ENTRYPOINT}():\n    pass\n", filename=GUEST_FILENAME)
    function = wrapper.body[0]
    assert isinstance(function, ast.FunctionDef)
    function.body = tree.body or [ast.Pass()]
    return compile(ast.fix_missing_locations(wrapper), GUEST_FILENAME, "exec")


def _clip(text: str, max_output_kb: int | None) -> str:
    """Truncate output text to the configured size limit.

    Example:
        ```python
        short = _clip("x" * 4096, 1)
        ```
    """
    if max_output_kb is None:
        return text
    return text[: max_output_kb * 1024]


def _describe(exc: BaseException) -> str:
    """Render an exception message, tolerating guest `__str__` overrides that raise.

    Example:
        ```python
        assert _describe(ValueError("bad")) == "bad"
        ```
    """
    try:
        return str(exc)
    except BaseException:
        return "<unprintable exception>"


def evaluate(
    code: str,
    *,
    context: dict[str, Any] | None = None,
    max_output_kb: int | None = None,
) -> Evaluation:
    """Run guest code synchronously with only the safe context in scope.

    Example:
        ```python
        ev = evaluate("print(2 + 2)")
        assert ev.output == "4"
        ```
    """
    context = context if context is not None else create_safe_context()
    console = context["console"]

    try:
        byte_code = compile_guest(code)
    except (SyntaxError, ValueError, RecursionError, MemoryError) as exc:
        return Evaluation(output="", error=f"{type(exc).__name__}: {exc}")

    namespace: dict[str, Any] = {"__builtins__": context, "__name__": GUEST_MODULE}
    # Guests can reach BaseException and define __str__; nothing they raise may
    # cross this call, including while their result is rendered.
    try:
        exec(byte_code, namespace, namespace)
        value = namespace[_ENTRYPOINT]()
        result = "" if value is None else format_value(value)
    except BaseException as exc:
        return Evaluation(
            output=_clip(console.render(), max_output_kb),
            error=f"{type(exc).__name__}: {_describe(exc)}",
        )

    return Evaluation(
        result=_clip(result, max_output_kb),
        output=_clip(console.render(), max_output_kb),
    )
