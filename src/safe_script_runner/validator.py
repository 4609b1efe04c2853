"""Static deny-list screening of guest code.

Matching is purely textual: signatures inside comments and string literals
count, and indirect reconstruction of a forbidden name (concatenation,
computed lookups) is not detected. The validator is a best-effort filter in
front of the safe context, not an isolation boundary.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .policy import DEFAULT_MAX_CODE_LENGTH, DEFAULT_MAX_NESTING_DEPTH

DYNAMIC_EVALUATION = "dynamic evaluation"
AMBIENT_ENVIRONMENT = "ambient environment access"
NETWORK_ACCESS = "network access"
STORAGE_ACCESS = "storage access"
DOCUMENT_MUTATION = "host document mutation"
REFLECTION = "reflection"
CLASS_MUTATION = "class hierarchy mutation"
STRING_SCHEDULING = "string-argument scheduling"
OBFUSCATION = "obfuscation"


@dataclass(frozen=True, slots=True)
class DenySignature:
    """One deny-list entry: a category label and the pattern that triggers it.

    Example:
        ```python
        sig = DenySignature(DYNAMIC_EVALUATION, re.compile(r"\\beval\\s*\\("))
        ```
    """

    category: str
    pattern: re.Pattern[str]

    def matches(self, code: str) -> bool:
        """Return whether the signature occurs anywhere in `code`.

        Example:
            ```python
            hit = DENY_LIST[0].matches("eval('1')")
            ```
        """
        return self.pattern.search(code) is not None

    def describe(self) -> str:
        """Return the error line appended when this signature matches.

        Example:
            ```python
            message = DENY_LIST[0].describe()
            ```
        """
        return f"Dangerous pattern detected ({self.category}): {self.pattern.pattern}"


def _signatures(*groups: tuple[str, tuple[str, ...]]) -> tuple[DenySignature, ...]:
    """Compile grouped raw patterns into an ordered signature tuple.

    Example:
        ```python
        sigs = _signatures((REFLECTION, (r"\\bgetattr\\s*\\(",)))
        ```
    """
    return tuple(
        DenySignature(category, re.compile(raw, re.IGNORECASE))
        for category, patterns in groups
        for raw in patterns
    )


DENY_LIST: tuple[DenySignature, ...] = _signatures(
    (
        DYNAMIC_EVALUATION,
        (
            r"\beval\s*\(",
            r"\bexec\s*\(",
            r"\bcompile\s*\(",
            r"\b__import__\b",
            r"\bimportlib\b",
            r"\bimport\s+",
            r"\bfrom\s+[\w.]+\s+import\b",
            r"\bbreakpoint\s*\(",
            r"\brunpy\b",
        ),
    ),
    (
        AMBIENT_ENVIRONMENT,
        (
            r"\bglobals\s*\(",
            r"\blocals\s*\(",
            r"\bvars\s*\(",
            r"\b__builtins__\b",
            r"\bbuiltins\b",
            r"\bos\b",
            r"\bsys\b",
            r"\bsubprocess\b",
            r"\benviron\b",
            r"\bctypes\b",
            r"\bmultiprocessing\b",
            r"\bthreading\b",
            r"\b__loader__\b",
        ),
    ),
    (
        NETWORK_ACCESS,
        (
            r"\bsocket\b",
            r"\burllib\w*",
            r"\bhttp\.client\b",
            r"\brequests\.\w+",
            r"\bhttpx\b",
            r"\bsmtplib\b",
            r"\bftplib\b",
            r"\burlopen\s*\(",
            r"\bwebbrowser\b",
        ),
    ),
    (
        STORAGE_ACCESS,
        (
            r"\bopen\s*\(",
            r"\bpathlib\b",
            r"\bshutil\b",
            r"\btempfile\b",
            r"\bpickle\b",
            r"\bshelve\b",
            r"\bsqlite3\b",
            r"\bmarshal\b",
        ),
    ),
    (
        DOCUMENT_MUTATION,
        (
            r"\btkinter\b",
            r"\bturtle\b",
            r"\bcurses\b",
            r"\bprint\s*\([^)]*\bfile\s*=",
            r"\b__stdout__\b",
            r"\b__stderr__\b",
        ),
    ),
    (
        REFLECTION,
        (
            r"\bgetattr\s*\(",
            r"\bsetattr\s*\(",
            r"\bdelattr\s*\(",
            r"\b__getattribute__\b",
            r"\b__subclasses__\b",
            r"\b__globals__\b",
            r"\b__code__\b",
            r"\b__closure__\b",
            r"\bgi_frame\b",
            r"\bf_globals\b",
            r"\bf_back\b",
            r"\btb_frame\b",
            r"\b__spec__\b",
            r"\b__base__\b",
            r"\b__defaults__\b",
            r"\b__kwdefaults__\b",
        ),
    ),
    (
        CLASS_MUTATION,
        (
            r"\.__class__\s*=",
            r"\.__bases__\s*=",
            r"\b__mro__\b",
            r"\bobject\.__\w+",
            r"\b__setattr__\b",
            r"\b__delattr__\b",
        ),
    ),
    (
        STRING_SCHEDULING,
        (
            r"\btimeit\b",
            r"\bTimer\s*\(\s*[\"']",
            r"\bsched\b",
            r"\bcall_later\s*\(",
        ),
    ),
    (
        OBFUSCATION,
        (
            r"\\u[0-9a-f]{4}",
            r"\\x[0-9a-f]{2}",
            r"\\N\{",
            r"\bchr\s*\(",
            r"\bbase64\b",
            r"\bcodecs\b",
            r"\.decode\s*\(",
            r"\bbytes\.fromhex\b",
        ),
    ),
)

DANGEROUS_CALLS: tuple[str, ...] = (
    "eval",
    "exec",
    "compile",
    "__import__",
    "open",
    "input",
    "breakpoint",
    "globals",
    "locals",
    "vars",
    "dir",
    "getattr",
    "setattr",
    "delattr",
    "exit",
    "quit",
    "help",
    "memoryview",
    "chr",
)

_CLASS_TAMPERING = re.compile(r"\.__class__\b|\.__bases__\b|\.__mro__\b|\.__dict__\s*\[")
_INFINITE_LOOP = re.compile(
    r"\bwhile\s+True\s*:|\bwhile\s+1\s*:|\bwhile\s*\(\s*True\s*\)\s*:|\bwhile\s+not\s+False\s*:"
)
_CONTROL_BYTES = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_OPENERS = {"(": ")", "[": "]", "{": "}"}
_CLOSERS = set(_OPENERS.values())


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Outcome of one `validate_code` call.

    Example:
        ```python
        outcome = ValidationResult(valid=True, errors=(), warnings=())
        ```
    """

    valid: bool
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()


def sanitize_code(code: object) -> str:
    """Strip NUL and other control bytes; the code is otherwise left untouched.

    Example:
        ```python
        clean = sanitize_code("print(1)\\x00")
        ```
    """
    if not isinstance(code, str) or not code:
        return ""
    return _CONTROL_BYTES.sub("", code)


def nesting_depth(code: str) -> int:
    """Return the deepest bracket nesting found in `code`.

    Example:
        ```python
        assert nesting_depth("[[1], {2: (3,)}]") == 3
        ```
    """
    depth = 0
    deepest = 0
    for char in code:
        if char in _OPENERS:
            depth += 1
            deepest = max(deepest, depth)
        elif char in _CLOSERS and depth:
            depth -= 1
    return deepest


def _call_pattern(name: str) -> re.Pattern[str]:
    """Build a matcher for `name` used as a bare call.

    Example:
        ```python
        assert _call_pattern("eval").search("eval (x)")
        ```
    """
    return re.compile(rf"(?<![\w.]){re.escape(name)}\s*\(", re.IGNORECASE)


def validate_code(
    code: object,
    *,
    max_length: int = DEFAULT_MAX_CODE_LENGTH,
    max_depth: int = DEFAULT_MAX_NESTING_DEPTH,
) -> ValidationResult:
    """Screen guest code against the deny-list and collect warnings.

    Example:
        ```python
        outcome = validate_code("print(2 + 2)")
        assert outcome.valid
        ```
    """
    if not isinstance(code, str) or not code:
        return ValidationResult(valid=False, errors=("Code must be a non-empty string",))

    errors: list[str] = []
    warnings: list[str] = []

    for signature in DENY_LIST:
        if signature.matches(code):
            errors.append(signature.describe())

    for name in DANGEROUS_CALLS:
        if _call_pattern(name).search(code):
            errors.append(f"Dangerous function call detected: {name}()")

    if _CLASS_TAMPERING.search(code):
        errors.append("Class hierarchy tampering attempt detected")

    if len(code) > max_length:
        warnings.append("Code is very long and may cause performance issues")
    if nesting_depth(code) > max_depth:
        warnings.append("Code has very deep nesting which may cause stack overflow")
    if _INFINITE_LOOP.search(code):
        warnings.append("Potential infinite loop detected")

    return ValidationResult(valid=not errors, errors=tuple(errors), warnings=tuple(warnings))
