import pytest

from safe_script_runner import sanitize_code, validate_code
from safe_script_runner.validator import DANGEROUS_CALLS, DENY_LIST, nesting_depth

SAFE_SNIPPET = """
def greet(name):
    return "Hello, " + name + "!"

total = sum(range(5))
print(greet("User"), total)
"""


@pytest.mark.parametrize(
    "code",
    [
        "eval('1 + 1')",
        "exec('x = 1')",
        "import math",
        "from collections import OrderedDict",
        "value = os.environ",
        "sys.exit(0)",
        "socket.create_connection(('example.com', 80))",
        "urllib.request.urlopen('http://example.com')",
        "open('notes.txt', 'w').write('x')",
        "data = pickle.dumps(1)",
        "Point.__bases__ = (Base,)",
        "obj.__class__ = Other",
        "getattr(obj, 'secret')",
        "name = '\\x6f\\x73'",
        "chr(111) + chr(115)",
    ],
)
def test_deny_listed_code_is_rejected(code: str) -> None:
    result = validate_code(code)
    assert result.valid is False
    assert len(result.errors) >= 1


def test_safe_code_is_valid() -> None:
    result = validate_code(SAFE_SNIPPET)
    assert result.valid is True
    assert result.errors == ()
    assert result.warnings == ()


def test_dynamic_evaluation_reports_pattern_and_call() -> None:
    result = validate_code("eval('2 + 2')")
    assert any("(dynamic evaluation)" in error for error in result.errors)
    assert "Dangerous function call detected: eval()" in result.errors


def test_errors_follow_declaration_order() -> None:
    result = validate_code("import json\neval('1')")
    categories = [e for e in result.errors if e.startswith("Dangerous pattern detected")]
    assert categories[0].startswith("Dangerous pattern detected (dynamic evaluation)")
    assert result.errors.index("Dangerous function call detected: eval()") > len(categories) - 1


def test_class_tampering_is_an_error_not_a_warning() -> None:
    result = validate_code("Point.__bases__ = (Base,)")
    assert "Class hierarchy tampering attempt detected" in result.errors
    assert "Class hierarchy tampering attempt detected" not in result.warnings


def test_comments_are_not_exempt() -> None:
    result = validate_code("x = 1  # eval(x) is not used here")
    assert result.valid is False


def test_method_named_like_blocked_call_is_not_a_bare_call() -> None:
    result = validate_code("items = {'a': 1}\nprint(items.keys())")
    assert result.valid is True


def test_same_text_validated_twice_gives_identical_results() -> None:
    code = "eval('1')\nfetch = open('x')"
    first = validate_code(code)
    second = validate_code(code)
    assert first == second
    assert first.valid is False


def test_repeated_validation_keeps_detecting() -> None:
    results = [validate_code("exec('print(1)')") for _ in range(5)]
    assert all(not r.valid for r in results)
    assert len({r.errors for r in results}) == 1


def test_empty_or_non_string_code_is_invalid() -> None:
    assert validate_code("").errors == ("Code must be a non-empty string",)
    assert validate_code(None).valid is False  # type: ignore[arg-type]


def test_long_code_warns_but_stays_valid() -> None:
    code = "x = 1\n" * 2000
    result = validate_code(code)
    assert result.valid is True
    assert "Code is very long and may cause performance issues" in result.warnings


def test_deep_nesting_warns() -> None:
    code = "value = " + "[" * 51 + "]" * 51
    result = validate_code(code)
    assert result.valid is True
    assert "Code has very deep nesting which may cause stack overflow" in result.warnings


def test_infinite_loop_guard_warns() -> None:
    result = validate_code("while True:\n    pass")
    assert result.valid is True
    assert "Potential infinite loop detected" in result.warnings


def test_limits_are_configurable() -> None:
    result = validate_code("x = [[1]]", max_length=3, max_depth=1)
    assert len(result.warnings) == 2


def test_nesting_depth_counts_all_brackets() -> None:
    assert nesting_depth("f([{1: (2,)}])") == 4
    assert nesting_depth("no brackets") == 0


def test_sanitize_strips_control_bytes_only() -> None:
    code = "print(1)\x00\x07\n\tprint(2)\r\n"
    assert sanitize_code(code) == "print(1)\n\tprint(2)\r\n"
    assert sanitize_code("eval('x')") == "eval('x')"
    assert sanitize_code(None) == ""  # type: ignore[arg-type]


def test_deny_list_shape() -> None:
    categories = {signature.category for signature in DENY_LIST}
    assert len(categories) == 9
    assert 60 <= len(DENY_LIST) <= 80
    assert "eval" in DANGEROUS_CALLS


@pytest.mark.parametrize(
    "code",
    [
        "loader = math.__spec__.loader",
        "root = Exception.__base__",
        "JSON.dumps.__kwdefaults__['indent'] = 4",
        "fn.__defaults__ = (1,)",
    ],
)
def test_reflection_into_shared_objects_is_rejected(code: str) -> None:
    result = validate_code(code)
    assert result.valid is False
    assert any("(reflection)" in error for error in result.errors)
