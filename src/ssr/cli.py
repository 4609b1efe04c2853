from __future__ import annotations

import argparse
import html
import logging
import sys
from functools import partial
from pathlib import Path
from typing import Any, Never, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich_argparse import RawTextRichHelpFormatter
from safe_script_runner import CodeRunner, SandboxPolicy, create_safe_context, validate_code
from safe_script_runner.catalog import run_selftest
from safe_script_runner.validator import DANGEROUS_CALLS, DENY_LIST

_CONSOLE = Console(no_color=False)


class _CLIHelpFormatter(RawTextRichHelpFormatter):
    """Rich formatter with explicit high-contrast CLI styles.

    Example:
        ```python
        parser = argparse.ArgumentParser(formatter_class=_CLIHelpFormatter)
        ```
    """

    styles = {
        "argparse.args": "bold cyan",
        "argparse.groups": "bold magenta",
        "argparse.help": "white",
        "argparse.metavar": "bold yellow",
        "argparse.prog": "bold bright_blue",
        "argparse.syntax": "bold bright_white",
        "argparse.text": "bright_white",
    }


_HELP_FORMATTER = partial(
    _CLIHelpFormatter,
    max_help_position=34,
    width=120,
)


class _RichArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that renders errors via Rich.

    Example:
        ```python
        parser = _RichArgumentParser(prog="python -m ssr")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {message}", border_style="red"))
        self.print_help()
        raise SystemExit(2)

    def print_help(self, file: Any | None = None) -> None:
        """Render help text to the target stream.

        Example:
            ```python
            parser.print_help()
            ```
        """
        super().print_help(file=file)

    def print_usage(self, file: Any | None = None) -> None:
        """Render usage text to the target stream.

        Example:
            ```python
            parser.print_usage()
            ```
        """
        super().print_usage(file=file)


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for safe-script-runner.

    Example:
        ```python
        parser = build_parser()
        args = parser.parse_args(["patterns"])
        ```
    """
    parser = _RichArgumentParser(
        prog="python -m ssr",
        description=(
            "safe-script-runner CLI\n"
            "Validate and run untrusted Python snippets behind a deny-list,\n"
            "an allow-list context and an isolated worker process."
        ),
        epilog=(
            "Quick Examples:\n"
            "  python -m ssr run snippet.py\n"
            "  echo 'print(2 + 2)' | python -m ssr run -\n"
            "  python -m ssr validate snippet.py\n"
            "  python -m ssr patterns\n"
            "  python -m ssr context\n"
            "  python -m ssr selftest"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log pipeline decisions (fallbacks, rejections) to stderr.",
    )

    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    run_cmd = sub.add_parser(
        "run",
        help="Validate and execute a snippet.",
        description=(
            "Run a snippet through the full pipeline:\n"
            "rate gate, validation, isolated worker, fallback."
        ),
        epilog=(
            "Examples:\n"
            "  python -m ssr run snippet.py --timeout-ms 2000\n"
            "  python -m ssr run snippet.py --policy-file policy.toml"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    run_cmd.add_argument("source", help="Path to the snippet, or '-' for stdin.")
    run_cmd.add_argument(
        "--identifier",
        default="cli",
        help="Rate-limit bucket for this caller (default: cli).",
    )
    run_cmd.add_argument(
        "--timeout-ms",
        type=int,
        help="Override the execution timeout in milliseconds.",
    )
    run_cmd.add_argument(
        "--policy-file",
        help="TOML file with a [policy] table.",
    )
    run_cmd.add_argument(
        "--no-isolation",
        action="store_true",
        help="Evaluate in this process instead of a worker process.",
    )

    validate_cmd = sub.add_parser(
        "validate",
        help="Check a snippet against the deny-list without running it.",
        description="Report deny-list errors and warnings for a snippet.",
        formatter_class=_HELP_FORMATTER,
    )
    validate_cmd.add_argument("source", help="Path to the snippet, or '-' for stdin.")

    sub.add_parser(
        "patterns",
        help="List deny-list signatures.",
        description="Show every deny-list signature and blocked call name.",
        formatter_class=_HELP_FORMATTER,
    )
    sub.add_parser(
        "context",
        help="List names available to guest code.",
        description="Show the allow-list bindings of the safe context.",
        formatter_class=_HELP_FORMATTER,
    )
    sub.add_parser(
        "selftest",
        help="Screen the built-in attack and safe examples.",
        description=(
            "Validate a catalog of known attack snippets (must be blocked)\n"
            "and ordinary snippets (must pass) against the deny-list."
        ),
        formatter_class=_HELP_FORMATTER,
    )

    return parser


def _read_source(source: str) -> str:
    """Read snippet text from a file path, or from stdin for `-`.

    Example:
        ```python
        code = _read_source("snippet.py")
        ```
    """
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_text(encoding="utf-8")


def _configure_logging(verbose: bool) -> None:
    """Route library logs to stderr through Rich when `--verbose` is set.

    Example:
        ```python
        _configure_logging(True)
        ```
    """
    if not verbose:
        return
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _build_policy(args: argparse.Namespace) -> SandboxPolicy:
    """Resolve the run policy from an optional file plus command-line overrides.

    Example:
        ```python
        policy = _build_policy(build_parser().parse_args(["run", "-", "--no-isolation"]))
        ```
    """
    policy = SandboxPolicy.from_file(args.policy_file) if args.policy_file else SandboxPolicy()
    if args.timeout_ms is not None:
        policy.timeout_ms = max(0, args.timeout_ms)
    if args.no_isolation:
        policy.isolation = "none"
    policy.config_path = None
    return policy


def _display(text: str | None) -> Text:
    """Undo outcome markup escaping for terminal display.

    Outcomes are escaped for HTML consumers. A Rich `Text` renders its
    content literally, so showing the original characters is safe here.

    Example:
        ```python
        assert _display("&lt;b&gt;").plain == "<b>"
        ```
    """
    return Text(html.unescape(text or ""))


def _print_outcome(outcome: Any) -> None:
    """Render a run outcome as Result/Output panels or an error panel.

    Example:
        ```python
        _print_outcome(RunOutcome.success(output_text="4"))
        ```
    """
    if outcome.ok:
        if outcome.result_text:
            _CONSOLE.print(Panel(_display(outcome.result_text), title="Result", border_style="green"))
        _CONSOLE.print(Panel(_display(outcome.output_text or "(No output)"), title="Output", border_style="cyan"))
        for warning in outcome.warnings:
            _CONSOLE.print(Text(f"warning: {html.unescape(warning)}", style="yellow"))
        return
    _CONSOLE.print(Panel(_display(outcome.error_message), title=outcome.error_kind.value, border_style="red"))


def _print_validation(result: Any) -> None:
    """Render validation errors and warnings as a table.

    Example:
        ```python
        _print_validation(validate_code("print(1)"))
        ```
    """
    table = Table(title="Validation")
    table.add_column("Level", style="bold")
    table.add_column("Message")
    for error in result.errors:
        table.add_row("[red]error[/red]", Text(error))
    for warning in result.warnings:
        table.add_row("[yellow]warning[/yellow]", Text(warning))
    if not result.errors and not result.warnings:
        table.add_row("[green]ok[/green]", "No issues found")
    _CONSOLE.print(table)


def _print_patterns() -> None:
    """Render the deny-list signatures and the blocked call names.

    Example:
        ```python
        _print_patterns()
        ```
    """
    table = Table(title="Deny-list")
    table.add_column("#", justify="right")
    table.add_column("Category", style="magenta")
    table.add_column("Pattern", style="cyan")
    for index, signature in enumerate(DENY_LIST, start=1):
        table.add_row(str(index), signature.category, Text(signature.pattern.pattern))
    _CONSOLE.print(table)
    _CONSOLE.print(Panel.fit(", ".join(f"{name}()" for name in DANGEROUS_CALLS), title="Blocked calls"))


def _print_context() -> None:
    """Render the names bound in a fresh safe context.

    Example:
        ```python
        _print_context()
        ```
    """
    table = Table(title="Safe context")
    table.add_column("Name", style="cyan")
    table.add_column("Binding")
    for name, value in sorted(create_safe_context().items()):
        table.add_row(name, Text(type(value).__name__))
    _CONSOLE.print(table)


def _print_selftest(checks: Sequence[Any]) -> None:
    """Render one row per catalog example with its expected and actual verdict.

    Example:
        ```python
        _print_selftest(run_selftest())
        ```
    """
    table = Table(title="Screening self-test")
    table.add_column("Example", style="cyan")
    table.add_column("Expect")
    table.add_column("Verdict")
    table.add_column("Status", style="bold")
    for check in checks:
        validation = check.validation
        if not validation.valid:
            verdict = f"blocked ({len(validation.errors)})"
        elif validation.warnings:
            verdict = "warned"
        else:
            verdict = "allowed"
        status = "[green]PASS[/green]" if check.passed else "[red]FAIL[/red]"
        table.add_row(check.example.name, check.example.expect, verdict, status)
    _CONSOLE.print(table)
    failed = sum(1 for check in checks if not check.passed)
    if failed:
        _CONSOLE.print(f"[bold red]{failed} example(s) did not get the expected verdict[/bold red]")
    else:
        _CONSOLE.print(f"[bold green]All {len(checks)} examples screened as expected[/bold green]")


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `ssr` CLI command handler.

    Example:
        ```python
        exit_code = main(["validate", "snippet.py"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    _configure_logging(args.verbose)

    if args.command == "run":
        code = _read_source(args.source)
        with CodeRunner(policy=_build_policy(args)) as runner:
            outcome = runner.run_code(code, identifier=args.identifier)
        _print_outcome(outcome)
        return 0 if outcome.ok else 1
    if args.command == "validate":
        result = validate_code(_read_source(args.source))
        _print_validation(result)
        return 0 if result.valid else 1
    if args.command == "patterns":
        _print_patterns()
        return 0
    if args.command == "context":
        _print_context()
        return 0
    if args.command == "selftest":
        checks = run_selftest()
        _print_selftest(checks)
        return 0 if all(check.passed for check in checks) else 1

    parser.error("Unhandled command")
    return 2
