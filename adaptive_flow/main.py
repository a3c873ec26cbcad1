"""
Adaptive Flow - command line entry point.

Parses condition, loop and variable expressions, validates adaptive test case
files, and dry-runs them without a browser.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

from pydantic import ValidationError as ModelValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from adaptive_flow import __version__
from adaptive_flow.config.settings import get_settings
from adaptive_flow.core.types import AdaptiveTestCase, ParseResult
from adaptive_flow.engine.execution_engine import AdaptiveExecutionEngine, AdaptiveExecutionResult
from adaptive_flow.engine.expression_parser import (
    format_condition_expression,
    parse_condition_expression,
    parse_loop_expression,
    parse_natural_language_condition,
    parse_variable_expression,
)
from adaptive_flow.engine.syntax_validator import SyntaxValidator, format_validation_result
from adaptive_flow.error_handling import ValidationError
from adaptive_flow.monitoring.logger import get_logger, setup_logging

console = Console()
logger = get_logger("main")


class CaseFileError(Exception):
    """Raised when a test case file cannot be read or does not match the schema."""


def create_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        prog="adaptive-flow",
        description=f"Adaptive Flow - control flow for AI-assisted tests v{__version__}",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Parse a condition and print its AST
  adaptive-flow parse 'element "Login" is visible and ${count} > 3'

  # Parse a loop header
  adaptive-flow parse --kind loop 'repeat 5 times'

  # Validate a test case file
  adaptive-flow validate cases/checkout.json

  # Dry-run a test case (no browser; conditions take their fallback)
  adaptive-flow run cases/checkout.json
        """,
    )

    parser.add_argument(
        "--version",
        action="store_true",
        help="Show version information",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode with verbose logging",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose structured logging output (JSON)",
    )

    subparsers = parser.add_subparsers(dest="command")

    parse_cmd = subparsers.add_parser("parse", help="Parse an expression")
    parse_cmd.add_argument("expression", help="Expression text")
    parse_cmd.add_argument(
        "--kind",
        choices=["condition", "loop", "variable"],
        default="condition",
        help="Expression kind (default: condition)",
    )
    parse_cmd.add_argument(
        "--natural",
        action="store_true",
        help="Use the natural-language heuristics for conditions",
    )

    validate_cmd = subparsers.add_parser("validate", help="Validate a test case file")
    validate_cmd.add_argument("file", type=Path, help="Path to test case JSON file")
    validate_cmd.add_argument(
        "--no-suggestions",
        action="store_true",
        help="Omit fix suggestions from the report",
    )

    run_cmd = subparsers.add_parser("run", help="Dry-run a test case file")
    run_cmd.add_argument("file", type=Path, help="Path to test case JSON file")
    run_cmd.add_argument(
        "--json",
        action="store_true",
        dest="as_json",
        help="Print the execution summary as JSON",
    )

    return parser


def load_test_case(path: Path) -> AdaptiveTestCase:
    """Load and validate an adaptive test case from a JSON file."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise CaseFileError(f"Test case file not found: {path}")
    except json.JSONDecodeError as e:
        raise CaseFileError(f"Invalid JSON in test case file: {e}")

    try:
        return AdaptiveTestCase.model_validate(data)
    except ModelValidationError as e:
        raise CaseFileError(f"Test case does not match the schema: {e}")


def parse_command(expression: str, kind: str, natural: bool) -> int:
    """Parse one expression and print the result."""
    if kind == "loop":
        result = parse_loop_expression(expression)
    elif kind == "variable":
        result = parse_variable_expression(expression)
    elif natural:
        result = parse_natural_language_condition(expression)
    else:
        result = parse_condition_expression(expression)

    if not result.success:
        _print_parse_error(expression, result)
        return 1

    console.print_json(data=result.result.model_dump(mode="json", exclude_none=True))
    if kind == "condition":
        console.print(f"[cyan]Formatted:[/cyan] {escape(format_condition_expression(result.result))}")
        if not result.strict:
            console.print("[yellow]Parsed by natural-language heuristics[/yellow]")
    return 0


def _print_parse_error(expression: str, result: ParseResult) -> None:
    console.print(f"[red]Parse error: {escape(result.error or 'unknown')}[/red]")
    if result.position is not None:
        console.print(f"  {expression}", markup=False)
        console.print(f"  {' ' * result.position}[red]^[/red]")


def validate_command(path: Path, include_suggestions: bool = True) -> int:
    """Validate a test case file and print the report."""
    test_case = load_test_case(path)
    report = SyntaxValidator().validate(test_case)
    console.print(
        format_validation_result(report, include_suggestions=include_suggestions), markup=False
    )
    return 0 if report.valid else 1


async def run_command(path: Path, as_json: bool = False) -> int:
    """Dry-run a test case: no locator agent, action steps are only logged."""
    test_case = load_test_case(path)
    engine = AdaptiveExecutionEngine()

    try:
        result = await engine.execute(test_case)
    except ValidationError as e:
        console.print(f"[red]Validation failed: {e.message}[/red]")
        for rule in e.failed_rules:
            console.print(f"  - {rule}")
        return 1

    if as_json:
        console.print_json(data=result.to_dict())
    else:
        _print_execution_summary(test_case, result)
    return 0 if result.success else 1


def _print_execution_summary(test_case: AdaptiveTestCase, result: AdaptiveExecutionResult) -> None:
    status_color = "green" if result.success else "red"
    console.print(Panel.fit(
        f"[bold]{escape(test_case.name)}[/bold]\n"
        f"Status: [{status_color}]{'passed' if result.success else 'failed'}[/{status_color}]",
        title="Adaptive Flow",
    ))

    if result.path_history:
        table = Table(title="Execution Path")
        table.add_column("#", style="dim", width=4)
        table.add_column("Step", style="cyan")
        table.add_column("Branch", style="green")
        table.add_column("Depth", justify="right")
        table.add_column("Condition", style="yellow")
        for i, entry in enumerate(result.path_history, 1):
            table.add_row(
                str(i),
                entry.step_id,
                entry.branch.value,
                str(entry.depth),
                escape(entry.condition) if entry.condition else "-",
            )
        console.print(table)
    else:
        console.print("[dim]No branches or loop iterations were recorded.[/dim]")

    stats = result.stats
    console.print(f"Path entries: {stats.total_steps}")
    console.print(f"Branches taken: [cyan]{stats.executed_branches}[/cyan]")
    console.print(f"Loop iterations: [cyan]{stats.loop_iterations}[/cyan]")
    console.print(f"Max depth: {stats.max_depth}")
    console.print(f"Duration: {result.duration:.1f}ms")
    if result.stopped_early:
        console.print("[yellow]Execution stopped by safety limits[/yellow]")
    if result.error:
        console.print(f"[red]Error: {escape(str(result.error))}[/red]")


def show_version() -> int:
    """Show version information."""
    console.print("\n[bold cyan]Adaptive Flow[/bold cyan]")
    console.print(f"Version: [green]{__version__}[/green]")
    console.print("Python: [dim]3.10+[/dim]")
    return 0


async def async_main(args: Optional[list[str]] = None) -> int:
    """Async main entry point."""
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if parsed_args.version:
        return show_version()

    settings = get_settings()

    if parsed_args.debug:
        settings.debug_mode = True
        settings.log_level = "DEBUG"

    if parsed_args.verbose:
        settings.log_format = "json"
    else:
        settings.log_format = "text"

    setup_logging(
        log_level=settings.log_level,
        log_format=settings.log_format,
        log_file=settings.log_file,
        sanitize_logs=settings.sanitize_logs,
    )

    if parsed_args.command == "parse":
        return parse_command(parsed_args.expression, parsed_args.kind, parsed_args.natural)

    try:
        if parsed_args.command == "validate":
            return validate_command(parsed_args.file, not parsed_args.no_suggestions)
        if parsed_args.command == "run":
            return await run_command(parsed_args.file, parsed_args.as_json)
    except CaseFileError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1

    parser.print_help()
    return 1


def main(args: Optional[list[str]] = None) -> int:
    """
    Main entry point for Adaptive Flow.

    Args:
        args: Command line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    try:
        return asyncio.run(async_main(args))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        return 130
    except Exception as e:
        console.print(f"[red]Fatal error: {e}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
