"""CLI interface for jsonmatch."""

import glob
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from jsonmatch.config import PipelineSettings, SinkSettings, set_settings
from jsonmatch.formatters import format_validation_report
from jsonmatch.models import ValidationResult
from jsonmatch.pipeline.driver import StartupError, load_rules, run_pipeline, validation_report
from jsonmatch.pipeline.sink import SinkWriteError

console = Console()
# Diagnostics go to stderr so matches written to stdout stay machine-readable.
err_console = Console(stderr=True)


def setup_logging(log_level: str) -> None:
    """Configure logging with rich handler."""
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True)],
        force=True,
    )


def _has_glob(pattern: str) -> bool:
    return any(char in pattern for char in "*?[")


def _expand_paths(patterns: tuple[str, ...]) -> list[Path]:
    """Expand glob patterns; literal paths and patterns matching nothing are kept as given."""
    paths: list[Path] = []
    for pattern in patterns:
        matches = sorted(glob.glob(pattern, recursive=True)) if _has_glob(pattern) else []
        if matches:
            paths.extend(Path(m) for m in matches)
        else:
            paths.append(Path(pattern))
    return paths


def _configure_settings(overwrite: bool) -> PipelineSettings:
    """Configure pipeline settings, letting CLI flags override the environment."""
    sink = SinkSettings()
    if overwrite:
        sink = sink.model_copy(update={"overwrite": True})
    settings = PipelineSettings(sink=sink)
    set_settings(settings)
    return settings


def display_validation_table(results: list[ValidationResult]) -> None:
    """Display validate-only results as a table."""
    table = Table(title="[bold cyan]Rule Validation[/bold cyan]", show_header=True, header_style="bold")
    table.add_column("Rule", style="cyan", no_wrap=True)
    table.add_column("Path", style="dim")
    table.add_column("Valid", justify="center")

    for result in results:
        status = "[green]✓[/green]" if result.is_valid else "[red]✗[/red]"
        table.add_row(escape(result.name), escape(str(result.path)), status)

    console.print(table)
    valid = sum(1 for r in results if r.is_valid)
    console.print(f"[dim]{valid} of {len(results)} rule(s) valid[/dim]")


def _display_validation(results: list[ValidationResult], output_format: str) -> None:
    if output_format.lower() == "json":
        print(format_validation_report(results, pretty=True))
    else:
        display_validation_table(results)


def _fail(message: str) -> None:
    err_console.print(f"[bold red]Error:[/bold red] {escape(message)}", soft_wrap=True)
    sys.exit(1)


@click.command()
@click.option(
    "--rules",
    "-r",
    "rules",
    multiple=True,
    type=str,
    help="Rule file or glob matching rule files (repeatable)",
)
@click.option(
    "--input",
    "-i",
    "inputs",
    multiple=True,
    type=str,
    help="Input file or glob of newline-delimited JSON (repeatable, default: stdin). "
    "The last file given is read first.",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    default=None,
    help="File to write all matches to; if a directory, one file per rule is created in it "
    "(default: stdout)",
)
@click.option(
    "--overwrite",
    is_flag=True,
    default=False,
    help="Replace existing output files instead of failing",
)
@click.option(
    "--validate",
    "validate_only",
    is_flag=True,
    default=False,
    help="Only load and validate the rules, print a report and exit",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["console", "json"], case_sensitive=False),
    default="console",
    help="Validation report format (default: console)",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default="WARNING",
    help="Set the logging level",
)
@click.version_option(package_name="jsonmatch")
def main(
    rules: tuple[str, ...],
    inputs: tuple[str, ...],
    output: Path | None,
    overwrite: bool,
    validate_only: bool,
    output_format: str,
    log_level: str,
) -> None:
    """Match newline-delimited JSON records against YAML detection rules."""
    setup_logging(log_level.upper())
    settings = _configure_settings(overwrite)
    rule_paths = _expand_paths(rules)
    input_paths = _expand_paths(inputs)

    try:
        if validate_only:
            _display_validation(validation_report(load_rules(rule_paths)), output_format)
            sys.exit(0)
        run_pipeline(rule_paths, input_paths or None, output, settings)
    except StartupError as e:
        _fail(str(e))
    except SinkWriteError as e:
        _fail(e.message)


if __name__ == "__main__":
    main()
