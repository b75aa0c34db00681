"""CLI interface for checkonaut using Typer framework."""

import json as jsonlib
import logging
from pathlib import Path
from typing import Annotated, List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from checkonaut import __description__, __version__
from checkonaut.config import BindingMode, CheckonautConfig, LogLevel, load_config
from checkonaut.discovery import FileSearcher
from checkonaut.engine import CheckEngine, load_documents
from checkonaut.harness import TestHarness
from checkonaut.results import ResultAggregator

app = typer.Typer(
    name="checkonaut",
    help=__description__,
    add_completion=False,
    rich_markup_mode="rich"
)

console = Console()

_LOG_LEVELS = {
    LogLevel.ERROR.value: logging.ERROR,
    LogLevel.WARN.value: logging.WARNING,
    LogLevel.INFO.value: logging.INFO,
    LogLevel.DEBUG.value: logging.DEBUG,
}

VALID_FORMATS = ["table", "json"]


def version_callback(value: bool) -> None:
    """Show version information and exit."""
    if value:
        console.print(f"checkonaut version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        bool,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True, help="Show version and exit")
    ] = False,
    log_level: Annotated[
        Optional[LogLevel],
        typer.Option("--log-level", "-l", envvar="CHECKONAUT_LOG", help="Log level (default: from config, else warn)")
    ] = None,
) -> None:
    """checkonaut - run Lua checks against structured data."""
    ctx.obj = {"log_level": log_level}


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=_LOG_LEVELS.get(level, logging.WARNING),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load_settings(
    ctx: typer.Context,
    config: Path | None,
    dotfiles: bool,
    workers: int | None,
    timeout: float | None,
    read_root: Path | None,
    binding: BindingMode | None = None,
) -> CheckonautConfig:
    """Load configuration and apply command-line overrides.

    Raises:
        typer.Exit: If the configuration cannot be loaded
    """
    try:
        settings = load_config(config)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    if dotfiles:
        settings.discovery.dotfiles = True
    if workers is not None:
        settings.engine.workers = workers
    if timeout is not None:
        settings.engine.timeout_seconds = timeout if timeout > 0 else None
    if read_root is not None:
        settings.engine.read_root = str(read_root.resolve())
    if binding is not None:
        settings.engine.binding = binding

    cli_level = (ctx.obj or {}).get("log_level")
    _configure_logging(cli_level.value if cli_level else settings.logging.level)
    return settings


def _searcher(settings: CheckonautConfig) -> FileSearcher:
    discovery = settings.discovery
    return FileSearcher(
        include_dotfiles=discovery.dotfiles,
        include_dotdirs=discovery.dotdirs,
        follow_links=discovery.follow_links,
        exclude=discovery.exclude,
        test_suffix=settings.engine.test_suffix,
    )


def _display_path(path: Path | None) -> str:
    if path is None:
        return ""
    try:
        return str(path.relative_to(Path.cwd()))
    except ValueError:
        return str(path)


def _validate_format(format: str) -> None:
    if format not in VALID_FORMATS:
        console.print(f"[red]Error:[/red] Invalid format '{escape(format)}'. Must be one of: {', '.join(VALID_FORMATS)}")
        raise typer.Exit(1)


def _print_errors(aggregator: ResultAggregator) -> None:
    if not aggregator.errors:
        return
    console.print("\n[blue]Execution Errors:[/blue]")
    errors_table = Table()
    errors_table.add_column("Kind", style="red")
    errors_table.add_column("File", style="cyan")
    errors_table.add_column("Location", style="dim")
    errors_table.add_column("Message", style="white")

    for error in aggregator.errors:
        location = error.test_name or ""
        if error.document is not None:
            location = _display_path(error.document)
            if error.object_index is not None:
                location += f" #{error.object_index}"
        errors_table.add_row(
            error.kind.value.upper(), escape(_display_path(error.file)), escape(location), escape(error.message)
        )

    console.print(errors_table)


CheckPaths = Annotated[
    Optional[List[Path]],
    typer.Argument(help="Files or directories to search (default: current directory)")
]
DotfilesOption = Annotated[
    bool,
    typer.Option("--dotfiles", help="Also process files starting with a period")
]
ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Configuration file path (default: search for .checkonaut.json)")
]
WorkersOption = Annotated[
    Optional[int],
    typer.Option("--workers", "-j", min=1, help="Worker threads (default: one per CPU)")
]
TimeoutOption = Annotated[
    Optional[float],
    typer.Option("--timeout", help="Per-call time limit in seconds, 0 disables (default: 30)")
]
ReadRootOption = Annotated[
    Optional[Path],
    typer.Option("--read-root", help="Directory ReadJSON paths are resolved against (default: cwd)")
]
FormatOption = Annotated[
    str,
    typer.Option("--format", "-f", help="Output format: table, json (default: table)")
]


@app.command()
def check(
    ctx: typer.Context,
    paths: CheckPaths = None,
    dotfiles: DotfilesOption = False,
    config: ConfigOption = None,
    format: FormatOption = "table",
    workers: WorkersOption = None,
    timeout: TimeoutOption = None,
    read_root: ReadRootOption = None,
) -> None:
    """Check that the given data conforms to the checks found alongside it.

    Data files are [cyan].json[/cyan], [cyan].yaml[/cyan], [cyan].yml[/cyan] and
    [cyan].toml[/cyan] files. Check files are [cyan].lua[/cyan] files defining a
    [bold]Check[/bold] function; [cyan]_test.lua[/cyan] files are ignored.
    """
    _validate_format(format)
    settings = _load_settings(ctx, config, dotfiles, workers, timeout, read_root)

    try:
        found = _searcher(settings).search(paths or [Path(".")])
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    if not found.check_files:
        console.print("[red]Error:[/red] no check files found to run")
        raise typer.Exit(1)
    if not found.data_files:
        console.print("[red]Error:[/red] no data files found to check")
        raise typer.Exit(1)

    aggregator = ResultAggregator()
    documents = load_documents(found.data_files, aggregator)
    CheckEngine(settings).run(found.check_files, documents, aggregator)

    if format == "json":
        typer.echo(jsonlib.dumps(aggregator.to_dict(), indent=2))
        raise typer.Exit(aggregator.exit_code)

    if aggregator.issues:
        console.print("\n[blue]Issues Found:[/blue]")
        issues_table = Table()
        issues_table.add_column("Document", style="cyan")
        issues_table.add_column("Check", style="cyan")
        issues_table.add_column("Severity", style="white")
        issues_table.add_column("Message", style="white")

        multi_object = {d.path for d in documents if len(d.objects) > 1}
        for record in aggregator.issues:
            severity = record.issue.severity.value
            severity_color = "red" if severity == "error" else "yellow"
            document = _display_path(record.document)
            if record.document in multi_object:
                document += f" #{record.object_index}"
            issues_table.add_row(
                escape(document),
                escape(_display_path(record.check)),
                f"[{severity_color}]{severity.upper()}[/{severity_color}]",
                escape(record.issue.message),
            )

        console.print(issues_table)

    _print_errors(aggregator)

    counts = aggregator.count_by_severity()
    if aggregator.succeeded:
        console.print(f"\n[green]No errors found[/green] ({counts['warning']} warning(s))")
    else:
        console.print(
            f"\n[red]Checks failed:[/red] {counts['error']} error(s), {counts['warning']} warning(s), "
            f"{len(aggregator.errors)} execution error(s)"
        )
    raise typer.Exit(aggregator.exit_code)


@app.command()
def test(
    ctx: typer.Context,
    paths: CheckPaths = None,
    dotfiles: DotfilesOption = False,
    config: ConfigOption = None,
    format: FormatOption = "table",
    binding: Annotated[
        Optional[BindingMode],
        typer.Option("--binding", "-b", help="How tests reach their check: explicit (require) or implicit (sibling file)")
    ] = None,
    workers: WorkersOption = None,
    timeout: TimeoutOption = None,
    read_root: ReadRootOption = None,
) -> None:
    """Check that the given checks behave as expected against their test cases.

    Only files ending in [cyan]_test.lua[/cyan] are run. Every global function
    whose name starts with [bold]Test[/bold] is called.
    """
    _validate_format(format)
    settings = _load_settings(ctx, config, dotfiles, workers, timeout, read_root, binding)

    try:
        found = _searcher(settings).search(paths or [Path(".")])
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    aggregator = TestHarness(settings).run(found.test_files)

    if format == "json":
        typer.echo(jsonlib.dumps(aggregator.to_dict(), indent=2))
        raise typer.Exit(aggregator.exit_code)

    failures = [outcome for outcome in aggregator.outcomes if not outcome.passed]
    if failures:
        console.print("\n[blue]Test Failures:[/blue]")
        failures_table = Table()
        failures_table.add_column("File", style="cyan")
        failures_table.add_column("Test", style="white")
        failures_table.add_column("Message", style="white")

        for outcome in failures:
            failures_table.add_row(
                escape(_display_path(outcome.file)), outcome.test_name, escape(outcome.message or "")
            )

        console.print(failures_table)

    _print_errors(aggregator)

    summary = f"{aggregator.tests_passed} passed, {aggregator.tests_failed} failed"
    if aggregator.succeeded:
        console.print(f"\n[green]All tests passed[/green] ({summary})")
    else:
        console.print(f"\n[red]Tests failed:[/red] {summary}, {len(aggregator.errors)} execution error(s)")
    raise typer.Exit(aggregator.exit_code)
