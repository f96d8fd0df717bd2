"""
RuleSense CLI - Static linter for Prometheus alerting and recording rules.

Usage:
    rulesense lint rules.yaml
    rulesense lint --format json --fail-on warning rules/*.yaml
    rulesense checks
    rulesense provenance 'sum(rate(http_requests_total[5m])) by (job)'
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from rulesense import __version__
from rulesense.checker import Linter, Severity, get_registry
from rulesense.config import get_config, load_config_from_file
from rulesense.exceptions import ConfigurationError, PromQLSyntaxError, RuleSenseError
from rulesense.output import OutputFormat, render
from rulesense.promql import parse_expr
from rulesense.provenance import ProvenanceNode, build, can_have_label, exclude_reason

app = typer.Typer(
    name="rulesense",
    help="Static linter for Prometheus alerting and recording rules",
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)

EXIT_PROBLEMS = 1
EXIT_BAD_INPUT = 2

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def configure_logging(level: str = "WARNING") -> None:
    """Send log records to stderr through rich."""
    logging.basicConfig(
        level=level.upper(),
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=error_console, show_path=False)],
        force=True,
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"RuleSense version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """RuleSense - Static linter for Prometheus rules."""
    pass


@app.command()
def lint(
    files: Annotated[
        list[Path],
        typer.Argument(help="Rule files to lint"),
    ],
    output_format: Annotated[
        OutputFormat,
        typer.Option("--format", "-f", help="Output format"),
    ] = OutputFormat.TEXT,
    config_file: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="YAML or JSON configuration file"),
    ] = None,
    check: Annotated[
        Optional[list[str]],
        typer.Option("--check", help="Only run these checks (repeatable)"),
    ] = None,
    exclude: Annotated[
        Optional[list[str]],
        typer.Option("--exclude", help="Skip these checks (repeatable)"),
    ] = None,
    min_severity: Annotated[
        Severity,
        typer.Option("--min-severity", help="Hide problems less severe than this"),
    ] = Severity.INFORMATION,
    fail_on: Annotated[
        Severity,
        typer.Option("--fail-on", help="Exit with code 1 on problems at least this severe"),
    ] = Severity.BUG,
    no_parallel: Annotated[
        bool,
        typer.Option("--no-parallel", help="Lint rules one at a time"),
    ] = False,
    log_level: Annotated[
        str,
        typer.Option("--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)"),
    ] = "WARNING",
) -> None:
    """
    Lint Prometheus rule files.

    Exits with code 1 when a problem at or above --fail-on is found,
    and with code 2 when a file or the configuration can't be read.

    Examples:
        rulesense lint rules.yaml
        rulesense lint --check promql/aggregate --config rulesense.yaml rules/*.yaml
    """
    if log_level.upper() not in LOG_LEVELS:
        error_console.print(f"[red]Error:[/red] Unknown log level {escape(log_level)}")
        raise typer.Exit(code=EXIT_BAD_INPUT)
    configure_logging(log_level)

    try:
        config = load_config_from_file(config_file) if config_file else get_config()
    except ConfigurationError as e:
        error_console.print(f"[red]Error:[/red] {escape(e.message)}")
        raise typer.Exit(code=EXIT_BAD_INPUT)

    linter = Linter(
        include=set(check) if check else None,
        exclude=set(exclude) if exclude else None,
        fail_fast=config.fail_fast,
        parallel=config.parallel and not no_parallel,
        max_workers=config.max_workers,
        config=config,
    )

    try:
        result = linter.lint_files(files)
    except RuleSenseError as e:
        error_console.print(f"[red]Error:[/red] {escape(e.message)}")
        raise typer.Exit(code=EXIT_BAD_INPUT)

    visible = tuple(p for p in result.problems if p.severity.at_least(min_severity))
    shown = result.model_copy(update={"problems": visible})

    if output_format == OutputFormat.JSON:
        typer.echo(render(shown, OutputFormat.JSON))
    else:
        render(shown, OutputFormat.TEXT, console=console)

    if result.has_errors:
        raise typer.Exit(code=EXIT_BAD_INPUT)
    if result.has_problems(fail_on):
        raise typer.Exit(code=EXIT_PROBLEMS)


@app.command()
def checks() -> None:
    """List all registered checks."""
    config = get_config()

    table = Table()
    table.add_column("Check", style="cyan")
    table.add_column("Severity")
    table.add_column("Online")
    table.add_column("Enabled")
    table.add_column("Description")

    registry = get_registry()
    for check_id in sorted(registry.all_ids()):
        check_cls = registry.get(check_id)
        table.add_row(
            check_id,
            check_cls.severity.value,
            "yes" if check_cls.online else "no",
            "yes" if config.is_check_enabled(check_id) else "[dim]no[/dim]",
            check_cls.description,
        )

    console.print(table)


def _describe(node: ProvenanceNode, query: str) -> str:
    parts = [f"[bold]{node.kind.value}[/bold] [cyan]{escape(node.position.fragment(query))}[/cyan]"]
    guaranteed = node.guaranteed
    parts.append(f"guaranteed={escape(str(guaranteed))}")
    if node.included:
        parts.append(f"possible={escape('{' + ', '.join(sorted(node.included)) + '}')}")
    if node.excluded:
        parts.append(f"excluded={escape('{' + ', '.join(sorted(node.excluded)) + '}')}")
    if node.fixed:
        parts.append("[magenta]fixed[/magenta]")
    if node.value is not None:
        parts.append(f"value={node.value:g}")
    if node.dead is not None:
        parts.append(f"[red]dead: {escape(node.dead.reason)}[/red]")
    return " ".join(parts)


def _add_node(tree: Tree, node: ProvenanceNode, query: str) -> None:
    branch = tree.add(_describe(node, query))
    for alternative in node.alternatives:
        branch.add(f"[yellow]or[/yellow] {_describe(alternative, query)}")
    for child in node.children:
        _add_node(branch, child, query)


@app.command()
def provenance(
    query: Annotated[str, typer.Argument(help="PromQL query to analyse")],
    label: Annotated[
        Optional[list[str]],
        typer.Option("--label", "-l", help="Explain whether the result can have this label"),
    ] = None,
) -> None:
    """
    Print the provenance tree of a PromQL query.

    Shows, for every sub-expression, which labels are guaranteed or
    excluded and whether it can return anything at all.
    """
    try:
        expr = parse_expr(query)
    except PromQLSyntaxError as e:
        error_console.print(f"[red]Syntax error:[/red] {escape(e.message)}")
        if e.pos.fragment(query):
            error_console.print(f"  [dim]at {escape(e.pos.fragment(query))} ({e.pos})[/dim]")
        raise typer.Exit(code=EXIT_BAD_INPUT)

    node = build(expr, query)
    tree = Tree(f"[bold]{escape(str(expr))}[/bold]")
    _add_node(tree, node, query)
    console.print(tree)

    for name in label or []:
        if can_have_label(node, name):
            console.print(f"[green]`{escape(name)}` can be present[/green]")
            continue
        exclusion = exclude_reason(node, name)
        console.print(f"[red]`{escape(name)}` can't be present[/red]")
        if exclusion is not None:
            console.print(f"  {escape(exclusion.reason)}")
            console.print(f"  [dim]at {escape(exclusion.fragment.fragment(query))}[/dim]")


if __name__ == "__main__":
    app()
