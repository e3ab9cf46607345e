# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.10
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/fsconverge/cli/main.py

"""
fsconverge command line.

    fsconverge apply DECLARATIONS.yml [--noop] [--json]
    fsconverge list-source SOURCE [--recurse N] [--links MODE] [--ignore GLOB]
    fsconverge describe-source SOURCE [--links MODE] [--checksum TYPE]

Exit codes: 0 success, 1 error, 2 some entities failed.
"""

# Standard library imports
from importlib.metadata import version
from pathlib import Path
from typing import Any, Optional

# Third-party imports
import orjson
import typer
from rich.console import Console

# Local imports
from fsconverge.config.manager import EngineConfig, load_declarations, load_merged_engine_config
from fsconverge.core.entity import EntityRegistry
from fsconverge.core.parameters import parse_links, parse_recurse
from fsconverge.core.reconciler import Failure, ReconcileReport, Reconciler
from fsconverge.storage.sources import SourceResolver
from fsconverge.system.display import display_description, display_report, listing_to_table
from fsconverge.system.exceptions import FSConvergeError
from fsconverge.system.logging_setup import setup_logging

EXIT_PARTIAL_FAILURE = 2

app = typer.Typer(
    help="""fsconverge - converge files, directories and links to their declared state

[bold green]Operations:[/bold green] apply
[bold blue]Sources:[/bold blue] list-source, describe-source
""",
    rich_markup_mode="rich"
)

console = Console()


def handle_operation_error(operation: str, error: Exception) -> None:
    """Print an error consistently and exit 1."""
    console.print(f"[red]✗[/red] Error {operation}: {error}")
    raise typer.Exit(1)


def print_json(data: Any) -> None:
    typer.echo(orjson.dumps(data, option=orjson.OPT_INDENT_2).decode())


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        try:
            pkg_version = version("fsconverge")
        except Exception as e:
            handle_operation_error("retrieving version", e)
        console.print(f"fsconverge version {pkg_version}")
        raise typer.Exit()


def load_config() -> EngineConfig:
    try:
        return load_merged_engine_config()
    except FSConvergeError as e:
        handle_operation_error("loading config", e)


def declare_all(registry: EntityRegistry, declarations: list[dict[str, Any]]) -> list[Failure]:
    """Declare every entity; a bad declaration fails only its own entity."""
    failures = []
    for raw in declarations:
        try:
            registry.declare(**raw)
        except FSConvergeError as e:
            path = e.path or str(raw.get("path"))
            failures.append(Failure(path=path, error=type(e).__name__, message=str(e)))
    return failures


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None, "--version", callback=version_callback,
        help="Show version and exit"
    ),
) -> None:
    """fsconverge - declarative file reconciliation."""
    pass


@app.command()
def apply(
    declarations: Path = typer.Argument(..., help="YAML file with a 'files:' list of declarations"),
    noop: bool = typer.Option(False, "--noop", "-n", help="Report what would change without changing it"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress output"),
    to_json: bool = typer.Option(False, "--json", help="Output results as JSON")
) -> None:
    """[bold green]Operations[/bold green]: Bring the declared files to their desired state."""
    setup_logging(debug)
    config = load_config()
    try:
        raw_declarations = load_declarations(declarations)
    except FSConvergeError as e:
        handle_operation_error("loading declarations", e)

    registry = EntityRegistry(config)
    declaration_failures = declare_all(registry, raw_declarations)

    resolver = SourceResolver(config)
    try:
        report = Reconciler(registry, config, resolver=resolver, noop=noop).run()
    except FSConvergeError as e:
        handle_operation_error("reconciling", e)
    finally:
        resolver.close()
    report.failures[:0] = declaration_failures

    if to_json:
        print_json(report.model_dump())
    else:
        display_report(console, report, quiet=quiet)

    if report.failures:
        raise typer.Exit(EXIT_PARTIAL_FAILURE)


@app.command(name="list-source")
def list_source(
    source: str = typer.Argument(..., help="Source path or URI (file://, fsc://)"),
    recurse: str = typer.Option("false", "--recurse", "-r", help="Levels to list: a number, true or inf"),
    links: str = typer.Option("ignore", "--links", help="follow, manage or ignore"),
    ignore: Optional[list[str]] = typer.Option(None, "--ignore", help="Glob of names to skip (repeatable)"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
    table: bool = typer.Option(False, "--table", help="Show the listing as a table"),
    to_json: bool = typer.Option(False, "--json", help="Output results as JSON")
) -> None:
    """[bold blue]Sources[/bold blue]: Print a source listing, one 'path<TAB>kind' record per line."""
    setup_logging(debug)
    resolver = SourceResolver(load_config())
    try:
        depth = parse_recurse(recurse)
        handle = resolver.resolve(source)
        listing = handle.client.list(handle.path, parse_links(links), depth or False, ignore or [])
    except FSConvergeError as e:
        handle_operation_error("listing source", e)
    finally:
        resolver.close()

    if to_json:
        records = [dict(zip(("path", "kind"), line.split("\t", 1))) for line in listing.splitlines() if line]
        print_json(records)
    elif table:
        console.print(listing_to_table(listing))
    elif listing:
        typer.echo(listing)


@app.command(name="describe-source")
def describe_source(
    source: str = typer.Argument(..., help="Source path or URI (file://, fsc://)"),
    links: str = typer.Option("ignore", "--links", help="follow, manage or ignore"),
    checksum: str = typer.Option("md5", "--checksum", help="md5, md5lite, sha256 or xxh3"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
    to_json: bool = typer.Option(False, "--json", help="Output results as JSON")
) -> None:
    """[bold blue]Sources[/bold blue]: Show kind, mode, size and checksum of a source."""
    setup_logging(debug)
    resolver = SourceResolver(load_config())
    try:
        handle = resolver.resolve(source)
        description = handle.client.describe(handle.path, parse_links(links), checksum)
    except (FSConvergeError, ValueError) as e:
        handle_operation_error("describing source", e)
    finally:
        resolver.close()

    if description is None:
        console.print(f"[red]✗[/red] {source} does not exist")
        raise typer.Exit(1)
    if to_json:
        print_json(description.model_dump())
    else:
        display_description(console, source, description)


def cli_main() -> None:
    app()


if __name__ == "__main__":
    cli_main()
