# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.10
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/fsconverge/system/display.py

# Third-party imports
import humanize
from rich.console import Console
from rich.table import Table

# Local imports
from fsconverge.core.reconciler import ReconcileReport
from fsconverge.storage.fileserver import SourceDescription


def report_to_table(report: ReconcileReport) -> Table:
    """Convert a reconcile report to a rich Table for display.

    Changes come first, then failures, then skipped subtrees.
    """
    title = "Changes that would be made" if report.noop else "Changes"
    table = Table(title=title)
    table.add_column("Status")
    table.add_column("Path")
    table.add_column("Attribute")
    table.add_column("Detail")

    for change in report.changes:
        status = "[yellow]would change[/yellow]" if report.noop else "[green]changed[/green]"
        detail = change.action + (f" {change.detail}" if change.detail else "")
        table.add_row(status, change.path, change.attribute, detail)

    for failure in report.failures:
        table.add_row("[red]failed[/red]", failure.path, failure.error, failure.message)

    for skip in report.skipped:
        table.add_row("[dim]skipped[/dim]", skip.path, "", skip.reason)

    return table


def display_report(console: Console, report: ReconcileReport, quiet: bool = False) -> None:
    if report.in_sync and not report.skipped:
        if not quiet:
            console.print(f"[green]✓[/green] {report.entities} entities in sync")
        return
    if not quiet or report.failures:
        console.print(report_to_table(report))
    if not quiet:
        console.print(f"{len(report.changes)} changes, {len(report.failures)} failures, "
                      f"{len(report.skipped)} skipped")


def listing_to_table(listing: str) -> Table:
    table = Table()
    table.add_column("Path")
    table.add_column("Kind")
    for line in listing.splitlines():
        if not line:
            continue
        entry, _, kind = line.partition("\t")
        table.add_row(entry, kind)
    return table


def display_description(console: Console, source: str, description: SourceDescription) -> None:
    console.print(f"[bold]{source}[/bold]")
    console.print(f"  kind:     {description.kind}")
    console.print(f"  mode:     {oct(description.mode)}")
    console.print(f"  size:     {humanize.naturalsize(description.size)}")
    if description.checksum:
        console.print(f"  checksum: {description.checksum}")
    if description.target:
        console.print(f"  target:   {description.target}")


# done.
