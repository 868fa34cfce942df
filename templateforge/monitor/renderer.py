"""Rich terminal renderer for build results and the catalog listing.

Color scheme
------------
- green     : BUILT
- cyan      : SKIPPED (unchanged)
- yellow    : DRY_RUN
- bold red  : FAILED
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from templateforge.core.catalog import Catalog
from templateforge.models.reports import BuildOutcome, RunReport
from templateforge.models.state import StateRecord

# ---------------------------------------------------------------------------
# Outcome -> Rich style mapping
# ---------------------------------------------------------------------------

_OUTCOME_STYLES: dict[BuildOutcome, str] = {
    BuildOutcome.BUILT: "bold green",
    BuildOutcome.SKIPPED: "cyan",
    BuildOutcome.DRY_RUN: "yellow",
    BuildOutcome.FAILED: "bold red",
}

_OUTCOME_LABELS: dict[BuildOutcome, str] = {
    BuildOutcome.BUILT: "[green]BUILT[/green]",
    BuildOutcome.SKIPPED: "[cyan]UNCHANGED, SKIPPED[/cyan]",
    BuildOutcome.DRY_RUN: "[yellow]DRY-RUN[/yellow]",
    BuildOutcome.FAILED: "[bold red]FAILED[/bold red]",
}


class ReportRenderer:
    """Renders ``RunReport`` and catalog listings as Rich output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Run report
    # ------------------------------------------------------------------

    def render_report(self, report: RunReport) -> Panel:
        """Render a RunReport as a Panel with one row per artifact."""
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Image", min_width=20)
        table.add_column("VM ID", justify="right", width=8)
        table.add_column("Result", justify="center", min_width=14)
        table.add_column("Details", min_width=20)

        for a in report.artifacts:
            style = _OUTCOME_STYLES.get(a.outcome, "")
            if a.outcome == BuildOutcome.FAILED:
                details = f"[red]step {a.failed_step}: {escape(a.error or '')}[/red]"
            elif a.signature:
                details = f"[dim]signature {a.signature[:12]}[/dim]"
            else:
                details = "[dim]-[/dim]"
            table.add_row(
                f"[{style}]{escape(a.label)}[/{style}]",
                str(a.resource_id),
                _OUTCOME_LABELS.get(a.outcome, a.outcome.value),
                details,
            )

        summary_parts = [
            f"[bold]Processed:[/bold] {len(report.artifacts)}",
            f"[bold]Failed:[/bold] {len(report.failed)}",
        ]
        if report.unknown_labels:
            summary_parts.append(
                f"[yellow][bold]Unknown:[/bold] {escape(', '.join(report.unknown_labels))}[/yellow]"
            )
        if report.halted:
            summary_parts.append("[bold red]Halted after first failure[/bold red]")
        if report.log_file is not None:
            summary_parts.append(f"[bold]Log:[/bold] {escape(str(report.log_file))}")

        title = "Dry-run Summary" if report.dry_run else "Template Build Summary"
        border = "red" if report.failed else "green"
        return Panel(
            Group(table, Text(""), Text.from_markup("  |  ".join(summary_parts))),
            title=f"[bold]{title}[/bold]",
            border_style=border,
            padding=(1, 2),
        )

    def print_report(self, report: RunReport) -> None:
        self.console.print(self.render_report(report))

    # ------------------------------------------------------------------
    # Catalog listing
    # ------------------------------------------------------------------

    def render_catalog(
        self, catalog: Catalog, records: dict[int, StateRecord] | None = None
    ) -> Table:
        """Render the catalog with the last recorded build per entry."""
        records = records or {}
        table = Table(title="Image catalog", header_style="bold cyan")
        table.add_column("#", style="dim", justify="right")
        table.add_column("Label", style="bold", no_wrap=True)
        table.add_column("VM ID", justify="right")
        table.add_column("Name")
        table.add_column("Packages")
        table.add_column("Checksum", justify="center")
        table.add_column("Last build")

        for i, d in enumerate(catalog, start=1):
            record = records.get(d.numeric_resource_id)
            last = (
                record.recorded_at.strftime("%Y-%m-%d %H:%M:%S UTC")
                if record
                else "[dim]never[/dim]"
            )
            checksum = (
                f"[green]{d.checksum_spec.algorithm}[/green]"
                if d.checksum_spec
                else "[yellow]none[/yellow]"
            )
            table.add_row(
                str(i),
                escape(d.display_label),
                str(d.numeric_resource_id),
                escape(d.target_name),
                escape(", ".join(d.package_set)) or "[dim]-[/dim]",
                checksum,
                last,
            )
        return table

    def print_catalog(
        self, catalog: Catalog, records: dict[int, StateRecord] | None = None
    ) -> None:
        self.console.print(self.render_catalog(catalog, records))
