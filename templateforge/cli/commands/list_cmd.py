"""``templateforge list``: show the image catalog and the last recorded builds."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape

from templateforge.cli.commands import common
from templateforge.core.catalog import CatalogValidationError, load_catalog
from templateforge.core.config_guard import ConfigurationError
from templateforge.core.state_store import StateStore
from templateforge.monitor.renderer import ReportRenderer

console = Console()


def list_cmd(
    catalog_path: Optional[Path] = typer.Option(
        None,
        "--catalog",
        "-c",
        help="Path to the image catalog (images.json).",
    ),
) -> None:
    """List catalog entries with their last successful build time."""
    try:
        settings = common.load_settings(catalog_path=catalog_path)
        catalog = load_catalog(settings.catalog_path)
    except ConfigurationError as exc:
        console.print(f"[bold red]ERROR:[/bold red] {escape(str(exc))}", highlight=False)
        raise typer.Exit(code=1)
    except CatalogValidationError as exc:
        console.print(f"[bold red]ERROR:[/bold red] {escape(str(exc))}", highlight=False)
        raise typer.Exit(code=1)

    records = {}
    if settings.download_dir is not None and settings.state_dir.is_dir():
        records = {r.resource_id: r for r in StateStore(settings.state_dir).list_records()}

    ReportRenderer(console=console).print_catalog(catalog, records)
