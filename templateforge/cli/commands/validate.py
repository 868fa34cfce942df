"""``templateforge validate``: check settings and the image catalog, build nothing."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape

from templateforge.cli.commands import common
from templateforge.core.catalog import CatalogValidationError, load_catalog
from templateforge.core.config_guard import ConfigurationError, enforce_settings

console = Console()


def validate_cmd(
    catalog_path: Optional[Path] = typer.Option(
        None,
        "--catalog",
        "-c",
        help="Path to the image catalog (images.json).",
    ),
    catalog_only: bool = typer.Option(
        False,
        "--catalog-only",
        help="Skip the settings check and validate only the catalog.",
    ),
) -> None:
    """Validate configuration and the image catalog, then exit.

    Every problem found is listed; the exit code is 1 if there was any.
    """
    try:
        settings = common.load_settings(catalog_path=catalog_path)
        if not catalog_only:
            enforce_settings(settings)
    except ConfigurationError as exc:
        console.print(f"[bold red]ERROR:[/bold red] {escape(str(exc))}", highlight=False)
        raise typer.Exit(code=1)

    try:
        catalog = load_catalog(settings.catalog_path)
    except CatalogValidationError as exc:
        console.print(
            f"[bold red]Image catalog {escape(str(settings.catalog_path))} is invalid:[/bold red]"
        )
        for violation in exc.violations:
            console.print(f"  [red]- {escape(str(violation))}[/red]", highlight=False)
        raise typer.Exit(code=1)

    console.print(
        f"[bold green]Validation completed successfully[/bold green] "
        f"({len(catalog)} image(s) in {escape(str(settings.catalog_path))})."
    )
