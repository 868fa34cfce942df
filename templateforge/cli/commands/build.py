"""``templateforge build``: build (or refresh) VM templates from the catalog.

Resolves settings and credentials, validates the catalog, selects images
(interactively unless ``--all`` or labels are given), then runs the build
pipeline for each selected image in catalog or request order.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape

from templateforge.cli.commands import common
from templateforge.core.catalog import CatalogValidationError, load_catalog
from templateforge.core.config_guard import (
    ConfigurationError,
    enforce_settings,
    resolve_credentials,
)
from templateforge.core.orchestrator import Orchestrator
from templateforge.core.run_log import log_summary, setup_run_logging
from templateforge.core.selection import (
    SelectionError,
    prompt_selection,
    resolve_selection,
)
from templateforge.monitor.renderer import ReportRenderer

console = Console()
logger = logging.getLogger("templateforge.cli")


def build_cmd(
    labels: Optional[list[str]] = typer.Argument(
        None,
        help="Catalog labels to build (use ALL for every image). Omit to choose interactively.",
    ),
    build_all: bool = typer.Option(
        False,
        "--all",
        "--non-interactive",
        help="Build all templates without interactive selection.",
    ),
    no_resize_wait: bool = typer.Option(
        False,
        "--no-resize-wait",
        help="Disable the waits before/after disk resize.",
    ),
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="More console detail: -v for step descriptions, -vv for command arguments.",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Print all debug output to the console (same as -vv).",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Show what would happen without making changes to the host.",
    ),
    validate: bool = typer.Option(
        False,
        "--validate",
        help="Validate configuration and image catalog, then exit.",
    ),
    catalog_path: Optional[Path] = typer.Option(
        None,
        "--catalog",
        "-c",
        help="Path to the image catalog (images.json).",
    ),
    fail_fast: bool = typer.Option(
        False,
        "--fail-fast",
        help="Stop at the first failed image instead of continuing with the rest.",
    ),
    skip_unchanged: Optional[bool] = typer.Option(
        None,
        "--skip-unchanged/--no-skip-unchanged",
        help="Skip images whose source and configuration are unchanged since the last build.",
    ),
) -> None:
    """Build VM templates from the image catalog.

    Exit code 0 when every selected image was built, skipped as unchanged,
    or simulated; 1 on configuration or catalog errors or any failed image.
    """
    verbosity = 3 if debug else min(3, 1 + verbose)

    try:
        settings = common.load_settings(
            catalog_path=catalog_path,
            resize_wait_enabled=False if no_resize_wait else None,
            skip_if_base_unchanged=skip_unchanged,
        )
        enforce_settings(settings)
    except ConfigurationError as exc:
        console.print(f"[bold red]ERROR:[/bold red] {escape(str(exc))}", highlight=False)
        raise typer.Exit(code=1)

    log_file = setup_run_logging(settings.log_dir, verbosity)
    if dry_run:
        log_summary(logger, "Mode: dry-run (no changes will be applied).")
    if validate:
        log_summary(logger, "Mode: validation only.")

    try:
        credentials = resolve_credentials(settings)
        catalog = load_catalog(settings.catalog_path)
    except ConfigurationError as exc:
        logger.critical("ERROR: %s", exc)
        raise typer.Exit(code=1)
    except CatalogValidationError as exc:
        for violation in exc.violations:
            logger.error("ERROR: %s", violation)
        logger.error(
            "ERROR: Image catalog %s is invalid; nothing was built. See log file: %s",
            settings.catalog_path,
            log_file,
        )
        raise typer.Exit(code=1)

    if validate:
        log_summary(logger, "Validation completed successfully.")
        raise typer.Exit(code=0)

    try:
        log_summary(logger, "Checking prerequisites...")
        resources, images, fetcher = common.default_collaborators(settings)
        orchestrator = Orchestrator(
            settings,
            credentials,
            resources=resources,
            images=images,
            fetcher=fetcher,
            dry_run=dry_run,
            fail_fast=fail_fast,
            log_file=log_file,
        )
        orchestrator.check_storage_pool()
    except ConfigurationError as exc:
        logger.critical("ERROR: %s", exc)
        raise typer.Exit(code=1)

    try:
        if build_all:
            log_summary(logger, "Non-interactive mode: building all known images.")
            selection = resolve_selection(catalog, build_all=True)
        else:
            requested = list(labels) if labels else prompt_selection(catalog, console)
            selection = resolve_selection(catalog, requested)
            if selection.build_all:
                log_summary(logger, "'ALL' selected; all known images will be built.")
    except SelectionError as exc:
        logger.error("%s", exc)
        raise typer.Exit(code=1)

    if not selection.labels:
        logger.error("No known images selected; nothing to build.")
        raise typer.Exit(code=1)

    try:
        report = orchestrator.build(
            catalog, selection.labels, unknown_labels=selection.unknown
        )
    except KeyboardInterrupt:
        logger.error("Interrupted. See log file: %s", log_file)
        raise typer.Exit(code=130)

    ReportRenderer(console=console).print_report(report)
    raise typer.Exit(code=report.exit_code)
