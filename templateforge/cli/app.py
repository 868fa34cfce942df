"""Main Typer application: imports and registers all CLI commands.

Entry point: ``templateforge`` (configured via pyproject.toml scripts).

Commands: build, validate, list.
"""

from __future__ import annotations

import typer

from templateforge.cli.commands.build import build_cmd
from templateforge.cli.commands.list_cmd import list_cmd
from templateforge.cli.commands.validate import validate_cmd

app = typer.Typer(
    name="templateforge",
    help="templateforge: build immutable Proxmox VE templates from cloud images.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="build", help="Build VM templates from the image catalog.")(build_cmd)
app.command(name="validate", help="Validate settings and the image catalog.")(validate_cmd)
app.command(name="list", help="List catalog images and their last builds.")(list_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
