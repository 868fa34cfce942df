"""templateforge CLI: Typer-based command-line interface.

Provides the ``templateforge`` command with subcommands for building
templates, validating the catalog and listing catalog state.

All output uses Rich for formatted terminal display.
"""
