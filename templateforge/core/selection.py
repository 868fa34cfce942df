"""Selection interface: which catalog entries to build, in what order."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence

from pydantic import BaseModel, ConfigDict
from rich.console import Console
from rich.markup import escape
from rich.prompt import Prompt
from rich.table import Table

from templateforge.core.catalog import Catalog

logger = logging.getLogger(__name__)

ALL_SENTINEL = "ALL"


class SelectionError(RuntimeError):
    """Raised when an interactive selection yields nothing to build."""


class Selection(BaseModel):
    """Resolved, ordered labels plus the requested labels that were unknown."""

    model_config = ConfigDict(frozen=True)

    labels: list[str]
    unknown: list[str] = []
    build_all: bool = False


def resolve_selection(
    catalog: Catalog,
    requested: Sequence[str] = (),
    *,
    build_all: bool = False,
) -> Selection:
    """Turn the operator's request into an ordered list of catalog labels.

    ``build_all`` or the ``ALL`` sentinel anywhere in *requested* selects
    every entry in declared order. Otherwise labels are taken in the order
    given, repeated labels once; unknown labels are logged and skipped.
    """
    if build_all or ALL_SENTINEL in requested:
        return Selection(labels=catalog.labels, build_all=True)

    labels: list[str] = []
    unknown: list[str] = []
    for label in requested:
        if label not in catalog:
            logger.warning("Unknown selection '%s', skipping.", label)
            unknown.append(label)
        elif label not in labels:
            labels.append(label)
    return Selection(labels=labels, unknown=unknown)


def prompt_selection(
    catalog: Catalog,
    console: Console,
    *,
    ask: Callable[..., str] = Prompt.ask,
) -> list[str]:
    """Show the catalog and ask which entries to build.

    The operator answers with row numbers and/or labels separated by commas
    (``0`` or ``ALL`` selects everything). Row numbers are mapped to labels;
    anything else is passed through so ``resolve_selection`` can warn about
    it.
    """
    options = [ALL_SENTINEL, *catalog.labels]

    table = Table(title="Base images")
    table.add_column("#", justify="right", style="cyan")
    table.add_column("Label", style="bold")
    table.add_column("VM ID", justify="right")
    table.add_column("Name")
    table.add_row("0", ALL_SENTINEL, "", "[dim]every image[/dim]")
    for i, d in enumerate(catalog, start=1):
        table.add_row(
            str(i),
            escape(d.display_label),
            str(d.numeric_resource_id),
            escape(d.target_name),
        )
    console.print(table)

    answer = ask("Select images (numbers or labels, comma-separated)", console=console)
    choices: list[str] = []
    for token in re.split(r"\s*,\s*", (answer or "").strip()):
        if not token:
            continue
        if token.isdigit() and int(token) < len(options):
            choices.append(options[int(token)])
        else:
            choices.append(token)

    if not choices:
        raise SelectionError("No selection made.")
    return choices
