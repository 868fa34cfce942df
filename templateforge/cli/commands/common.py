"""Helpers shared by the CLI commands: settings resolution and collaborator wiring."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import ValidationError

from templateforge.collaborators.base import Fetcher, ImageTool, ResourceControl
from templateforge.collaborators.fetch import HttpFetcher
from templateforge.collaborators.libguestfs import LibguestfsImageTool
from templateforge.collaborators.proxmox import ProxmoxResourceControl
from templateforge.collaborators.runner import CommandRunner
from templateforge.config import BuilderSettings
from templateforge.core.config_guard import ConfigurationError, check_binaries

REQUIRED_BINARIES: list[str] = ["qm", "pvesm", "virt-sysprep", "virt-customize"]


def load_settings(**overrides: Any) -> BuilderSettings:
    """Read settings from .env/environment and apply CLI overrides once.

    ``None`` overrides are ignored. Raises ``ConfigurationError`` when the
    environment holds values of the wrong type.
    """
    try:
        settings = BuilderSettings()
    except ValidationError as exc:
        problems = "\n".join(
            f"  - {'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in exc.errors()
        )
        raise ConfigurationError(f"Invalid settings:\n{problems}") from exc

    update = {k: v for k, v in overrides.items() if v is not None}
    if "catalog_path" in update:
        update["catalog_path"] = Path(update["catalog_path"])
    return settings.model_copy(update=update) if update else settings


def default_collaborators(
    settings: BuilderSettings,
) -> tuple[ResourceControl, ImageTool, Fetcher]:
    """Build the Proxmox/libguestfs/HTTP collaborators for a real host."""
    check_binaries(REQUIRED_BINARIES)
    runner = CommandRunner(timeout=settings.command_timeout)
    resources = ProxmoxResourceControl(runner, import_timeout=settings.import_timeout)
    images = LibguestfsImageTool(runner)
    fetcher = HttpFetcher(timeout=settings.fetch_timeout)
    return resources, images, fetcher
