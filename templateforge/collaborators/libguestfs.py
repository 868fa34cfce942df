"""Offline image preparation with libguestfs (``virt-sysprep``, ``virt-customize``)."""

from __future__ import annotations

from pathlib import Path

from templateforge.collaborators.runner import CommandRunner


class LibguestfsImageTool:
    """``ImageTool`` backed by the libguestfs command-line tools."""

    def __init__(self, runner: CommandRunner) -> None:
        self._runner = runner

    def sanitize(self, image: Path, operations: str) -> None:
        self._runner.run(
            ["virt-sysprep", "-a", str(image), "--operations", operations]
        )

    def customize(self, image: Path, packages: tuple[str, ...], timezone: str) -> None:
        argv = ["virt-customize", "-a", str(image)]
        if packages:
            argv += ["--install", ",".join(packages)]
        argv += [
            "--run-command", f"echo {timezone} > /etc/timezone || true",
            "--run-command", f"ln -sf /usr/share/zoneinfo/{timezone} /etc/localtime",
        ]
        self._runner.run(argv)
