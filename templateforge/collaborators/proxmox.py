"""Proxmox VE resource control via the ``qm`` and ``pvesm`` command-line tools."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path

from templateforge.collaborators.base import CollaboratorError, VmSpec
from templateforge.collaborators.runner import CommandRunner

logger = logging.getLogger(__name__)

_UNUSED_KEY = re.compile(r"^unused(\d+)$")


def find_imported_volume(vm_config: dict[str, object], storage_pool: str) -> str | None:
    """Pick the volume ``qm importdisk`` just attached as ``unusedN``.

    Only volumes on *storage_pool* count; the highest index wins since it is
    the most recent import.
    """
    candidates: list[tuple[int, str]] = []
    for key, value in vm_config.items():
        match = _UNUSED_KEY.match(key)
        if match and isinstance(value, str) and value.startswith(storage_pool + ":"):
            candidates.append((int(match.group(1)), value))
    if not candidates:
        return None
    return max(candidates)[1]


class ProxmoxResourceControl:
    """``ResourceControl`` backed by ``qm``/``pvesm`` on the local node.

    Parameters
    ----------
    runner:
        Command runner used for every invocation.
    import_timeout:
        Deadline for ``qm importdisk``, which copies the whole image.
    """

    def __init__(self, runner: CommandRunner, *, import_timeout: float | None = None) -> None:
        self._runner = runner
        self._import_timeout = import_timeout

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def exists(self, resource_id: int) -> bool:
        result = self._runner.run(["qm", "config", str(resource_id)], check=False)
        return result.returncode == 0

    def storage_pool_exists(self, pool: str) -> bool:
        result = self._runner.run(["pvesm", "status"], description="List storage pools")
        names = [
            line.split()[0]
            for line in result.stdout.splitlines()[1:]
            if line.strip()
        ]
        return pool in names

    def vm_config(self, resource_id: int) -> dict[str, object]:
        result = self._runner.run(
            ["qm", "config", str(resource_id), "--format", "json"]
        )
        try:
            data = json.loads(result.stdout)
        except ValueError as exc:
            raise CollaboratorError(
                f"qm config {resource_id} returned invalid JSON: {exc}"
            ) from exc
        if not isinstance(data, dict):
            raise CollaboratorError(f"qm config {resource_id} returned {type(data).__name__}")
        return data

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def destroy(self, resource_id: int) -> None:
        if not self.exists(resource_id):
            logger.debug("VM %s does not exist; nothing to destroy.", resource_id)
            return
        self._runner.run(["qm", "destroy", str(resource_id), "--purge"])

    def create(self, resource_id: int, spec: VmSpec) -> None:
        self._runner.run(
            [
                "qm", "create", str(resource_id),
                "--name", spec.name,
                "--memory", str(spec.memory),
                "--cores", str(spec.cores),
                "--net0", spec.net0,
            ]
        )

    def import_disk(self, resource_id: int, image: Path, storage_pool: str) -> str:
        self._runner.run(
            ["qm", "importdisk", str(resource_id), str(image), storage_pool],
            timeout=self._import_timeout,
        )
        volume = find_imported_volume(self.vm_config(resource_id), storage_pool)
        if volume is None:
            raise CollaboratorError(
                f"Could not find imported disk for VM {resource_id} on storage {storage_pool}"
            )
        return volume

    def configure(self, resource_id: int, option: str, value: str) -> None:
        self._runner.run(["qm", "set", str(resource_id), f"--{option}", value])

    def resize(self, resource_id: int, disk: str, size: str) -> None:
        self._runner.run(["qm", "resize", str(resource_id), disk, size])

    def freeze_template(self, resource_id: int) -> None:
        self._runner.run(["qm", "template", str(resource_id)])
