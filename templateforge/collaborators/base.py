"""Collaborator capability protocols consumed by the build pipeline.

The pipeline never shells out or opens sockets itself. It talks to three
narrow capabilities:

1. ``ResourceControl``: the virtualization control plane (VM lifecycle,
   disk import, template conversion), keyed by numeric resource ID.
2. ``ImageTool``: offline sanitize/customize of a local disk image.
3. ``Fetcher``: retrieve a remote image into the local cache, skipping the
   transfer when the cache is already current.

Default implementations live in ``proxmox``, ``libguestfs`` and ``fetch``;
tests substitute recording fakes.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict


class CollaboratorError(RuntimeError):
    """Raised when an external call fails. Fatal for the current artifact."""


class CollaboratorTimeoutError(CollaboratorError):
    """Raised when an external call exceeds its deadline."""


class VmSpec(BaseModel):
    """Compute parameters for a new VM shell."""

    model_config = ConfigDict(frozen=True)

    name: str
    memory: int  # MiB
    cores: int
    net_bridge: str

    @property
    def net0(self) -> str:
        return f"virtio,bridge={self.net_bridge}"


class FetchResult(BaseModel):
    """Outcome of a fetch: where the file is and whether bytes moved."""

    model_config = ConfigDict(frozen=True)

    path: Path
    downloaded: bool


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class ResourceControl(Protocol):
    """Protocol for the VM control plane."""

    def exists(self, resource_id: int) -> bool:
        """Return ``True`` if a VM or template with this ID exists."""
        ...

    def storage_pool_exists(self, pool: str) -> bool:
        """Return ``True`` if *pool* is a storage pool on this node."""
        ...

    def destroy(self, resource_id: int) -> None:
        """Destroy and purge the resource. Absence is not an error."""
        ...

    def create(self, resource_id: int, spec: VmSpec) -> None:
        """Create an empty VM shell."""
        ...

    def import_disk(self, resource_id: int, image: Path, storage_pool: str) -> str:
        """Import *image* into *storage_pool*; return the new volume ID."""
        ...

    def configure(self, resource_id: int, option: str, value: str) -> None:
        """Set a single VM option (``qm set --<option> <value>``)."""
        ...

    def resize(self, resource_id: int, disk: str, size: str) -> None:
        """Grow *disk* to *size*."""
        ...

    def freeze_template(self, resource_id: int) -> None:
        """Convert the VM into an immutable template."""
        ...


@runtime_checkable
class ImageTool(Protocol):
    """Protocol for offline disk-image preparation."""

    def sanitize(self, image: Path, operations: str) -> None:
        """Strip machine-unique state from *image*."""
        ...

    def customize(self, image: Path, packages: tuple[str, ...], timezone: str) -> None:
        """Install *packages* and apply *timezone* inside *image*."""
        ...


@runtime_checkable
class Fetcher(Protocol):
    """Protocol for the image download mechanism."""

    def fetch(self, url: str, dest: Path) -> FetchResult:
        """Ensure *dest* holds the current contents of *url*."""
        ...
