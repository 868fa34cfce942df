"""Shared test fixtures for templateforge."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from templateforge.collaborators.base import FetchResult, VmSpec
from templateforge.config import BuilderSettings
from templateforge.core.catalog import Catalog, parse_catalog
from templateforge.core.config_guard import Credentials, resolve_credentials
from templateforge.core.orchestrator import Orchestrator
from templateforge.core.run_log import ROOT_LOGGER
from templateforge.core.state_store import StateStore

IMAGE_BYTES = b"qcow2 base image bytes"
IMAGE_MTIME = 1_700_000_000

RESOURCE_MUTATIONS = frozenset(
    {"destroy", "create", "import_disk", "configure", "resize", "freeze_template"}
)


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


class FakeResourceControl:
    """In-memory ResourceControl that records every call."""

    def __init__(
        self,
        existing: set[int] | None = None,
        pools: set[str] | None = None,
        fail_on: dict[tuple[str, int], Exception] | None = None,
    ) -> None:
        self.existing = set(existing or ())
        self.pools = set(pools if pools is not None else {"local-lvm"})
        self.fail_on = dict(fail_on or {})
        self.calls: list[tuple[Any, ...]] = []

    @property
    def mutating_calls(self) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if c[0] in RESOURCE_MUTATIONS]

    def ops(self, resource_id: int | None = None) -> list[str]:
        return [
            c[0]
            for c in self.mutating_calls
            if resource_id is None or c[1] == resource_id
        ]

    def _record(self, op: str, resource_id: int, *args: Any) -> None:
        self.calls.append((op, resource_id, *args))
        failure = self.fail_on.get((op, resource_id))
        if failure is not None:
            raise failure

    def exists(self, resource_id: int) -> bool:
        self.calls.append(("exists", resource_id))
        return resource_id in self.existing

    def storage_pool_exists(self, pool: str) -> bool:
        self.calls.append(("storage_pool_exists", pool))
        return pool in self.pools

    def destroy(self, resource_id: int) -> None:
        self._record("destroy", resource_id)
        self.existing.discard(resource_id)

    def create(self, resource_id: int, spec: VmSpec) -> None:
        self._record("create", resource_id, spec)
        self.existing.add(resource_id)

    def import_disk(self, resource_id: int, image: Path, storage_pool: str) -> str:
        self._record("import_disk", resource_id, Path(image), storage_pool)
        return f"{storage_pool}:vm-{resource_id}-disk-0"

    def configure(self, resource_id: int, option: str, value: str) -> None:
        self._record("configure", resource_id, option, value)

    def resize(self, resource_id: int, disk: str, size: str) -> None:
        self._record("resize", resource_id, disk, size)

    def freeze_template(self, resource_id: int) -> None:
        self._record("freeze_template", resource_id)


class FakeImageTool:
    """Records sanitize/customize calls; checks the working copy exists."""

    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.sanitized: list[bytes] = []

    def sanitize(self, image: Path, operations: str) -> None:
        assert Path(image).is_file()
        self.sanitized.append(Path(image).read_bytes())
        self.calls.append(("sanitize", Path(image), operations))

    def customize(self, image: Path, packages: tuple[str, ...], timezone: str) -> None:
        self.calls.append(("customize", Path(image), tuple(packages), timezone))

    def ops(self) -> list[str]:
        return [c[0] for c in self.calls]


class FakeFetcher:
    """Writes ``content`` to the destination with a fixed mtime."""

    def __init__(self, content: bytes = IMAGE_BYTES, mtime: int = IMAGE_MTIME) -> None:
        self.content = content
        self.mtime = mtime
        self.calls: list[tuple[str, Path]] = []

    def fetch(self, url: str, dest: Path) -> FetchResult:
        dest = Path(dest)
        self.calls.append((url, dest))
        if (
            dest.is_file()
            and dest.read_bytes() == self.content
            and int(dest.stat().st_mtime) == self.mtime
        ):
            return FetchResult(path=dest, downloaded=False)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(self.content)
        os.utime(dest, (self.mtime, self.mtime))
        return FetchResult(path=dest, downloaded=True)


# ---------------------------------------------------------------------------
# Settings / credentials
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_templateforge_logger():
    """Drop handlers a test attached through setup_run_logging."""
    yield
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


@pytest.fixture
def authorized_keys(tmp_path: Path) -> Path:
    path = tmp_path / "authorized_keys"
    path.write_text("ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAITest admin@example\n")
    return path


@pytest.fixture
def make_settings(tmp_path: Path, authorized_keys: Path) -> Callable[..., BuilderSettings]:
    """Factory fixture: fully configured settings rooted in tmp_path."""

    def _factory(**overrides: Any) -> BuilderSettings:
        values: dict[str, Any] = {
            "download_dir": tmp_path / "cache",
            "catalog_path": tmp_path / "images.json",
            "storage_pool": "local-lvm",
            "vm_ram": 2048,
            "vm_cores": 2,
            "disk_size": "32G",
            "net_bridge": "vmbr0",
            "ipconfig": "dhcp",
            "authorized_keys": authorized_keys,
            "timezone": "Europe/Berlin",
            "resize_wait_enabled": False,
        }
        values.update(overrides)
        return BuilderSettings(_env_file=None, **values)

    return _factory


@pytest.fixture
def settings(make_settings: Callable[..., BuilderSettings]) -> BuilderSettings:
    return make_settings()


@pytest.fixture
def credentials(settings: BuilderSettings) -> Credentials:
    return resolve_credentials(settings)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@pytest.fixture
def debian_entry() -> dict[str, Any]:
    return {
        "label": "Debian 12",
        "vm_id": 9000,
        "vm_name": "debian12-cloudinit",
        "image_file": "debian-12-genericcloud-amd64.qcow2",
        "image_url": "https://cloud.debian.org/images/cloud/bookworm/latest/debian-12-genericcloud-amd64.qcow2",
        "packages": ["qemu-guest-agent", "cloud-init"],
    }


@pytest.fixture
def ubuntu_entry() -> dict[str, Any]:
    return {
        "label": "Ubuntu 24.04",
        "vm_id": 9001,
        "vm_name": "ubuntu2404-cloudinit",
        "image_file": "noble-server-cloudimg-amd64.img",
        "image_url": "https://cloud-images.ubuntu.com/noble/current/noble-server-cloudimg-amd64.img",
        "packages": "qemu-guest-agent",
    }


@pytest.fixture
def catalog(debian_entry: dict[str, Any], ubuntu_entry: dict[str, Any]) -> Catalog:
    return parse_catalog([debian_entry, ubuntu_entry])


@pytest.fixture
def write_catalog(tmp_path: Path) -> Callable[[list[Any]], Path]:
    """Factory fixture: write entries to tmp_path/images.json."""

    def _write(entries: list[Any]) -> Path:
        path = tmp_path / "images.json"
        path.write_text(json.dumps(entries, indent=2), encoding="utf-8")
        return path

    return _write


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


@pytest.fixture
def resources() -> FakeResourceControl:
    return FakeResourceControl()


@pytest.fixture
def images() -> FakeImageTool:
    return FakeImageTool()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def make_orchestrator(
    credentials: Credentials,
    resources: FakeResourceControl,
    images: FakeImageTool,
    fetcher: FakeFetcher,
) -> Callable[..., Orchestrator]:
    """Factory fixture: an Orchestrator wired to the shared fakes."""

    def _factory(settings: BuilderSettings, **kwargs: Any) -> Orchestrator:
        kwargs.setdefault("sleep", lambda _seconds: None)
        return Orchestrator(
            settings,
            credentials,
            resources=resources,
            images=images,
            fetcher=fetcher,
            state_store=StateStore(settings.state_dir),
            **kwargs,
        )

    return _factory
