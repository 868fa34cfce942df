"""Canonical hashing helpers and the build signature engine.

The build signature is the idempotence contract: two builds of the same
artifact produce the same signature iff every resolved input is unchanged.
Inputs are serialized as canonical JSON (sorted keys, compact separators) so
field ordering never matters. Secrets enter only as one-way hashes.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict

from templateforge.config import BuilderSettings
from templateforge.models.catalog import ArtifactDefinition

_CHUNK_SIZE = 1024 * 1024


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes: deterministic, sorted, compact.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def file_digest(path: Path, algorithm: str = "sha256") -> str:
    """Stream a file through *algorithm* and return the lowercase hex digest.

    Raises ``ValueError`` for algorithms hashlib does not provide.
    """
    hasher = hashlib.new(algorithm)
    with Path(path).open("rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest().lower()


def hash_secret(value: str | None) -> str:
    """One-way hash of a credential for inclusion in a signature.

    ``None`` (no credential configured) hashes to a stable value that differs
    from the hash of any string, including the empty string.
    """
    if value is None:
        payload: dict[str, Any] = {"present": False}
    else:
        payload = {"present": True, "value": value}
    return sha256_hex(canonical_json_bytes(payload))


class SignatureInputs(BaseModel):
    """Build inputs resolved immediately before the signature is computed."""

    model_config = ConfigDict(frozen=True)

    source_mtime: int | None
    storage_pool: str
    vm_ram: int | None
    vm_cores: int | None
    disk_size: str
    net_bridge: str
    ipconfig: str
    searchdomain: str
    nameserver: str
    timezone: str
    sysprep_ops: str
    resize_wait_enabled: bool
    authorized_keys_hash: str
    admin_password_hash: str

    @classmethod
    def resolve(
        cls,
        settings: BuilderSettings,
        *,
        source_mtime: int | None,
        authorized_keys_hash: str,
        admin_password: str | None,
    ) -> SignatureInputs:
        """Collect the settings-derived inputs plus freshly observed values."""
        return cls(
            source_mtime=source_mtime,
            storage_pool=settings.storage_pool,
            vm_ram=settings.vm_ram,
            vm_cores=settings.vm_cores,
            disk_size=settings.disk_size,
            net_bridge=settings.net_bridge,
            ipconfig=settings.ipconfig,
            searchdomain=settings.searchdomain,
            nameserver=settings.nameserver,
            timezone=settings.timezone,
            sysprep_ops=settings.sysprep_ops,
            resize_wait_enabled=settings.resize_wait_enabled,
            authorized_keys_hash=authorized_keys_hash,
            admin_password_hash=hash_secret(admin_password),
        )


def compute_signature(
    artifact: ArtifactDefinition, inputs: SignatureInputs
) -> str:
    """SHA-256 of canonical(artifact build fields + resolved inputs)."""
    payload = {
        "artifact": {
            "target_name": artifact.target_name,
            "source_locator": artifact.source_locator,
            "source_file": artifact.source_file,
            "package_set": list(artifact.package_set),
            "checksum": artifact.checksum_spec.text if artifact.checksum_spec else None,
        },
        "inputs": inputs.model_dump(mode="json"),
    }
    return sha256_hex(canonical_json_bytes(payload))
