"""Catalog models: one frozen ArtifactDefinition per buildable template.

The on-disk catalog keeps the ``images.json`` key names (``label``,
``vm_id``, ``vm_name``, ``image_file``, ``image_url``, ``packages``,
``checksum``); the models expose them under their build-facing names.
"""

from __future__ import annotations

import hashlib

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ChecksumSpec(BaseModel):
    """Expected digest of a source image, e.g. ``sha512:abc...``."""

    model_config = ConfigDict(frozen=True)

    algorithm: str = "sha256"
    expected_digest: str

    @field_validator("algorithm")
    @classmethod
    def _known_algorithm(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in hashlib.algorithms_available:
            raise ValueError(f"unsupported checksum algorithm {value!r}")
        return value

    @field_validator("expected_digest")
    @classmethod
    def _hex_digest(cls, value: str) -> str:
        value = value.strip().lower()
        if not value or any(c not in "0123456789abcdef" for c in value):
            raise ValueError("expected digest must be a non-empty hex string")
        return value

    @classmethod
    def parse(cls, text: str) -> ChecksumSpec:
        """Parse ``"algo:hex"`` or a bare hex digest (assumed sha256)."""
        if ":" in text:
            algorithm, digest = text.split(":", 1)
            return cls(algorithm=algorithm, expected_digest=digest)
        return cls(expected_digest=text)

    @property
    def text(self) -> str:
        """Canonical ``algo:hex`` form, folded into the build signature."""
        return f"{self.algorithm}:{self.expected_digest}"


class ArtifactDefinition(BaseModel):
    """A single template definition from the catalog."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    display_label: str = Field(alias="label")
    numeric_resource_id: int = Field(alias="vm_id", gt=0)
    target_name: str = Field(alias="vm_name")
    source_file: str = Field(alias="image_file")
    source_locator: str = Field(alias="image_url")
    package_set: tuple[str, ...] = Field(default=(), alias="packages")
    checksum_spec: ChecksumSpec | None = Field(default=None, alias="checksum")


class CatalogViolation(BaseModel):
    """One problem found while validating the catalog."""

    model_config = ConfigDict(frozen=True)

    index: int | None  # 0-based entry index, None for document-level errors
    reason: str

    def __str__(self) -> str:
        if self.index is None:
            return self.reason
        return f"Entry #{self.index + 1}: {self.reason}"
