"""Source image integrity verification."""

from __future__ import annotations

import logging
from pathlib import Path

from templateforge.core.hasher import file_digest
from templateforge.models.catalog import ChecksumSpec

logger = logging.getLogger(__name__)


class IntegrityError(RuntimeError):
    """Raised when a source image does not match its declared checksum."""

    def __init__(self, path: Path, expected: str, actual: str) -> None:
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Checksum mismatch for {path}: expected {expected}, got {actual}"
        )


def verify_checksum(path: Path, spec: ChecksumSpec) -> str:
    """Hash *path* with the checksum's algorithm and compare.

    Returns the actual digest on success; raises ``IntegrityError`` on
    mismatch.
    """
    actual = file_digest(path, spec.algorithm)
    if actual != spec.expected_digest:
        raise IntegrityError(Path(path), spec.text, f"{spec.algorithm}:{actual}")
    logger.debug("Checksum OK for %s (%s)", path, spec.text)
    return actual
