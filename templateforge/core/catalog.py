"""Catalog loader and validator.

The catalog is a JSON list of template definitions. It is loaded once, before
any collaborator is touched, and accepted only as a whole: every violation in
the document is collected and reported together, and a catalog with any
violation builds nothing.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from templateforge.models.catalog import (
    ArtifactDefinition,
    CatalogViolation,
    ChecksumSpec,
)

logger = logging.getLogger(__name__)

REQUIRED_KEYS: tuple[str, ...] = ("label", "vm_id", "vm_name", "image_file", "image_url")

_INTEGER_RE = re.compile(r"^[0-9]+$")


class CatalogValidationError(RuntimeError):
    """Raised when the catalog violates its schema or uniqueness rules."""

    def __init__(self, violations: list[CatalogViolation]) -> None:
        self.violations = list(violations)
        lines = "\n".join(f"  - {v}" for v in self.violations)
        super().__init__(
            f"Image catalog is invalid ({len(self.violations)} problem(s)):\n{lines}"
        )


class Catalog:
    """Ordered, validated artifact definitions with a label lookup."""

    def __init__(self, definitions: list[ArtifactDefinition]) -> None:
        self._definitions = list(definitions)
        self._index_by_label = {
            d.display_label: i for i, d in enumerate(self._definitions)
        }

    def __iter__(self) -> Iterator[ArtifactDefinition]:
        return iter(self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, label: object) -> bool:
        return label in self._index_by_label

    @property
    def labels(self) -> list[str]:
        """Display labels in declared order."""
        return [d.display_label for d in self._definitions]

    def get(self, label: str) -> ArtifactDefinition:
        """Return the definition for *label*; ``KeyError`` if unknown."""
        return self._definitions[self._index_by_label[label]]


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load_catalog(path: Path) -> Catalog:
    """Read and validate the catalog at *path*.

    Raises
    ------
    CatalogValidationError
        If the file is missing, unparsable, or any entry is invalid.
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise CatalogValidationError(
            [CatalogViolation(index=None, reason=f"Image catalog not found at {path}")]
        ) from None
    except (OSError, ValueError) as exc:
        raise CatalogValidationError(
            [CatalogViolation(index=None, reason=f"Failed to read {path}: {exc}")]
        ) from exc

    catalog = parse_catalog(data)
    logger.debug("Loaded %d catalog entries from %s", len(catalog), path)
    return catalog


def parse_catalog(data: Any) -> Catalog:
    """Validate an already-decoded catalog document."""
    if not isinstance(data, list):
        raise CatalogValidationError(
            [
                CatalogViolation(
                    index=None,
                    reason="Top-level JSON must be a list of image definitions",
                )
            ]
        )
    if not data:
        raise CatalogValidationError(
            [CatalogViolation(index=None, reason="No images defined in the catalog")]
        )

    violations: list[CatalogViolation] = []
    definitions: list[tuple[int, ArtifactDefinition]] = []

    for idx, item in enumerate(data):
        entry_violations, definition = _check_entry(idx, item)
        violations.extend(entry_violations)
        if definition is not None:
            definitions.append((idx, definition))

    implicit_ids = {
        idx for idx, item in enumerate(data) if isinstance(item, dict) and not item.get("id")
    }
    violations.extend(_check_uniqueness(definitions, implicit_ids))

    if violations:
        raise CatalogValidationError(violations)
    return Catalog([d for _, d in definitions])


# ---------------------------------------------------------------------------
# Per-entry checks
# ---------------------------------------------------------------------------


def _check_entry(
    idx: int, item: Any
) -> tuple[list[CatalogViolation], ArtifactDefinition | None]:
    if not isinstance(item, dict):
        return [CatalogViolation(index=idx, reason="must be an object")], None

    violations: list[CatalogViolation] = []
    for key in REQUIRED_KEYS:
        value = item.get(key)
        if value is None or str(value).strip() == "":
            violations.append(
                CatalogViolation(index=idx, reason=f"missing required key {key!r}")
            )

    vm_id = item.get("vm_id")
    if vm_id is not None and str(vm_id).strip() != "":
        if isinstance(vm_id, bool) or not _INTEGER_RE.match(str(vm_id).strip()):
            violations.append(
                CatalogViolation(
                    index=idx, reason=f"vm_id must be numeric, found {vm_id!r}"
                )
            )

    packages = item.get("packages")
    if not _valid_packages(packages):
        violations.append(
            CatalogViolation(
                index=idx,
                reason="packages must be a list of strings or a comma-separated string",
            )
        )

    checksum: ChecksumSpec | None = None
    raw_checksum = item.get("checksum")
    if raw_checksum not in (None, ""):
        try:
            checksum = ChecksumSpec.parse(str(raw_checksum))
        except ValidationError as exc:
            violations.append(
                CatalogViolation(
                    index=idx,
                    reason=f"invalid checksum {raw_checksum!r}: {_first_error(exc)}",
                )
            )

    if violations:
        return violations, None

    fields = {
        "id": str(item.get("id") or item["vm_name"]).strip(),
        "label": str(item["label"]).strip(),
        "vm_id": int(str(item["vm_id"]).strip()),
        "vm_name": str(item["vm_name"]).strip(),
        "image_file": str(item["image_file"]).strip(),
        "image_url": str(item["image_url"]).strip(),
        "packages": _split_packages(packages),
        "checksum": checksum,
    }
    try:
        return [], ArtifactDefinition.model_validate(fields)
    except ValidationError as exc:
        return [CatalogViolation(index=idx, reason=_first_error(exc))], None


def _check_uniqueness(
    definitions: list[tuple[int, ArtifactDefinition]],
    implicit_ids: set[int],
) -> list[CatalogViolation]:
    """Report repeated ids, labels and vm_ids.

    An entry without an explicit ``id`` uses its ``vm_name``; a clash there is
    reported against ``vm_name``.
    """
    violations: list[CatalogViolation] = []
    seen: dict[str, dict[Any, int]] = {"id": {}, "label": {}, "vm_id": {}}

    for idx, d in definitions:
        for kind, value in (
            ("id", d.id),
            ("label", d.display_label),
            ("vm_id", d.numeric_resource_id),
        ):
            first = seen[kind].get(value)
            if first is not None:
                name = kind
                if kind == "id" and idx in implicit_ids:
                    name = "vm_name (used as id)"
                violations.append(
                    CatalogViolation(
                        index=idx,
                        reason=f"duplicate {name} {value!r} (first used by entry #{first + 1})",
                    )
                )
            else:
                seen[kind][value] = idx
    return violations


def _valid_packages(raw: Any) -> bool:
    if raw is None or isinstance(raw, str):
        return True
    return isinstance(raw, list) and all(isinstance(p, str) for p in raw)


def _split_packages(raw: str | list[str] | None) -> tuple[str, ...]:
    """Accept a JSON list or a comma-separated string; keep declared order."""
    if raw is None:
        return ()
    parts = raw.split(",") if isinstance(raw, str) else raw
    return tuple(p.strip() for p in parts if p.strip())


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return f"{loc}: {err['msg']}" if loc else err["msg"]
