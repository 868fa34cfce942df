"""Per-artifact build state, one JSON record per numeric resource ID.

Layout: {state_dir}/vm-{resource_id}.state.json

Writes go to a temporary file in the same directory and are moved into place
with ``os.replace``, so a crash mid-write leaves either the previous record or
none, never a torn one. Reads never raise: a missing, unreadable or malformed
record is reported as absent, which forces a rebuild.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from templateforge.models.state import StateRecord

logger = logging.getLogger(__name__)


class StateStore:
    """Durable map of resource ID to the last successful build's state.

    Parameters
    ----------
    state_dir:
        Directory holding the state records. Created if missing.
    """

    def __init__(self, state_dir: Path) -> None:
        self._dir = Path(state_dir)
        self._dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, resource_id: int) -> Path:
        return self._dir / f"vm-{resource_id}.state.json"

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def read(self, resource_id: int) -> StateRecord | None:
        """Return the stored record, or ``None`` if absent or unusable."""
        path = self.path_for(resource_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("State record %s is unreadable (%s); treating as absent.", path, exc)
            return None

        try:
            record = StateRecord.model_validate_json(raw)
        except ValidationError:
            logger.warning("State record %s is malformed; treating as absent.", path)
            return None

        if record.resource_id != resource_id:
            logger.warning(
                "State record %s belongs to resource %s; treating as absent.",
                path,
                record.resource_id,
            )
            return None
        return record

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def write(self, resource_id: int, source_mtime: int, signature: str) -> StateRecord:
        """Atomically replace the record for *resource_id*."""
        record = StateRecord(
            resource_id=resource_id,
            source_mtime=source_mtime,
            signature=signature,
        )
        path = self.path_for(resource_id)
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            delete=False,
            dir=str(self._dir),
            prefix=path.name + ".",
            suffix=".tmp",
        ) as tmp:
            tmp.write(record.model_dump_json(indent=2) + "\n")
            tmp.flush()
            os.fsync(tmp.fileno())
            temp_path = Path(tmp.name)
        try:
            os.replace(temp_path, path)
        except OSError:
            temp_path.unlink(missing_ok=True)
            raise
        logger.debug("Wrote state record %s", path)
        return record

    def list_records(self) -> list[StateRecord]:
        """All readable records, ordered by resource ID."""
        records: list[StateRecord] = []
        for path in sorted(self._dir.glob("vm-*.state.json")):
            stem = path.name.removeprefix("vm-").removesuffix(".state.json")
            if stem.isdigit():
                record = self.read(int(stem))
                if record is not None:
                    records.append(record)
        return sorted(records, key=lambda r: r.resource_id)
