"""Persisted per-artifact build state."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class StateRecord(BaseModel):
    """Source mtime and build signature recorded after a successful build.

    Keyed by the artifact's ``numeric_resource_id``.
    """

    model_config = ConfigDict(frozen=True)

    resource_id: int
    source_mtime: int
    signature: str
    recorded_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
