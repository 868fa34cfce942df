"""Per-artifact and per-run build reports."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from templateforge.models.steps import StepState


class BuildOutcome(str, Enum):
    """Final result of one artifact's pipeline run."""

    BUILT = "built"
    SKIPPED = "skipped"  # unchanged since the last recorded build
    DRY_RUN = "dry_run"
    FAILED = "failed"


class ArtifactReport(BaseModel):
    """What happened to one selected artifact."""

    model_config = ConfigDict(frozen=True)

    label: str
    resource_id: int
    outcome: BuildOutcome
    step_states: dict[str, StepState] = {}
    failed_step: str | None = None
    error: str | None = None
    signature: str = ""


class RunReport(BaseModel):
    """Summary of one invocation across all selected artifacts."""

    model_config = ConfigDict(frozen=True)

    artifacts: list[ArtifactReport] = []
    unknown_labels: list[str] = []
    halted: bool = False  # fail-fast stopped before the selection was exhausted
    dry_run: bool = False
    log_file: Path | None = None

    @property
    def failed(self) -> list[ArtifactReport]:
        return [a for a in self.artifacts if a.outcome == BuildOutcome.FAILED]

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0
