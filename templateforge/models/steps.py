"""Build step definitions: the fixed, ordered provisioning sequence."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class StepState(str, Enum):
    """Per-step outcome within one artifact's pipeline run."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    PASSED = "passed"
    SIMULATED = "simulated"  # dry-run: logged, not performed
    FAILED = "failed"
    SKIPPED = "skipped"  # gate short-circuited the rest of the run


class StepDefinition(BaseModel):
    """One named step of the build pipeline.

    ``mutating`` steps touch the host, the image cache or the state store and
    are replaced by a log line under dry-run.
    """

    model_config = ConfigDict(frozen=True)

    step_id: str
    display_name: str
    ordinal: float
    mutating: bool = True


# The standard build sequence. Order is execution order.
DEFAULT_STEP_DEFINITIONS: list[StepDefinition] = [
    StepDefinition(step_id="fetch", display_name="Fetch source image", ordinal=1.0),
    StepDefinition(
        step_id="verify", display_name="Verify checksum", ordinal=2.0, mutating=False
    ),
    StepDefinition(
        step_id="signature",
        display_name="Compute build signature",
        ordinal=3.0,
        mutating=False,
    ),
    StepDefinition(
        step_id="gate", display_name="Change-tracking gate", ordinal=4.0, mutating=False
    ),
    StepDefinition(
        step_id="working_copy", display_name="Prepare working copy", ordinal=5.0
    ),
    StepDefinition(step_id="destroy", display_name="Remove existing VM", ordinal=6.0),
    StepDefinition(step_id="sanitize", display_name="Sanitize image", ordinal=7.0),
    StepDefinition(step_id="customize", display_name="Customize image", ordinal=7.5),
    StepDefinition(step_id="create", display_name="Create VM", ordinal=8.0),
    StepDefinition(step_id="import_disk", display_name="Import disk", ordinal=8.5),
    StepDefinition(step_id="configure", display_name="Configure VM", ordinal=9.0),
    StepDefinition(step_id="resize", display_name="Resize disk", ordinal=10.0),
    StepDefinition(step_id="template", display_name="Convert to template", ordinal=11.0),
    StepDefinition(step_id="record", display_name="Record build state", ordinal=12.0),
]

STEP_ORDER: list[str] = [sd.step_id for sd in DEFAULT_STEP_DEFINITIONS]
