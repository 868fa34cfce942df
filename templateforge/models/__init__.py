"""templateforge data models: all Pydantic v2, all frozen (immutable)."""

from templateforge.models.catalog import (
    ArtifactDefinition,
    CatalogViolation,
    ChecksumSpec,
)
from templateforge.models.reports import ArtifactReport, BuildOutcome, RunReport
from templateforge.models.state import StateRecord
from templateforge.models.steps import (
    DEFAULT_STEP_DEFINITIONS,
    STEP_ORDER,
    StepDefinition,
    StepState,
)

__all__ = [
    # catalog
    "ArtifactDefinition",
    "CatalogViolation",
    "ChecksumSpec",
    # state
    "StateRecord",
    # steps
    "StepState",
    "StepDefinition",
    "DEFAULT_STEP_DEFINITIONS",
    "STEP_ORDER",
    # reports
    "BuildOutcome",
    "ArtifactReport",
    "RunReport",
]
