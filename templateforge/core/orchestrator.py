"""Build orchestrator: the central coordinator for a templateforge run.

The Orchestrator wires together the StateStore, the BuildPipeline and the
collaborator capabilities, then builds the selected artifacts strictly one
after another.

Failure policy: by default a failed artifact is reported and the run
continues with the next selected artifact (continue-and-report). With
``fail_fast`` the run halts at the first failure. Either way the run's exit
code is non-zero when any artifact failed.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from pathlib import Path

from templateforge.collaborators.base import Fetcher, ImageTool, ResourceControl
from templateforge.config import BuilderSettings
from templateforge.core.catalog import Catalog
from templateforge.core.config_guard import ConfigurationError, Credentials
from templateforge.core.pipeline import BuildPipeline, StepFailedError
from templateforge.core.run_log import log_summary
from templateforge.core.state_store import StateStore
from templateforge.models.reports import ArtifactReport, BuildOutcome, RunReport

logger = logging.getLogger(__name__)


class Orchestrator:
    """Builds selected catalog entries, skipping those that are unchanged.

    Parameters
    ----------
    settings:
        Resolved, immutable builder settings.
    credentials:
        Credential material resolved at startup.
    resources, images, fetcher:
        Collaborator capabilities.
    dry_run:
        Simulate every mutating step.
    fail_fast:
        Stop at the first failed artifact instead of continuing.
    log_file:
        Path of this run's log file, quoted in failure messages.
    """

    def __init__(
        self,
        settings: BuilderSettings,
        credentials: Credentials,
        *,
        resources: ResourceControl,
        images: ImageTool,
        fetcher: Fetcher,
        state_store: StateStore | None = None,
        dry_run: bool = False,
        fail_fast: bool = False,
        log_file: Path | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.dry_run = dry_run
        self.fail_fast = fail_fast
        self.log_file = log_file
        self.resources = resources

        self.state_store = state_store or StateStore(settings.state_dir)
        self.pipeline = BuildPipeline(
            settings,
            credentials,
            self.state_store,
            resources=resources,
            images=images,
            fetcher=fetcher,
            dry_run=dry_run,
            sleep=sleep,
        )

    # ------------------------------------------------------------------
    # Preflight
    # ------------------------------------------------------------------

    def check_storage_pool(self) -> None:
        """Fail before any build if the configured storage pool is missing."""
        pool = self.settings.storage_pool
        if not self.resources.storage_pool_exists(pool):
            raise ConfigurationError(
                f"Storage pool '{pool}' does not exist on this node."
            )

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def build(
        self,
        catalog: Catalog,
        labels: Sequence[str],
        *,
        unknown_labels: Sequence[str] = (),
    ) -> RunReport:
        """Build each label in order and return the run report."""
        log_summary(logger, "Selected images:")
        for label in labels:
            log_summary(logger, " - %s", label)
        log_summary(logger, "Starting template creation...")

        reports: list[ArtifactReport] = []
        halted = False
        for position, label in enumerate(labels):
            report = self.build_one(catalog, label)
            reports.append(report)
            if report.outcome == BuildOutcome.FAILED and self.fail_fast:
                remaining = len(labels) - position - 1
                if remaining:
                    logger.error(
                        "Halting: %d selected image(s) not attempted (--fail-fast).",
                        remaining,
                    )
                    halted = True
                break

        if self.dry_run:
            log_summary(logger, "Dry-run completed; no changes were applied.")
        else:
            log_summary(logger, "All selected templates processed.")
        if self.log_file is not None:
            log_summary(logger, "Full log available at: %s", self.log_file)

        return RunReport(
            artifacts=reports,
            unknown_labels=list(unknown_labels),
            halted=halted,
            dry_run=self.dry_run,
            log_file=self.log_file,
        )

    def build_one(self, catalog: Catalog, label: str) -> ArtifactReport:
        """Run the pipeline for a single label, converting failure to a report."""
        artifact = catalog.get(label)
        log_summary(
            logger, "Building %s (VMID %s)...", label, artifact.numeric_resource_id
        )
        try:
            return self.pipeline.run(artifact)
        except StepFailedError as exc:
            where = f" See log file: {self.log_file}" if self.log_file else ""
            logger.error(
                "ERROR: %s failed at step '%s': %s.%s", label, exc.step_id, exc.cause, where
            )
            return ArtifactReport(
                label=label,
                resource_id=artifact.numeric_resource_id,
                outcome=BuildOutcome.FAILED,
                step_states=exc.step_states,
                failed_step=exc.step_id,
                error=str(exc.cause),
            )
