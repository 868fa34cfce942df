"""Build pipeline: the ordered provisioning steps for one artifact.

Every step in ``DEFAULT_STEP_DEFINITIONS`` maps to a ``_step_<step_id>``
method. ``run()`` drives them in order and enforces the lifecycle:

    fetch -> verify -> signature -> gate -> working_copy -> destroy
        -> sanitize -> customize -> create -> import_disk -> configure
        -> resize -> template -> record

Mutating collaborator calls go through ``_perform()``. Under dry-run it logs
the description at INFO and the call with its literal arguments at DEBUG,
then returns as though the call succeeded. Read-only queries (existence
checks, state reads, checksum verification of an already cached file) run
in both modes so dry-run reaches the same gate decision as a real run.

A failing step aborts the artifact immediately with ``StepFailedError``; the
state record is written only by the final step, so a failed or simulated run
never touches it. The working copy is removed on every exit path.
"""

from __future__ import annotations

import logging
import shutil
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from templateforge.collaborators.base import Fetcher, ImageTool, ResourceControl, VmSpec
from templateforge.collaborators.runner import SECRET_FLAGS
from templateforge.config import BuilderSettings
from templateforge.core.checksum import verify_checksum
from templateforge.core.config_guard import Credentials
from templateforge.core.hasher import SignatureInputs, compute_signature
from templateforge.core.run_log import log_summary
from templateforge.core.state_store import StateStore
from templateforge.models.catalog import ArtifactDefinition
from templateforge.models.reports import ArtifactReport, BuildOutcome
from templateforge.models.steps import (
    DEFAULT_STEP_DEFINITIONS,
    StepDefinition,
    StepState,
)

logger = logging.getLogger(__name__)

PRIMARY_DISK = "virtio0"


class StepFailedError(RuntimeError):
    """Raised when a pipeline step fails; names the artifact and the step."""

    def __init__(
        self,
        label: str,
        step_id: str,
        cause: BaseException,
        step_states: dict[str, StepState] | None = None,
    ) -> None:
        self.label = label
        self.step_id = step_id
        self.cause = cause
        self.step_states = dict(step_states or {})
        super().__init__(f"{label}: step '{step_id}' failed: {cause}")


class BuildContext:
    """Ephemeral state of one artifact's pipeline run."""

    def __init__(self, artifact: ArtifactDefinition, download_dir: Path) -> None:
        self.artifact = artifact
        self.source_path = download_dir / artifact.source_file
        self.work_path = download_dir / f"{artifact.target_name}-work.qcow2"
        self.source_mtime: int | None = None
        self.signature: str = ""
        self.disk_volume: str = ""
        self.unchanged = False
        self.step_states: dict[str, StepState] = {}


class BuildPipeline:
    """Runs the provisioning steps for one artifact at a time.

    Parameters
    ----------
    settings:
        Resolved builder settings.
    credentials:
        Authorized keys and optional admin password, resolved at startup.
    state_store:
        Where successful builds are recorded.
    resources, images, fetcher:
        Collaborator capabilities.
    dry_run:
        Log mutating calls instead of performing them.
    sleep:
        Delay function used around the disk resize.
    """

    def __init__(
        self,
        settings: BuilderSettings,
        credentials: Credentials,
        state_store: StateStore,
        *,
        resources: ResourceControl,
        images: ImageTool,
        fetcher: Fetcher,
        dry_run: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        steps: list[StepDefinition] | None = None,
    ) -> None:
        self.settings = settings
        self.credentials = credentials
        self.state_store = state_store
        self.resources = resources
        self.images = images
        self.fetcher = fetcher
        self.dry_run = dry_run
        self._sleep = sleep
        self.steps = list(steps or DEFAULT_STEP_DEFINITIONS)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self, artifact: ArtifactDefinition) -> ArtifactReport:
        """Execute every step for *artifact* in order.

        Returns the artifact's report; raises ``StepFailedError`` on the
        first failing step.
        """
        ctx = BuildContext(artifact, Path(self.settings.download_dir or "."))
        ctx.step_states = {sd.step_id: StepState.NOT_STARTED for sd in self.steps}

        try:
            for step in self.steps:
                if ctx.unchanged:
                    ctx.step_states[step.step_id] = StepState.SKIPPED
                    continue
                self._run_step(ctx, step)
        finally:
            self._discard_working_copy(ctx)

        if ctx.unchanged:
            outcome = BuildOutcome.SKIPPED
        elif self.dry_run:
            outcome = BuildOutcome.DRY_RUN
        else:
            outcome = BuildOutcome.BUILT

        return ArtifactReport(
            label=artifact.display_label,
            resource_id=artifact.numeric_resource_id,
            outcome=outcome,
            step_states=dict(ctx.step_states),
            signature=ctx.signature,
        )

    def _run_step(self, ctx: BuildContext, step: StepDefinition) -> None:
        handler: Callable[[BuildContext], None] = getattr(self, f"_step_{step.step_id}")
        ctx.step_states[step.step_id] = StepState.RUNNING
        logger.debug(
            "%s [%s] %s", ctx.artifact.display_label, step.step_id, step.display_name
        )
        try:
            handler(ctx)
        except Exception as exc:
            ctx.step_states[step.step_id] = StepState.FAILED
            logger.error(
                "%s [%s] %s failed: %s",
                ctx.artifact.display_label,
                step.step_id,
                step.display_name,
                exc,
            )
            raise StepFailedError(
                ctx.artifact.display_label, step.step_id, exc, ctx.step_states
            ) from exc

        if self.dry_run and step.mutating:
            ctx.step_states[step.step_id] = StepState.SIMULATED
        else:
            ctx.step_states[step.step_id] = StepState.PASSED

    def _perform(
        self,
        description: str,
        fn: Callable[..., Any],
        *args: Any,
        secret: bool = False,
    ) -> Any:
        """Run a mutating call, or only describe it under dry-run."""
        call = _describe_call(fn, args, secret=secret)
        if self.dry_run:
            logger.info("DRY-RUN: %s", description)
            logger.debug("       would run: %s", call)
            return None
        logger.info("%s", description)
        logger.debug("       calling: %s", call)
        return fn(*args)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _step_fetch(self, ctx: BuildContext) -> None:
        artifact = ctx.artifact
        logger.info("Ensuring base image '%s' is up-to-date...", artifact.source_file)
        result = self._perform(
            f"Fetch {artifact.source_locator} into {ctx.source_path}",
            self.fetcher.fetch,
            artifact.source_locator,
            ctx.source_path,
        )
        if self.dry_run:
            return
        if not ctx.source_path.is_file():
            raise FileNotFoundError(
                f"Base image {ctx.source_path} not found after download"
            )
        if result.downloaded:
            logger.info("Base image '%s' downloaded.", artifact.source_file)
        else:
            logger.info("Base image '%s' already current.", artifact.source_file)

    def _step_verify(self, ctx: BuildContext) -> None:
        spec = ctx.artifact.checksum_spec
        if spec is None:
            logger.warning(
                "No checksum provided for %s; download integrity is unchecked.",
                ctx.artifact.source_file,
            )
            return
        if self.dry_run and not ctx.source_path.is_file():
            logger.info("DRY-RUN: Verify checksum for %s", ctx.artifact.source_file)
            return
        logger.info("Verify checksum for %s", ctx.artifact.source_file)
        verify_checksum(ctx.source_path, spec)

    def _step_signature(self, ctx: BuildContext) -> None:
        if ctx.source_path.is_file():
            ctx.source_mtime = int(ctx.source_path.stat().st_mtime)
        inputs = SignatureInputs.resolve(
            self.settings,
            source_mtime=ctx.source_mtime,
            authorized_keys_hash=self.credentials.authorized_keys_hash,
            admin_password=self.credentials.password_value,
        )
        ctx.signature = compute_signature(ctx.artifact, inputs)
        logger.debug(
            "%s source_mtime=%s signature=%s",
            ctx.artifact.display_label,
            ctx.source_mtime,
            ctx.signature,
        )

    def _step_gate(self, ctx: BuildContext) -> None:
        artifact = ctx.artifact
        if not self.settings.skip_if_base_unchanged:
            logger.debug("Change tracking disabled; %s will be rebuilt.", artifact.display_label)
            return
        if ctx.source_mtime is None:
            logger.debug("No cached source for %s; rebuild required.", artifact.display_label)
            return

        record = self.state_store.read(artifact.numeric_resource_id)
        if record is None:
            logger.debug("No state record for VM %s.", artifact.numeric_resource_id)
            return
        if record.source_mtime != ctx.source_mtime:
            logger.info(
                "Base image changed (mtime %s -> %s); rebuilding.",
                record.source_mtime,
                ctx.source_mtime,
            )
            return
        if record.signature != ctx.signature:
            logger.info("Build configuration changed; rebuilding.")
            return
        if not self.resources.exists(artifact.numeric_resource_id):
            logger.info(
                "VM %s no longer exists; rebuilding.", artifact.numeric_resource_id
            )
            return

        ctx.unchanged = True
        log_summary(logger, "%s: unchanged, skipped", artifact.display_label)

    def _step_working_copy(self, ctx: BuildContext) -> None:
        logger.info("Preparing working copy for %s...", ctx.artifact.target_name)
        self._perform(
            "Remove existing working image", _remove_file, ctx.work_path
        )
        self._perform(
            "Copy base image to working file",
            shutil.copyfile,
            ctx.source_path,
            ctx.work_path,
        )

    def _step_destroy(self, ctx: BuildContext) -> None:
        vm_id = ctx.artifact.numeric_resource_id
        self._perform(f"Remove any existing VM {vm_id}", self.resources.destroy, vm_id)

    def _step_sanitize(self, ctx: BuildContext) -> None:
        self._perform(
            "Run virt-sysprep on working copy",
            self.images.sanitize,
            ctx.work_path,
            self.settings.sysprep_ops,
        )

    def _step_customize(self, ctx: BuildContext) -> None:
        packages = ctx.artifact.package_set
        description = (
            "Customize image and install packages"
            if packages
            else "Customize image with timezone"
        )
        self._perform(
            description,
            self.images.customize,
            ctx.work_path,
            packages,
            self.settings.timezone,
        )

    def _step_create(self, ctx: BuildContext) -> None:
        artifact = ctx.artifact
        spec = VmSpec(
            name=artifact.target_name,
            memory=self.settings.vm_ram or 0,
            cores=self.settings.vm_cores or 0,
            net_bridge=self.settings.net_bridge,
        )
        self._perform(
            f"Create VM {artifact.numeric_resource_id} ({artifact.target_name})",
            self.resources.create,
            artifact.numeric_resource_id,
            spec,
        )

    def _step_import_disk(self, ctx: BuildContext) -> None:
        pool = self.settings.storage_pool
        volume = self._perform(
            f"Import disk into storage pool '{pool}'",
            self.resources.import_disk,
            ctx.artifact.numeric_resource_id,
            ctx.work_path,
            pool,
        )
        ctx.disk_volume = volume or f"{pool}:<imported-disk>"

    def _step_configure(self, ctx: BuildContext) -> None:
        vm_id = ctx.artifact.numeric_resource_id
        logger.info("Configuring disks, boot, and cloud-init...")
        for description, option, value in self.vm_options(ctx.disk_volume):
            self._perform(
                description,
                self.resources.configure,
                vm_id,
                option,
                value,
                secret=f"--{option}" in SECRET_FLAGS,
            )

    def _step_resize(self, ctx: BuildContext) -> None:
        settings = self.settings
        logger.info("Resizing primary disk to %s...", settings.disk_size)
        wait = settings.resize_wait_enabled
        if wait and settings.resize_wait_before > 0:
            logger.debug(
                "Waiting %g seconds before resize (import/resize timing workaround)...",
                settings.resize_wait_before,
            )
            self._perform("Pre-resize wait", self._sleep, settings.resize_wait_before)
        self._perform(
            "Resize disk",
            self.resources.resize,
            ctx.artifact.numeric_resource_id,
            PRIMARY_DISK,
            settings.disk_size,
        )
        if wait and settings.resize_wait_after > 0:
            logger.debug("Waiting %g seconds after resize...", settings.resize_wait_after)
            self._perform("Post-resize wait", self._sleep, settings.resize_wait_after)

    def _step_template(self, ctx: BuildContext) -> None:
        vm_id = ctx.artifact.numeric_resource_id
        logger.info("Converting VM %s to a template...", vm_id)
        self._perform("Convert to template", self.resources.freeze_template, vm_id)

    def _step_record(self, ctx: BuildContext) -> None:
        artifact = ctx.artifact
        if ctx.source_mtime is not None:
            self._perform(
                f"Record build state for VM {artifact.numeric_resource_id}",
                self.state_store.write,
                artifact.numeric_resource_id,
                ctx.source_mtime,
                ctx.signature,
            )
        if self.dry_run:
            log_summary(logger, "Template would be created: %s", artifact.target_name)
        else:
            log_summary(logger, "Template created: %s", artifact.target_name)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def vm_options(self, disk_volume: str) -> list[tuple[str, str, str]]:
        """The ``qm set`` options applied after import, in order.

        Password, search domain and nameserver are included only when set.
        """
        s = self.settings
        pool = s.storage_pool
        options: list[tuple[str, str, str]] = [
            ("Attach virtio disk", PRIMARY_DISK, f"{disk_volume},cache=writeback,discard=on"),
            ("Attach cloud-init drive", "ide2", f"{pool}:cloudinit"),
            ("Enable QEMU guest agent", "agent", "enabled=1"),
            ("Configure boot settings", "boot", f"order={PRIMARY_DISK}"),
            ("Configure hotplug", "hotplug", "disk,network,usb"),
            ("Configure serial console", "serial0", "socket"),
            ("Configure VGA", "vga", "serial0"),
            ("Use host CPU type", "cpu", "cputype=host"),
            ("Set OS type", "ostype", "l26"),
            ("Configure ballooning", "balloon", str((s.vm_ram or 0) // 2)),
            ("Enable cloud-init upgrade", "ciupgrade", "1"),
            ("Set default user", "ciuser", s.default_user),
            ("Install SSH keys", "sshkeys", str(self.credentials.authorized_keys)),
        ]
        password = self.credentials.password_value
        if password:
            options.append(("Set admin password", "cipassword", password))
        if s.searchdomain:
            options.append(("Configure search domain", "searchdomain", s.searchdomain))
        if s.nameserver:
            options.append(("Configure nameserver", "nameserver", s.nameserver))
        options.append(("Configure networking", "ipconfig0", f"ip={s.ipconfig}"))
        return options

    def _discard_working_copy(self, ctx: BuildContext) -> None:
        if self.dry_run:
            if ctx.step_states.get("working_copy") == StepState.SIMULATED:
                logger.info("DRY-RUN: Remove working image")
            return
        try:
            if ctx.work_path.exists():
                logger.info("Remove working image")
                ctx.work_path.unlink()
        except OSError as exc:
            logger.warning("Could not remove working image %s: %s", ctx.work_path, exc)


def _remove_file(path: Path) -> None:
    Path(path).unlink(missing_ok=True)


def _describe_call(fn: Callable[..., Any], args: tuple[Any, ...], *, secret: bool) -> str:
    name = getattr(fn, "__qualname__", getattr(fn, "__name__", repr(fn)))
    shown = [repr(a) for a in args]
    if secret and shown:
        shown[-1] = "'********'"
    return f"{name}({', '.join(shown)})"
