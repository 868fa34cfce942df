"""Unit tests for the CLI: command registration and end-to-end command behavior.

Collaborators are replaced through ``common.default_collaborators`` so no
host tooling is required.
"""

from __future__ import annotations

import pytest
from typer.testing import CliRunner

from templateforge.cli.app import app
from templateforge.cli.commands import build as build_module
from templateforge.cli.commands import common
from templateforge.collaborators.base import CollaboratorError

runner = CliRunner()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_env(
    monkeypatch, tmp_path, authorized_keys, write_catalog, debian_entry, ubuntu_entry,
    resources, images, fetcher,
):
    """Configure the environment and collaborators for CLI invocations."""
    monkeypatch.chdir(tmp_path)
    env = {
        "TEMPLATEFORGE_DOWNLOAD_DIR": str(tmp_path / "cache"),
        "TEMPLATEFORGE_STORAGE_POOL": "local-lvm",
        "TEMPLATEFORGE_VM_RAM": "2048",
        "TEMPLATEFORGE_VM_CORES": "2",
        "TEMPLATEFORGE_DISK_SIZE": "32G",
        "TEMPLATEFORGE_NET_BRIDGE": "vmbr0",
        "TEMPLATEFORGE_IPCONFIG": "dhcp",
        "TEMPLATEFORGE_AUTHORIZED_KEYS": str(authorized_keys),
        "TEMPLATEFORGE_TIMEZONE": "UTC",
        "TEMPLATEFORGE_RESIZE_WAIT_ENABLED": "false",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    write_catalog([debian_entry, ubuntu_entry])
    monkeypatch.setattr(
        common, "default_collaborators", lambda settings: (resources, images, fetcher)
    )
    return tmp_path


# ---------------------------------------------------------------------------
# Test: registration
# ---------------------------------------------------------------------------


class TestCliApp:
    """The CLI must register all expected commands and show help."""

    def test_help_flag(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "build" in result.output
        assert "validate" in result.output
        assert "list" in result.output

    def test_build_help(self):
        result = runner.invoke(app, ["build", "--help"])
        assert result.exit_code == 0
        assert "--dry-run" in result.output


# ---------------------------------------------------------------------------
# Test: build
# ---------------------------------------------------------------------------


class TestBuildCommand:
    def test_build_all(self, cli_env, resources):
        result = runner.invoke(app, ["build", "--all"])

        assert result.exit_code == 0, result.output
        assert [c[1] for c in resources.calls if c[0] == "create"] == [9000, 9001]
        assert (cli_env / "cache" / "state" / "vm-9000.state.json").is_file()

    def test_build_named_label(self, cli_env, resources):
        result = runner.invoke(app, ["build", "Ubuntu 24.04"])

        assert result.exit_code == 0, result.output
        assert {c[1] for c in resources.mutating_calls} == {9001}

    def test_dry_run(self, cli_env, resources, images, fetcher):
        result = runner.invoke(app, ["build", "--all", "--dry-run"])

        assert result.exit_code == 0, result.output
        assert resources.mutating_calls == []
        assert images.calls == []
        assert fetcher.calls == []
        assert not (cli_env / "cache" / "state" / "vm-9000.state.json").exists()

    def test_writes_run_log(self, cli_env):
        runner.invoke(app, ["build", "--all", "--dry-run"])

        logs = list((cli_env / "cache" / "logs").glob("template-creation-*.log"))
        assert len(logs) == 1
        assert "DRY-RUN: Create VM 9000" in logs[0].read_text()

    def test_validate_flag_builds_nothing(self, cli_env, resources):
        result = runner.invoke(app, ["build", "--validate"])

        assert result.exit_code == 0, result.output
        assert resources.calls == []

    def test_invalid_catalog_builds_nothing(
        self, cli_env, write_catalog, debian_entry, ubuntu_entry, resources, fetcher
    ):
        write_catalog([debian_entry, {**ubuntu_entry, "vm_id": 9000}])

        result = runner.invoke(app, ["build", "--all"])

        assert result.exit_code == 1
        assert resources.calls == []
        assert fetcher.calls == []

    def test_missing_setting(self, cli_env, monkeypatch, resources):
        monkeypatch.delenv("TEMPLATEFORGE_STORAGE_POOL")

        result = runner.invoke(app, ["build", "--all"])

        assert result.exit_code == 1
        assert "TEMPLATEFORGE_STORAGE_POOL" in result.output
        assert resources.calls == []

    def test_unknown_storage_pool(self, cli_env, resources):
        resources.pools.clear()

        result = runner.invoke(app, ["build", "--all"])

        assert result.exit_code == 1
        assert resources.mutating_calls == []

    def test_only_unknown_labels(self, cli_env, resources):
        result = runner.invoke(app, ["build", "Fedora 40"])

        assert result.exit_code == 1
        assert resources.mutating_calls == []

    def test_unknown_label_with_markup_still_succeeds(self, cli_env, resources):
        result = runner.invoke(app, ["build", "Debian 12", "[/x]"])

        assert result.exit_code == 0, result.output
        assert "[/x]" in result.output
        assert {c[1] for c in resources.mutating_calls} == {9000}

    def test_failure_sets_exit_code(self, cli_env, resources):
        resources.fail_on[("resize", 9000)] = CollaboratorError("disk busy")

        result = runner.invoke(app, ["build", "--all"])

        assert result.exit_code == 1
        assert 9001 in [c[1] for c in resources.calls if c[0] == "freeze_template"]

    def test_fail_fast(self, cli_env, resources):
        resources.fail_on[("resize", 9000)] = CollaboratorError("disk busy")

        result = runner.invoke(app, ["build", "--all", "--fail-fast"])

        assert result.exit_code == 1
        assert 9001 not in [c[1] for c in resources.mutating_calls]

    def test_interactive_selection(self, cli_env, monkeypatch, resources):
        monkeypatch.setattr(
            build_module, "prompt_selection", lambda catalog, console: ["Debian 12"]
        )

        result = runner.invoke(app, ["build"])

        assert result.exit_code == 0, result.output
        assert {c[1] for c in resources.mutating_calls} == {9000}

    def test_skip_unchanged_flag(self, cli_env, resources):
        assert runner.invoke(app, ["build", "--all", "--skip-unchanged"]).exit_code == 0
        first = len(resources.mutating_calls)

        result = runner.invoke(app, ["build", "--all", "--skip-unchanged"])

        assert result.exit_code == 0, result.output
        assert len(resources.mutating_calls) == first


# ---------------------------------------------------------------------------
# Test: validate / list
# ---------------------------------------------------------------------------


class TestValidateCommand:
    def test_valid(self, cli_env):
        result = runner.invoke(app, ["validate"])
        assert result.exit_code == 0, result.output
        assert "Validation completed successfully" in result.output

    def test_invalid_catalog_lists_violations(self, cli_env, write_catalog, debian_entry):
        write_catalog([debian_entry, {**debian_entry, "label": "Copy"}])

        result = runner.invoke(app, ["validate"])

        assert result.exit_code == 1
        assert "duplicate vm_id 9000" in result.output

    def test_catalog_only_ignores_settings(self, cli_env, monkeypatch):
        monkeypatch.delenv("TEMPLATEFORGE_TIMEZONE")
        assert runner.invoke(app, ["validate"]).exit_code == 1
        assert runner.invoke(app, ["validate", "--catalog-only"]).exit_code == 0


class TestListCommand:
    def test_lists_catalog_and_builds(self, cli_env):
        runner.invoke(app, ["build", "Debian 12"])

        result = runner.invoke(app, ["list"])

        assert result.exit_code == 0, result.output
        assert "Debian 12" in result.output
        assert "Ubuntu 24.04" in result.output
        assert "9001" in result.output
