"""Builder configuration: env-driven, resolved once at startup.

Centralized config using pydantic-settings. Reads from a .env file and
TEMPLATEFORGE_* environment variables. The CLI applies its overrides with
``model_copy(update=...)`` and then passes the frozen instance explicitly to
every component; nothing below the CLI reads the process environment.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SYSPREP_OPS = (
    "bash-history,logfiles,ssh-hostkeys,machine-id,package-manager-cache"
)


class BuilderSettings(BaseSettings):
    """Host, VM and cloud-init settings shared by every template build.

    Examples
    --------
    Override via environment::

        export TEMPLATEFORGE_DOWNLOAD_DIR=/var/lib/vz/template/cloud
        export TEMPLATEFORGE_STORAGE_POOL=local-zfs
        export TEMPLATEFORGE_VM_RAM=2048

    Or via .env file::

        TEMPLATEFORGE_NET_BRIDGE=vmbr0
        TEMPLATEFORGE_IPCONFIG=dhcp
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="TEMPLATEFORGE_",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Image cache; logs/ and state/ live underneath
    download_dir: Path | None = None
    catalog_path: Path = Path("images.json")

    # Proxmox target
    storage_pool: str = ""
    vm_ram: int | None = None  # MiB
    vm_cores: int | None = None
    disk_size: str = ""  # qm resize syntax, e.g. "32G"
    net_bridge: str = ""

    # cloud-init
    ipconfig: str = ""
    searchdomain: str = ""
    nameserver: str = ""
    authorized_keys: Path | None = None
    admin_password_file: Path | None = None
    admin_password: SecretStr | None = None
    default_user: str = "local-admin"
    timezone: str = ""

    # Image preparation
    sysprep_ops: str = DEFAULT_SYSPREP_OPS

    # Behaviour toggles
    skip_if_base_unchanged: bool = False
    resize_wait_enabled: bool = True
    resize_wait_before: float = 30.0
    resize_wait_after: float = 60.0

    # Deadlines (seconds) for collaborator calls
    command_timeout: float = 600.0
    import_timeout: float = 3600.0
    fetch_timeout: float = 1800.0

    @property
    def log_dir(self) -> Path:
        """Per-run log files: ``<download_dir>/logs``."""
        return Path(self.download_dir or ".") / "logs"

    @property
    def state_dir(self) -> Path:
        """Per-artifact state records: ``<download_dir>/state``."""
        return Path(self.download_dir or ".") / "state"
