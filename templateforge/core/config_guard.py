"""Startup configuration guard: fails hard before any artifact runs.

The guard validates the settings every build depends on and resolves the
credential material (authorized keys, admin password) exactly once. All
violations are collected and reported together in a single
``ConfigurationError``.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from pydantic import BaseModel, ConfigDict, SecretStr

from templateforge.config import BuilderSettings
from templateforge.core.hasher import file_digest

logger = logging.getLogger(__name__)

REQUIRED_SETTINGS: list[str] = [
    "download_dir",
    "storage_pool",
    "vm_ram",
    "vm_cores",
    "disk_size",
    "net_bridge",
    "ipconfig",
    "authorized_keys",
    "timezone",
]

# Example values shipped in .env.example that must be edited before use.
PLACEHOLDERS: dict[str, str] = {
    "download_dir": "/PATH/TO/templates",
    "storage_pool": "<YOUR_STORAGE_POOL>",
    "searchdomain": "<YOUR-SEARCH-DOMAIN>",
    "nameserver": "<YOUR-NAMESERVER-IP>",
}


class ConfigurationError(RuntimeError):
    """Raised when settings or credential files make a build impossible.

    This error must not be caught and ignored; the process should exit
    before touching any collaborator.
    """


class Credentials(BaseModel):
    """Credential material resolved at startup."""

    model_config = ConfigDict(frozen=True)

    authorized_keys: Path
    authorized_keys_hash: str
    admin_password: SecretStr | None = None

    @property
    def password_value(self) -> str | None:
        if self.admin_password is None:
            return None
        return self.admin_password.get_secret_value()


def enforce_settings(settings: BuilderSettings) -> None:
    """Validate all required settings and reject unedited placeholders.

    Raises
    ------
    ConfigurationError
        Listing every violation found.
    """
    violations: list[str] = []

    for name in REQUIRED_SETTINGS:
        value = getattr(settings, name)
        if value is None or str(value).strip() == "":
            violations.append(
                f"Required setting {name} is not set. "
                f"Configure TEMPLATEFORGE_{name.upper()} in .env or the environment."
            )

    for name, placeholder in PLACEHOLDERS.items():
        value = getattr(settings, name)
        if value is not None and str(value) == placeholder:
            violations.append(
                f"{name} is still the placeholder {placeholder!r}. Please configure it."
            )

    for name in ("vm_ram", "vm_cores"):
        value = getattr(settings, name)
        if value is not None and value <= 0:
            violations.append(f"{name} must be a positive integer, got {value}.")

    if violations:
        msg = "Configuration check failed.\n" + "\n".join(
            f"  - {v}" for v in violations
        )
        logger.critical(msg)
        raise ConfigurationError(msg)


def resolve_credentials(settings: BuilderSettings) -> Credentials:
    """Read the authorized-keys file and the optional admin password.

    The password comes from ``admin_password`` if set, else from
    ``admin_password_file`` when that file exists. No password means the
    default user is SSH-key-only.
    """
    keys_path = settings.authorized_keys
    if keys_path is None or not Path(keys_path).is_file():
        raise ConfigurationError(f"authorized_keys file not found at: {keys_path}")
    try:
        keys_hash = file_digest(Path(keys_path))
    except OSError as exc:
        raise ConfigurationError(
            f"authorized_keys file {keys_path} is unreadable: {exc}"
        ) from exc

    password = settings.admin_password
    password_file = settings.admin_password_file
    if password is None and password_file is not None and Path(password_file).is_file():
        try:
            text = Path(password_file).read_text(encoding="utf-8").rstrip("\n")
        except OSError as exc:
            raise ConfigurationError(
                f"admin_password_file {password_file} is unreadable: {exc}"
            ) from exc
        password = SecretStr(text) if text else None

    if password is None:
        logger.info(
            "No admin password set; %r will be SSH-key-only.", settings.default_user
        )

    return Credentials(
        authorized_keys=Path(keys_path),
        authorized_keys_hash=keys_hash,
        admin_password=password,
    )


def check_binaries(names: list[str]) -> None:
    """Fail if any required external command is missing from PATH."""
    missing = [name for name in names if shutil.which(name) is None]
    if missing:
        msg = (
            "Required command(s) not found: "
            + ", ".join(missing)
            + ". Please install them and retry."
        )
        logger.critical(msg)
        raise ConfigurationError(msg)
