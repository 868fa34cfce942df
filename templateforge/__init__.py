"""templateforge: idempotent Proxmox VE template builder.

Fetches upstream cloud images, sanitizes and customizes them, registers them
as VMs and freezes them into templates. Each image is rebuilt only when its
source or build configuration changed since the last successful build.
"""

__version__ = "0.1.0"
__description__ = "Idempotent Proxmox VE cloud-image template builder"

from templateforge.core.orchestrator import Orchestrator
from templateforge.cli.app import app as cli

__all__ = ["Orchestrator", "cli", "__version__"]
