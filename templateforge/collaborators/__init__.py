"""External collaborators: VM control plane, image tooling, image download."""

from templateforge.collaborators.base import (
    CollaboratorError,
    CollaboratorTimeoutError,
    Fetcher,
    FetchResult,
    ImageTool,
    ResourceControl,
    VmSpec,
)

__all__ = [
    "CollaboratorError",
    "CollaboratorTimeoutError",
    "Fetcher",
    "FetchResult",
    "ImageTool",
    "ResourceControl",
    "VmSpec",
]
