"""Bounded subprocess execution for shell-based collaborators.

Every external command runs with a deadline. The description is logged at
INFO and the literal argv at DEBUG, with values that follow secret-bearing
flags masked.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Sequence

from templateforge.collaborators.base import CollaboratorError, CollaboratorTimeoutError

logger = logging.getLogger(__name__)

SECRET_FLAGS: frozenset[str] = frozenset({"--cipassword", "--password"})

_MASK = "********"


def mask_argv(argv: Sequence[str]) -> list[str]:
    """Return a copy of *argv* with secret flag values replaced."""
    masked: list[str] = []
    hide_next = False
    for arg in argv:
        if hide_next:
            masked.append(_MASK)
            hide_next = False
            continue
        masked.append(arg)
        if arg in SECRET_FLAGS:
            hide_next = True
    return masked


class CommandRunner:
    """Runs external commands with a default deadline.

    Parameters
    ----------
    timeout:
        Default deadline in seconds for each command.
    """

    def __init__(self, timeout: float = 600.0) -> None:
        self.timeout = timeout

    def run(
        self,
        argv: Sequence[str],
        *,
        description: str = "",
        timeout: float | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        """Run *argv* and return the completed process.

        Raises ``CollaboratorTimeoutError`` when the deadline expires and
        ``CollaboratorError`` when the binary is missing or, with *check*,
        when it exits non-zero.
        """
        argv = [str(a) for a in argv]
        shown = shlex.join(mask_argv(argv))
        if description:
            logger.info("%s", description)
        logger.debug("       running: %s", shown)

        deadline = self.timeout if timeout is None else timeout
        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=deadline,
            )
        except subprocess.TimeoutExpired as exc:
            raise CollaboratorTimeoutError(
                f"{argv[0]} did not finish within {deadline:g}s: {shown}"
            ) from exc
        except OSError as exc:
            raise CollaboratorError(f"Could not run {argv[0]}: {exc}") from exc

        if result.stdout.strip():
            logger.debug("       stdout: %s", result.stdout.strip())
        if result.stderr.strip():
            logger.debug("       stderr: %s", result.stderr.strip())

        if check and result.returncode != 0:
            detail = result.stderr.strip() or result.stdout.strip()
            raise CollaboratorError(
                f"{argv[0]} exited with code {result.returncode}: {shown}"
                + (f"\n{detail}" if detail else "")
            )
        return result
