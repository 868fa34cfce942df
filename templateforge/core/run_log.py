"""Per-run logging: a leveled console stream plus a full-detail log file.

Three levels matter to the operator:

* SUMMARY (custom level 25): progress milestones, always on the console;
* INFO: every step description;
* DEBUG: literal collaborator arguments.

Console verbosity 1/2/3 selects SUMMARY/INFO/DEBUG. The log file always
records DEBUG.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

SUMMARY = 25
logging.addLevelName(SUMMARY, "SUMMARY")

ROOT_LOGGER = "templateforge"

_VERBOSITY_LEVELS: dict[int, int] = {
    1: SUMMARY,
    2: logging.INFO,
    3: logging.DEBUG,
}

_FILE_FORMATTER = logging.Formatter(
    "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
)


def console_level(verbosity: int) -> int:
    """Map a 1..3 verbosity count to a logging level (clamped)."""
    return _VERBOSITY_LEVELS[max(1, min(3, verbosity))]


def log_summary(logger: logging.Logger, msg: str, *args: object) -> None:
    """Log at SUMMARY level."""
    logger.log(SUMMARY, msg, *args)


def setup_run_logging(
    log_dir: Path,
    verbosity: int = 1,
    *,
    console: Console | None = None,
) -> Path:
    """Attach a console handler and a per-run file handler to the package logger.

    Returns the path of the new log file
    (``template-creation-YYYYmmdd-HHMMSS.log``). Handlers from a previous
    call are replaced.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_file = log_dir / f"template-creation-{stamp}.log"

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(_FILE_FORMATTER)

    console_handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        show_time=False,
        markup=False,
        rich_tracebacks=False,
    )
    console_handler.setLevel(console_level(verbosity))

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    log_summary(logger, "Log file: %s", log_file)
    return log_file
