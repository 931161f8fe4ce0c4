from __future__ import annotations

import logging
import os
from pathlib import Path

from .lib.env import PATHS

DEFAULT_LOG_PATH = PATHS.log_default
FALLBACK_LOG_NAME = "xdr-installer.log"


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    level: int = logging.INFO,
    also_console: bool = True,
) -> str:
    """Configure logging.

    Every decision and every (simulated) command goes to the installer log
    next to the state file, so an interrupted run can be diagnosed after the
    reboot.

    Notes:
    - If the requested directory is not writable we fall back to a file in
      the current working directory.
    - The interactive menu passes ``also_console=False`` so log lines do not
      interleave with prompts; the file still gets everything.

    Returns the actual file path being used.
    """

    logger = logging.getLogger()
    logger.setLevel(level)

    # Avoid duplicate handlers if configure_logging() is called multiple times.
    if getattr(logger, "_xdr_configured", False):
        return getattr(logger, "_xdr_log_path", log_path)

    fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    chosen_path = _usable_log_path(log_path)
    handlers: list[logging.Handler] = [logging.FileHandler(chosen_path)]
    if also_console:
        handlers.append(logging.StreamHandler())

    for h in handlers:
        h.setFormatter(fmt)
        logger.addHandler(h)

    setattr(logger, "_xdr_configured", True)
    setattr(logger, "_xdr_log_path", chosen_path)

    logging.getLogger(__name__).info(
        "Logging initialized (requested=%s, actual=%s)", log_path, chosen_path
    )
    return chosen_path


def _usable_log_path(log_path: str) -> str:
    """``log_path`` when it can be created and appended to, else a file in the cwd."""

    try:
        Path(os.path.dirname(log_path) or ".").mkdir(parents=True, exist_ok=True)
        with open(log_path, "a", encoding="utf-8"):
            pass
    except OSError:
        return str(Path.cwd() / FALLBACK_LOG_NAME)
    return log_path
