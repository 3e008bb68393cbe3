from __future__ import annotations

import logging
from pathlib import Path

from .config import Settings


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def level_for(settings: Settings) -> int:
    if settings.debug:
        return logging.DEBUG
    if settings.verbose:
        return logging.INFO
    return logging.WARNING


def setup_logging(settings: Settings) -> Path | None:
    """Send log records to the settings' log file.

    The dashboard owns the terminal, so nothing is written to stderr while it
    runs. Returns the file in use, or None when the directory is not writable
    (logging then stays unconfigured and records are dropped).
    """
    path = Path(settings.log_file)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError:
        return None
    logging.basicConfig(
        filename=str(path),
        level=level_for(settings),
        format=LOG_FORMAT,
        force=True,
    )
    return path
