"""Logging setup: a full DEBUG run log on disk plus a rich console handler."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

_FILE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
_NOISY_LOGGERS = ("kubernetes", "urllib3", "asyncio")
_HANDLER_MARKER = "_pv_transfer_handler"


def run_log_path(log_dir: Path, command: str, started: datetime | None = None) -> Path:
    """Return `<log_dir>/<command>-YYYYmmdd-HHMMSS.log`."""

    stamp = (started or datetime.now()).strftime("%Y%m%d-%H%M%S")
    return log_dir / f"{command}-{stamp}.log"


def configure_logging(
    *,
    log_dir: Path,
    command: str,
    verbose: bool = False,
    console: Console | None = None,
) -> Path:
    """Install the run log and console handlers and return the run log path."""

    log_dir.mkdir(parents=True, exist_ok=True)
    path = run_log_path(log_dir, command)

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(logging.DEBUG)

    file_handler = logging.FileHandler(path, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
    setattr(file_handler, _HANDLER_MARKER, True)

    console_handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        markup=False,
        rich_tracebacks=verbose,
    )
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    setattr(console_handler, _HANDLER_MARKER, True)

    root.addHandler(file_handler)
    root.addHandler(console_handler)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return path


__all__ = ["configure_logging", "run_log_path"]
