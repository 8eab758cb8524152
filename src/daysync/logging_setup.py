# src/daysync/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Loggers whose records also go to sync.log.
SYNC_TRACE_PREFIXES = ("daysync.sync.", "daysync.net.")


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep the console readable while the REPL is in use.

    daysync records pass, except the replay's DEBUG operation tables.
    Everything else (httpx, httpcore, py.warnings) needs ERROR+.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        if name.startswith("daysync."):
            return not (name.startswith("daysync.sync.") and record.levelno < logging.INFO)
        return record.levelno >= logging.ERROR


class _SyncTraceFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return record.name.startswith(SYNC_TRACE_PREFIXES)


def _attach(
    root: logging.Logger,
    handler: logging.Handler,
    level: int,
    *filters: logging.Filter,
) -> None:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    for f in filters:
        handler.addFilter(f)
    root.addHandler(handler)


def setup_logging(
    *,
    log_dir: str | Path = ".local/daysync",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Configure the root logger. Call once, before the first log line.

    Three sinks:
    - stderr, filtered for interactive use;
    - <log_dir>/daysync.log with every record at file_level;
    - <log_dir>/sync.log with queue replay and transport traces only,
      which is where to look when an operation was dropped.

    Returns the log directory.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)

    _attach(root, logging.StreamHandler(sys.stderr), console_level, _ConsoleNoiseFilter())
    _attach(root, logging.FileHandler(log_dir / "daysync.log", encoding="utf-8"), file_level)
    _attach(
        root,
        logging.FileHandler(log_dir / "sync.log", encoding="utf-8"),
        logging.DEBUG,
        _SyncTraceFilter(),
    )

    # warnings.warn(...) -> 'py.warnings'
    logging.captureWarnings(True)
    return log_dir
