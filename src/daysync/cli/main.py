# src/daysync/cli/main.py

"""
CLI entrypoint.

Startup order: settings, logging, AppState, background sync service, then the
console REPL on the main thread (or a signal wait when the console is off).
"""

from __future__ import annotations

import logging
import signal
import threading

from ..cli.bootstrap import create_initial_state
from ..config import Settings, get_settings
from ..connectors.console_connector import run_console_loop
from ..connectors.sync_runner import SyncBackgroundRunner, start_sync_in_background
from ..core.state import AppState
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _console_level(settings: Settings) -> int:
    level = logging.getLevelName(str(settings.log_level).upper())
    return level if isinstance(level, int) else logging.INFO


def _install_signal_handlers(stop: threading.Event) -> None:
    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            signal.signal(sig, _handle_signal)
        except (ValueError, OSError):
            logger.debug("Cannot install handler for %s.", sig)


def _shutdown(state: AppState, runner: SyncBackgroundRunner | None) -> None:
    if runner is not None:
        runner.stop()
        runner.join(timeout=10.0)
        if runner.thread.is_alive():
            logger.warning("Sync thread did not stop in time.")

    pending = state.store.pending_operation_count()
    if pending:
        logger.info("%d operation(s) stay queued for the next start.", pending)
    state.store.close()


def main() -> None:
    settings = get_settings()
    setup_logging(log_dir=settings.data_dir, console_level=_console_level(settings))
    logger.info("Starting %s (remote configured: %s).", settings.app_name, settings.remote_configured)

    # Same settings object all the way down.
    state = create_initial_state(settings=settings)

    runner = start_sync_in_background(state)
    if runner is None:
        logger.error("Sync service unavailable; changes stay queued locally.")

    stop = threading.Event()
    _install_signal_handlers(stop)

    try:
        if settings.console_enabled:
            run_console_loop(state)
        else:
            logger.info("Console disabled, syncing in the background. Press Ctrl+C to stop.")
            stop.wait()
    finally:
        _shutdown(state, runner)
        logger.info("Bye.")


if __name__ == "__main__":
    main()
