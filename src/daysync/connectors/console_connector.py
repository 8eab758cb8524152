# src/daysync/connectors/console_connector.py

from __future__ import annotations

import logging
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.state import AppState

logger = logging.getLogger(__name__)

EXIT_COMMANDS = ("/exit", "/quit")


def _stamp(text: str) -> str:
    return f"[{datetime.now().astimezone():%H:%M:%S}] {text}"


def _say(text: str) -> None:
    print(_stamp(text), flush=True)


def _prompt(state: AppState) -> str:
    net = "on" if state.connectivity.is_online() else "off"
    pending = state.coordinator.get_pending_operation_count()
    if pending:
        return f"{state.current_date} [{net}, {pending} queued] > "
    return f"{state.current_date} [{net}] > "


def _report_sync(success: bool, error: str | None) -> None:
    # Runs on the sync thread.
    _say("[SYNC] queue replayed." if success else f"[SYNC] {error or 'failed'}")


def _to_command(line: str) -> str:
    # Plain text is shorthand for /add.
    return line if line.startswith("/") else f"/add {line}"


def run_console_loop(state: AppState) -> None:
    """Blocking REPL on stdin. Returns on /exit, EOF or Ctrl+C."""
    logger.info("Console started (day=%s).", state.current_date)
    _say("Type /help for commands, plain text to add a task, /exit to quit.")

    state.coordinator.add_sync_listener(_report_sync)
    try:
        while True:
            try:
                line = input(_prompt(state)).strip()
            except (EOFError, KeyboardInterrupt):
                print()
                logger.info("Console input closed.")
                break

            if not line:
                continue
            if line.lower() in EXIT_COMMANDS:
                break

            try:
                with state.lock:
                    reply = command_registry.handle(state, _to_command(line), emit=_say)
            except Exception:
                logger.exception("Command %r crashed.", line)
                reply = "Internal error while handling a command."

            if reply is not None:
                _say(reply)
    finally:
        state.coordinator.remove_sync_listener(_report_sync)

    logger.info("Console finished.")
