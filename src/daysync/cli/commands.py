# src/daysync/cli/commands.py

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections.abc import Callable, Coroutine
from typing import Any, TypeVar, cast

from ..core.state import AppState
from ..sync.coordinator import MutationResult
from ..tasks.task_api import current_window, resolve_task, shift_date, tasks_for_day, today
from ..tasks.task_models import SyncStatus, Task, validate_date

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

T = TypeVar("T")

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /add, /sync, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except Exception:
            nparams = 3

        if nparams >= 3:
            h3 = cast(CommandHandler3, handler)
            return h3(state, args, emit)

        h2 = cast(CommandHandler2, handler)
        return h2(state, args)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _run(state: AppState, coro: Coroutine[Any, Any, T]) -> T:
    """Run a coordinator coroutine on the background loop (or inline when there is none)."""
    if state.runner is not None:
        return state.runner.call(coro)
    return asyncio.run(coro)


def _format_task(task: Task) -> str:
    mark = "x" if task.done else " "
    sync = "" if task.sync_status is SyncStatus.SYNCED else " *"
    local = " (local)" if task.is_local_only else ""
    return f"  [{mark}] #{task.display_id}{local} {task.text}{sync}"


def _format_day(day: str, tasks: list[Task]) -> str:
    if not tasks:
        return f"{day}: no tasks."
    lines = [f"{day}:"]
    lines.extend(_format_task(t) for t in tasks)
    return "\n".join(lines)


def _mutation_reply(res: MutationResult, ok: str) -> str:
    if not res.success:
        return f"Failed: {res.error or 'unknown error'}"
    if res.queued:
        return f"{ok} (queued for sync)"
    return ok


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str]) -> str:
    s = state.settings
    co = state.coordinator
    outcome = co.last_outcome
    last = "never" if outcome is None else outcome.phase.value + (f" ({outcome.error})" if outcome.error else "")
    override = state.connectivity.override
    net = "ONLINE" if state.connectivity.is_online() else "OFFLINE"
    if override is not None:
        net += " (forced)"
    return (
        "Status:\n"
        f"  Network: {net}\n"
        f"  Remote: {getattr(s, 'base_url', '?')} workspace={getattr(s, 'workspace_id', '?')}\n"
        f"  Sync: {co.phase.value}, last run: {last}\n"
        f"  Pending operations: {co.get_pending_operation_count()}\n"
        f"  Current day: {state.current_date}"
    )


def cmd_list(state: AppState, args: list[str]) -> str:
    """
    /list          -> tasks for the current day
    /list <date>   -> switch to <date> (YYYY-MM-DD) and list it
    """
    if args:
        try:
            state.current_date = validate_date(args[0])
        except ValueError:
            return "Usage: /list [YYYY-MM-DD]"
    return _format_day(state.current_date, tasks_for_day(state))


def cmd_today(state: AppState, args: list[str]) -> str:
    state.current_date = today()
    return _format_day(state.current_date, tasks_for_day(state))


def cmd_next(state: AppState, args: list[str]) -> str:
    state.current_date = shift_date(state.current_date, 1)
    return _format_day(state.current_date, tasks_for_day(state))


def cmd_prev(state: AppState, args: list[str]) -> str:
    state.current_date = shift_date(state.current_date, -1)
    return _format_day(state.current_date, tasks_for_day(state))


def cmd_refresh(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    start, end = current_window(state)
    if emit and state.connectivity.is_online():
        with contextlib.suppress(Exception):
            emit(f"[SYNC] Fetching {start}..{end}...")
    _run(state, state.coordinator.refresh_range(start, end))
    return _format_day(state.current_date, tasks_for_day(state))


def cmd_add(state: AppState, args: list[str]) -> str:
    text = " ".join(args).strip()
    if not text:
        return "Usage: /add <text>"
    res = _run(state, state.coordinator.create_task(text, state.current_date))
    return _mutation_reply(res, f"Added to {state.current_date}.")


def _resolve_or_reply(state: AppState, raw: str) -> Task | str:
    task = resolve_task(state, raw)
    if task is None:
        return f"No task with id {raw}."
    return task


def cmd_edit(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        return "Usage: /edit <id> <text>"
    task = _resolve_or_reply(state, args[0])
    if isinstance(task, str):
        return task
    res = _run(state, state.coordinator.update_task(task.ref, " ".join(args[1:])))
    return _mutation_reply(res, "Updated.")


def _set_done(state: AppState, args: list[str], done: bool) -> str:
    if len(args) != 1:
        return f"Usage: /{'done' if done else 'undone'} <id>"
    task = _resolve_or_reply(state, args[0])
    if isinstance(task, str):
        return task
    res = _run(state, state.coordinator.toggle_done(task.ref, done))
    return _mutation_reply(res, "Marked done." if done else "Marked not done.")


def cmd_done(state: AppState, args: list[str]) -> str:
    return _set_done(state, args, True)


def cmd_undone(state: AppState, args: list[str]) -> str:
    return _set_done(state, args, False)


def cmd_rm(state: AppState, args: list[str]) -> str:
    if len(args) != 1:
        return "Usage: /rm <id>"
    task = _resolve_or_reply(state, args[0])
    if isinstance(task, str):
        return task
    res = _run(state, state.coordinator.delete_task(task.ref))
    return _mutation_reply(res, "Deleted.")


def cmd_move(state: AppState, args: list[str]) -> str:
    """
    /move <id> <date>             -> move to the top of <date>
    /move <id> <date> <position>  -> move to <position> on <date>
    """
    if len(args) not in (2, 3):
        return "Usage: /move <id> <YYYY-MM-DD> [position]"
    task = _resolve_or_reply(state, args[0])
    if isinstance(task, str):
        return task
    try:
        day = validate_date(args[1])
        position = int(args[2]) if len(args) == 3 else 0
    except ValueError:
        return "Usage: /move <id> <YYYY-MM-DD> [position]"
    res = _run(state, state.coordinator.reposition_task(task.ref, day, position))
    return _mutation_reply(res, f"Moved to {day}.")


def cmd_sync(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    pending = state.coordinator.get_pending_operation_count()
    if emit and pending:
        with contextlib.suppress(Exception):
            emit(f"[SYNC] Replaying {pending} pending operation(s)...")
    outcome = _run(state, state.coordinator.sync_pending_operations())
    if outcome is None:
        return "Sync already in progress."
    if outcome.success:
        return f"Sync complete: {outcome.processed} sent, {outcome.dropped} dropped."
    return (
        f"Sync {outcome.phase.value}: {outcome.error} "
        f"({outcome.processed} sent, {outcome.failed} failed, {outcome.dropped} dropped)"
    )


def cmd_pending(state: AppState, args: list[str]) -> str:
    ops = state.store.list_pending_operations()
    if not ops:
        return "No pending operations."
    lines = [f"Pending operations ({len(ops)}):"]
    for op in ops:
        target = f"server:{op.todo_id}" if op.is_resolved else f"local:{op.local_todo_id}"
        lines.append(f"  {op.id}. {op.type.value} {target} retries={op.retry_count}")
    return "\n".join(lines)


def cmd_net(state: AppState, args: list[str]) -> str:
    """
    /net        -> show connectivity
    /net on     -> force online
    /net off    -> force offline
    /net auto   -> follow the probe again
    """
    conn = state.connectivity
    if not args:
        mode = "auto" if conn.override is None else "forced"
        return f"Network is {'ONLINE' if conn.is_online() else 'OFFLINE'} ({mode}). Use /net on|off|auto."

    arg = args[0].lower()
    if arg in ("on", "1", "true", "yes"):
        conn.set_override(True)
    elif arg in ("off", "0", "false", "no"):
        conn.set_override(False)
    elif arg == "auto":
        conn.set_override(None)
    else:
        return "Usage: /net on | /net off | /net auto"

    logger.debug("Connectivity override set to %s", conn.override)
    return f"Network is now {'ONLINE' if conn.is_online() else 'OFFLINE'}."


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show network, sync state and pending count.")
registry.register("list", cmd_list, help_text="List tasks: /list [YYYY-MM-DD].", aliases=["ls"])
registry.register("today", cmd_today, help_text="Jump to today.")
registry.register("next", cmd_next, help_text="Go to the next day.")
registry.register("prev", cmd_prev, help_text="Go to the previous day.")
registry.register("refresh", cmd_refresh, help_text="Fetch the current window from the server.")
registry.register("add", cmd_add, help_text="Add a task to the current day: /add <text>.")
registry.register("edit", cmd_edit, help_text="Change task text: /edit <id> <text>.")
registry.register("done", cmd_done, help_text="Mark a task done: /done <id>.")
registry.register("undone", cmd_undone, help_text="Mark a task not done: /undone <id>.")
registry.register("rm", cmd_rm, help_text="Delete a task: /rm <id>.", aliases=["del"])
registry.register("move", cmd_move, help_text="Move a task: /move <id> <YYYY-MM-DD> [position].")
registry.register("sync", cmd_sync, help_text="Replay pending operations now.")
registry.register("pending", cmd_pending, help_text="Show the pending-operation queue.")
registry.register("net", cmd_net, help_text="Connectivity: /net on | /net off | /net auto.")
