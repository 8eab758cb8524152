# tests/test_commands.py

from __future__ import annotations

import logging

from daysync.cli.commands import CommandRegistry, registry
from daysync.tasks.task_api import resolve_task
from daysync.tasks.task_models import ServerRef

from .conftest import DAY


def test_command_registry_routes_2_and_3_params(state) -> None:
    reg = CommandRegistry()
    called = {"h2": 0, "h3": 0}

    def h2(state, args):
        called["h2"] += 1
        return "h2"

    def h3(state, args, emit):
        called["h3"] += 1
        if emit is not None:
            emit("note")
        return "h3"

    reg.register("a", h2, "a")
    reg.register("b", h3, "b", aliases=["bee"])

    notes: list[str] = []
    assert reg.handle(state, "/a x") == "h2"
    assert reg.handle(state, "/BEE y", emit=notes.append) == "h3"
    assert called == {"h2": 1, "h3": 1}
    assert notes == ["note"]
    assert "/a - a" in reg.build_help()


def test_command_registry_unknown_and_non_command(state) -> None:
    reg = CommandRegistry()
    assert reg.handle(state, "hello") is None
    assert "Unknown command" in (reg.handle(state, "/nope") or "")
    assert "Empty command" in (reg.handle(state, "/") or "")


def test_offline_add_list_and_pending(state) -> None:
    reply = registry.handle(state, "/add buy milk")
    assert reply == f"Added to {DAY}. (queued for sync)"

    listing = registry.handle(state, "/list") or ""
    assert "buy milk" in listing
    assert "(local)" in listing

    pending = registry.handle(state, "/pending") or ""
    assert "CREATE local:" in pending


def test_done_edit_move_rm_on_server_task(state) -> None:
    state.store.upsert_task(ServerRef(42), text="call mom", done=False, date=DAY)

    assert registry.handle(state, "/done 42") == "Marked done. (queued for sync)"
    assert registry.handle(state, "/edit 42 call dad") == "Updated. (queued for sync)"
    assert registry.handle(state, "/move 42 2025-10-18 2") == "Moved to 2025-10-18. (queued for sync)"

    row = state.store.get_task(ServerRef(42))
    assert row is not None
    assert (row.text, row.done, row.date) == ("call dad", True, "2025-10-18")

    assert registry.handle(state, "/rm 42") == "Deleted. (queued for sync)"
    assert state.store.get_task(ServerRef(42)) is None
    assert state.coordinator.get_pending_operation_count() == 4


def test_bad_arguments(state) -> None:
    assert registry.handle(state, "/done 999") == "No task with id 999."
    assert registry.handle(state, "/done abc") == "No task with id abc."
    assert registry.handle(state, "/move 1") == "Usage: /move <id> <YYYY-MM-DD> [position]"
    assert registry.handle(state, "/list yesterday") == "Usage: /list [YYYY-MM-DD]"
    assert registry.handle(state, "/add") == "Usage: /add <text>"


def test_day_navigation(state) -> None:
    registry.handle(state, "/next")
    assert state.current_date == "2025-10-18"
    registry.handle(state, "/prev")
    registry.handle(state, "/prev")
    assert state.current_date == "2025-10-16"
    registry.handle(state, "/list 2025-01-02")
    assert state.current_date == "2025-01-02"


def test_net_override_and_manual_sync(state) -> None:
    registry.handle(state, "/add buy milk")

    assert "OFFLINE" in (registry.handle(state, "/status") or "")
    assert registry.handle(state, "/net on") == "Network is now ONLINE."
    assert "(forced)" in (registry.handle(state, "/status") or "")

    assert registry.handle(state, "/sync") == "Sync complete: 1 sent, 0 dropped."
    assert state.store.pending_operation_count() == 0
    assert state.remote.ops() == ["CREATE"]

    assert registry.handle(state, "/net off") == "Network is now OFFLINE."
    assert "Sync interrupted: Offline" in (registry.handle(state, "/sync") or "")
    registry.handle(state, "/net auto")
    assert state.connectivity.override is None


def test_resolve_task_logs_unknown_ids(state, caplog) -> None:
    caplog.set_level(logging.DEBUG, logger="daysync.tasks.task_api")
    state.store.upsert_task(ServerRef(42), text="call mom", done=False, date=DAY)

    assert resolve_task(state, "42") is not None
    assert resolve_task(state, "7") is None
    assert resolve_task(state, "x7") is None

    messages = [r.getMessage() for r in caplog.records]
    assert "No task with id 7." in messages
    assert "Not a task id: 'x7'" in messages
