# tests/test_console.py

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from daysync.connectors.console_connector import run_console_loop
from daysync.logging_setup import setup_logging

from .conftest import DAY


def _feed(monkeypatch: pytest.MonkeyPatch, lines: list[str]) -> None:
    it = iter(lines)

    def fake_input(prompt: str = "") -> str:
        try:
            return next(it)
        except StopIteration:
            raise EOFError from None

    monkeypatch.setattr("builtins.input", fake_input)


def test_console_plain_text_adds_a_task(state, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    _feed(monkeypatch, ["buy milk", "", "/pending", "/exit", "/add never reached"])

    run_console_loop(state)

    out = capsys.readouterr().out
    assert f"Added to {DAY}. (queued for sync)" in out
    assert "CREATE local:" in out
    assert state.store.count_tasks() == 1
    assert state.coordinator.get_pending_operation_count() == 1


def test_console_stops_on_eof(state, monkeypatch: pytest.MonkeyPatch) -> None:
    _feed(monkeypatch, [])
    run_console_loop(state)
    assert state.store.count_tasks() == 0


def test_setup_logging_splits_sync_traces(tmp_path: Path) -> None:
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        setup_logging(log_dir=tmp_path, console_level=logging.CRITICAL)
        logging.getLogger("daysync.sync.coordinator").debug("op table")
        logging.getLogger("daysync.cli.commands").info("command ran")
        for h in root.handlers:
            h.flush()

        main_log = (tmp_path / "daysync.log").read_text(encoding="utf-8")
        sync_log = (tmp_path / "sync.log").read_text(encoding="utf-8")
        assert "op table" in main_log and "command ran" in main_log
        assert "op table" in sync_log
        assert "command ran" not in sync_log
    finally:
        for h in list(root.handlers):
            root.removeHandler(h)
            h.close()
        for h in saved_handlers:
            root.addHandler(h)
        root.setLevel(saved_level)
        logging.captureWarnings(False)
