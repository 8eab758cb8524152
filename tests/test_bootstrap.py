# tests/test_bootstrap.py

from __future__ import annotations

import asyncio
from pathlib import Path
from types import SimpleNamespace

import pytest

from daysync.cli.bootstrap import create_initial_state
from daysync.config import Settings, normalize_token
from daysync.connectors.sync_runner import start_sync_in_background
from daysync.net.connectivity import ManualConnectivity, ProbeConnectivity
from daysync.net.remote_client import HttpTaskClient, UnconfiguredTaskClient
from daysync.tasks.task_api import window_for
from daysync.tasks.task_models import ServerRef

from .conftest import DAY


def test_normalize_token() -> None:
    assert normalize_token("abc") == "Bearer abc"
    assert normalize_token("bearer  abc ") == "Bearer abc"
    assert normalize_token("   ") is None
    assert normalize_token(None) is None


def test_settings_from_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("DAYSYNC_BASE_URL", "https://example.test/api/v4/")
    monkeypatch.setenv("DAYSYNC_AUTH_TOKEN", "tok")
    monkeypatch.setenv("DAYSYNC_WORKSPACE_ID", "444")
    monkeypatch.setenv("DAYSYNC_MAX_RETRY_COUNT", "0")
    monkeypatch.setenv("DAYSYNC_WINDOW_DAYS_BACK", "nope")
    monkeypatch.setenv("DAYSYNC_DATA_DIR", str(tmp_path))
    monkeypatch.delenv("DAYSYNC_DB_PATH", raising=False)

    s = Settings.from_env()

    assert s.base_url == "https://example.test/api/v4"
    assert s.auth_token == "Bearer tok"
    assert s.workspace_id == 444
    assert s.max_retry_count == 1
    assert s.window_days_back == 3
    assert s.db_path == tmp_path / "daysync.sqlite3"
    assert s.remote_configured


def test_settings_without_token_is_offline(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DAYSYNC_AUTH_TOKEN", raising=False)
    monkeypatch.delenv("TEUXDEUX_TOKEN", raising=False)
    assert not Settings.from_env().remote_configured


def test_window_for() -> None:
    assert window_for("2025-10-17") == ("2025-10-14", "2025-10-20")
    assert window_for("2025-01-01", days_back=1, days_forward=0) == ("2024-12-31", "2025-01-01")


def test_bootstrap_wires_http_client_and_probe(settings: SimpleNamespace) -> None:
    state = create_initial_state(settings=settings)

    assert isinstance(state.remote, HttpTaskClient)
    assert isinstance(state.connectivity, ProbeConnectivity)
    assert state.connectivity.host == "tasks.example.test"
    assert state.connectivity.port == 443
    assert state.coordinator.max_retry_count == 3
    assert settings.db_path.exists()


def test_bootstrap_without_remote_stays_offline(settings: SimpleNamespace) -> None:
    settings.remote_configured = False
    state = create_initial_state(settings=settings)

    assert isinstance(state.remote, UnconfiguredTaskClient)
    assert isinstance(state.connectivity, ManualConnectivity)
    assert not state.connectivity.is_online()


def test_background_runner_hosts_the_coordinator(state) -> None:
    runner = start_sync_in_background(state)
    assert runner is not None
    try:
        assert state.runner is runner
        state.store.upsert_task(ServerRef(5), text="a", done=False, date=DAY)

        res = runner.call(state.coordinator.toggle_done(ServerRef(5), True), timeout=5.0)
        assert res.success and res.queued

        # Reconnecting on another thread schedules the replay on the runner's loop.
        done = runner.call(_wait_for_sync(state), timeout=5.0)
        assert done
        assert state.store.pending_operation_count() == 0
        assert state.remote.ops() == ["TOGGLE_DONE"]
    finally:
        runner.stop()
        runner.join(timeout=5.0)

    assert not runner.thread.is_alive()


async def _wait_for_sync(state) -> bool:
    loop = asyncio.get_running_loop()
    finished = asyncio.Event()
    state.coordinator.add_sync_listener(lambda ok, err: loop.call_soon_threadsafe(finished.set))
    await loop.run_in_executor(None, state.connectivity.set_online, True)
    await asyncio.wait_for(finished.wait(), timeout=5.0)
    return True
