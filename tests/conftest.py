# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from daysync.core.state import AppState
from daysync.net.connectivity import ManualConnectivity
from daysync.sync.coordinator import SyncCoordinator
from daysync.tasks.task_store import TaskStore

from .fakes import FakeRemoteClient

DAY = "2025-10-17"


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and core modules.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="daysync-test",
        # Paths (tmp per test run)
        data_dir=tmp_path,
        db_path=tmp_path / "daysync.sqlite3",
        # Remote
        base_url="https://tasks.example.test/api/v4",
        auth_token="Bearer test-token",
        workspace_id=7,
        remote_configured=True,
        connect_timeout_seconds=1.0,
        read_timeout_seconds=1.0,
        probe_interval_seconds=0.05,
        probe_timeout_seconds=0.05,
        # Policy
        max_retry_count=3,
        window_days_back=3,
        window_days_forward=3,
    )


@pytest.fixture()
def store(settings: SimpleNamespace) -> TaskStore:
    return TaskStore(settings.db_path)


@pytest.fixture()
def net() -> ManualConnectivity:
    return ManualConnectivity(initial=False)


@pytest.fixture()
def remote() -> FakeRemoteClient:
    return FakeRemoteClient()


@pytest.fixture()
def coordinator(store: TaskStore, remote: FakeRemoteClient, net: ManualConnectivity) -> SyncCoordinator:
    return SyncCoordinator(store, remote, net, max_retry_count=3)


@pytest.fixture()
def state(
    settings: SimpleNamespace,
    store: TaskStore,
    remote: FakeRemoteClient,
    net: ManualConnectivity,
    coordinator: SyncCoordinator,
) -> AppState:
    """
    AppState wired with deterministic fakes.

    NOTE: We keep the real SQLite TaskStore here because its correctness is
    part of what we want to test.
    """
    return AppState(
        settings=settings,
        store=store,
        remote=remote,
        connectivity=net,
        coordinator=coordinator,
        current_date=DAY,
    )
