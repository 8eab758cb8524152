# src/daysync/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (store/remote/connectivity/sync).
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.ports import RemoteTaskClient
from ..core.state import AppState
from ..net.connectivity import ConnectivitySignal, ManualConnectivity, ProbeConnectivity, probe_target
from ..net.remote_client import HttpTaskClient, UnconfiguredTaskClient
from ..sync.coordinator import SyncCoordinator
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)


def build_remote_client(settings) -> RemoteTaskClient:
    if not getattr(settings, "remote_configured", False):
        logger.warning("Remote service not configured (set DAYSYNC_AUTH_TOKEN); running offline only.")
        return UnconfiguredTaskClient()
    try:
        return HttpTaskClient.from_settings(settings)
    except RuntimeError:
        logger.exception("Failed to build the remote client; running offline only.")
        return UnconfiguredTaskClient()


def build_connectivity(settings, remote: RemoteTaskClient) -> ConnectivitySignal:
    """
    Probe the remote host when a real client exists.

    Without one there is nothing to reach, so the signal stays offline and
    mutations keep queueing.
    """
    if isinstance(remote, UnconfiguredTaskClient):
        return ManualConnectivity(initial=False)
    try:
        host, port = probe_target(settings.base_url)
    except ValueError:
        logger.exception("Cannot derive probe target from base_url=%r", settings.base_url)
        return ManualConnectivity(initial=False)
    return ProbeConnectivity(
        host,
        port,
        interval_seconds=settings.probe_interval_seconds,
        timeout_seconds=settings.probe_timeout_seconds,
    )


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store = TaskStore(settings.db_path)
    remote = build_remote_client(settings)
    connectivity = build_connectivity(settings, remote)
    coordinator = SyncCoordinator(
        store,
        remote,
        connectivity,
        max_retry_count=settings.max_retry_count,
    )

    return AppState(
        settings=settings,
        store=store,
        remote=remote,
        connectivity=connectivity,
        coordinator=coordinator,
    )
