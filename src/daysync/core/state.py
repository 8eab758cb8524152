# src/daysync/core/state.py

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Any

from .ports import RemoteTaskClient

if TYPE_CHECKING:
    from ..connectors.sync_runner import SyncBackgroundRunner
    from ..net.connectivity import ConnectivitySignal
    from ..sync.coordinator import SyncCoordinator
    from ..tasks.task_store import TaskStore


@dataclass
class AppState:
    # Settings (or a SimpleNamespace in tests).
    settings: Any

    store: TaskStore
    remote: RemoteTaskClient
    connectivity: ConnectivitySignal
    coordinator: SyncCoordinator

    # Day shown by /list, /next, /prev.
    current_date: str = field(default_factory=lambda: date.today().isoformat())

    # Set once the background loop is running.
    runner: SyncBackgroundRunner | None = None

    lock: threading.RLock = field(default_factory=threading.RLock)
