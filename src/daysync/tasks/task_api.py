# src/daysync/tasks/task_api.py

from __future__ import annotations

import logging
from datetime import date as _date
from datetime import timedelta

from ..core.state import AppState
from .task_models import Task, validate_date

logger = logging.getLogger(__name__)


def today() -> str:
    return _date.today().isoformat()


def shift_date(day: str, days: int) -> str:
    return (_date.fromisoformat(validate_date(day)) + timedelta(days=int(days))).isoformat()


def window_for(center: str, days_back: int = 3, days_forward: int = 3) -> tuple[str, str]:
    """
    (start, end) of the display window around `center`, inclusive.

    The default is the usual H-3..H+3 week view.
    """
    return shift_date(center, -max(0, days_back)), shift_date(center, max(0, days_forward))


def current_window(state: AppState) -> tuple[str, str]:
    s = state.settings
    return window_for(
        state.current_date,
        days_back=getattr(s, "window_days_back", 3),
        days_forward=getattr(s, "window_days_forward", 3),
    )


def resolve_task(state: AppState, raw_id: str) -> Task | None:
    """
    Resolve an id typed by the user.

    Users see one number per task (server id once synced, local id before),
    so the lookup tries both namespaces.
    """
    try:
        task_id = int(raw_id)
    except (TypeError, ValueError):
        logger.debug("Not a task id: %r", raw_id)
        return None
    if task_id <= 0:
        return None
    task = state.store.get_task_by_any_id(task_id)
    if task is None:
        logger.debug("No task with id %s.", task_id)
    return task


def tasks_for_day(state: AppState, day: str | None = None) -> list[Task]:
    """Local tasks for one day (no network)."""
    return state.store.list_tasks_by_date(day or state.current_date)
