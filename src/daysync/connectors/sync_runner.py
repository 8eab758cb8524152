# src/daysync/connectors/sync_runner.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from collections.abc import Coroutine
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, TypeVar

from ..core.state import AppState
from ..net.connectivity import ProbeConnectivity

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _run_sync_service(state: AppState, stop_event: asyncio.Event) -> None:
    """Own the coordinator/probe lifecycle on the background loop."""
    connectivity = state.connectivity
    coordinator = state.coordinator

    try:
        if isinstance(connectivity, ProbeConnectivity):
            # First probe before starting, so queued work goes out right away.
            await connectivity.check_now()
            connectivity.start()

        await coordinator.start()
        await stop_event.wait()

    except asyncio.CancelledError:
        logger.info("Sync service cancelled.")
    except Exception:
        logger.exception("Sync service crashed.")
    finally:
        with contextlib.suppress(Exception):
            await coordinator.stop()

        if isinstance(connectivity, ProbeConnectivity):
            with contextlib.suppress(Exception):
                await connectivity.stop()

        aclose = getattr(state.remote, "aclose", None)
        if aclose is not None:
            with contextlib.suppress(Exception):
                await aclose()

        logger.info("Sync service stopped.")


@dataclass
class SyncBackgroundRunner:
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop
    stop_event: asyncio.Event

    def submit(self, coro: Coroutine[Any, Any, T]) -> Future[T]:
        """Run a coroutine on the background loop; the caller may block on .result()."""
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def call(self, coro: Coroutine[Any, Any, T], timeout: float | None = 60.0) -> T:
        return self.submit(coro).result(timeout=timeout)

    def stop(self) -> None:
        try:
            self.loop.call_soon_threadsafe(self.stop_event.set)
        except Exception:
            logger.debug("Failed to signal sync stop.", exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout=timeout)


def start_sync_in_background(state: AppState) -> SyncBackgroundRunner | None:
    """
    Start the sync service in a background thread (so console REPL can run in parallel).

    The console REPL is blocking (input()), while the coordinator, probe and
    HTTP client are async and need their own event loop.
    """
    ready = threading.Event()
    holder: dict[str, object] = {}

    def runner() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        stop_event = asyncio.Event()

        holder["loop"] = loop
        holder["stop_event"] = stop_event
        ready.set()

        try:
            loop.run_until_complete(_run_sync_service(state, stop_event))
        finally:
            with contextlib.suppress(Exception):
                loop.stop()
            with contextlib.suppress(Exception):
                loop.close()

    t = threading.Thread(target=runner, name="daysync-sync", daemon=True)
    t.start()

    ready.wait(timeout=5.0)
    loop = holder.get("loop")
    stop_event = holder.get("stop_event")

    if not isinstance(loop, asyncio.AbstractEventLoop) or not isinstance(stop_event, asyncio.Event):
        logger.error("Sync thread did not initialize properly.")
        return None

    logger.info("Sync background thread started.")
    runner_handle = SyncBackgroundRunner(thread=t, loop=loop, stop_event=stop_event)
    state.runner = runner_handle
    return runner_handle
