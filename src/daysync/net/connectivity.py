# src/daysync/net/connectivity.py

"""
Connectivity signal.

A boolean "online" state plus transition notifications. Listeners are called
exactly once per observed transition, never for a repeated state.
set_override() pins the state regardless of observations (console /net).

Two implementations:
- ManualConnectivity: state is pushed by the caller (tests, no remote configured)
- ProbeConnectivity: asyncio loop that TCP-connects to the remote host
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from collections.abc import Callable
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

ConnectivityListener = Callable[[bool], None]


class ConnectivitySignal:
    def __init__(self, initial: bool = False) -> None:
        self._observed = bool(initial)
        self._override: bool | None = None
        self._online = self._observed
        self._listeners: list[ConnectivityListener] = []
        self._lock = threading.Lock()

    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: ConnectivityListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def unsubscribe(self, listener: ConnectivityListener) -> None:
        with self._lock:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

    @property
    def override(self) -> bool | None:
        return self._override

    def set_override(self, online: bool | None) -> bool:
        """Pin the state (True/False) or follow observations again (None)."""
        with self._lock:
            self._override = None if online is None else bool(online)
        return self._publish()

    def _observe(self, online: bool) -> bool:
        """Record an observation; notify listeners only if the state changed."""
        with self._lock:
            self._observed = bool(online)
        return self._publish()

    def _publish(self) -> bool:
        with self._lock:
            online = self._observed if self._override is None else self._override
            if online == self._online:
                return False
            self._online = online
            listeners = list(self._listeners)

        logger.info("Connectivity changed: %s", "ONLINE" if online else "OFFLINE")
        for listener in listeners:
            try:
                listener(online)
            except Exception:
                logger.exception("Connectivity listener failed.")
        return True


class ManualConnectivity(ConnectivitySignal):
    def set_online(self, online: bool) -> bool:
        """Returns True if this call was a transition."""
        return self._observe(online)


def probe_target(base_url: str) -> tuple[str, int]:
    """Host/port to probe for a base URL (default port from the scheme)."""
    parts = urlsplit(base_url)
    host = parts.hostname or ""
    if not host:
        raise ValueError(f"base URL has no host: {base_url!r}")
    port = parts.port or (443 if parts.scheme == "https" else 80)
    return host, port


class ProbeConnectivity(ConnectivitySignal):
    """
    Polls reachability of host:port by opening (and closing) a TCP connection.

    Must be started from a running event loop; stop() cancels the poll task.
    """

    def __init__(
        self,
        host: str,
        port: int,
        *,
        interval_seconds: float = 5.0,
        timeout_seconds: float = 3.0,
        initial: bool = False,
    ) -> None:
        super().__init__(initial=initial)
        self.host = host
        self.port = int(port)
        self.interval_seconds = max(0.1, float(interval_seconds))
        self.timeout_seconds = max(0.1, float(timeout_seconds))
        self._task: asyncio.Task[None] | None = None

    async def probe_once(self) -> bool:
        try:
            _reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=self.timeout_seconds,
            )
        except (OSError, asyncio.TimeoutError):
            logger.debug("Probe %s:%s failed.", self.host, self.port, exc_info=True)
            return False

        writer.close()
        with contextlib.suppress(Exception):
            await writer.wait_closed()
        return True

    async def check_now(self) -> bool:
        """Probe immediately and feed the result into the signal."""
        online = await self.probe_once()
        self._observe(online)
        return online

    async def _run(self) -> None:
        logger.info("Connectivity probe started (%s:%s every %.1fs).", self.host, self.port, self.interval_seconds)
        try:
            while True:
                await self.check_now()
                await asyncio.sleep(self.interval_seconds)
        except asyncio.CancelledError:
            logger.info("Connectivity probe stopped.")
            raise

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
