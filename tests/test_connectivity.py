# tests/test_connectivity.py

from __future__ import annotations

import asyncio

import pytest

from daysync.net.connectivity import ManualConnectivity, ProbeConnectivity, probe_target


def test_listener_called_once_per_transition() -> None:
    net = ManualConnectivity(initial=False)
    seen: list[bool] = []
    net.subscribe(seen.append)

    assert net.set_online(False) is False
    assert net.set_online(True) is True
    assert net.set_online(True) is False
    assert net.set_online(False) is True

    assert seen == [True, False]

    net.unsubscribe(seen.append)
    net.set_online(True)
    assert seen == [True, False]


def test_raising_listener_does_not_block_others() -> None:
    net = ManualConnectivity()
    seen: list[bool] = []

    def broken(_online: bool) -> None:
        raise RuntimeError("listener bug")

    net.subscribe(broken)
    net.subscribe(seen.append)
    net.set_online(True)

    assert seen == [True]


def test_override_pins_state() -> None:
    net = ManualConnectivity(initial=True)
    seen: list[bool] = []
    net.subscribe(seen.append)

    net.set_override(False)
    assert not net.is_online()

    # Observations are recorded but do not leak through the override.
    net.set_online(True)
    net.set_online(False)
    net.set_online(True)
    assert seen == [False]

    net.set_override(None)
    assert net.is_online()
    assert seen == [False, True]


def test_probe_target_defaults_port_from_scheme() -> None:
    assert probe_target("https://teuxdeux.com/api/v4") == ("teuxdeux.com", 443)
    assert probe_target("http://localhost:8080/x") == ("localhost", 8080)
    with pytest.raises(ValueError):
        probe_target("not a url")


@pytest.mark.asyncio
async def test_probe_detects_listening_socket() -> None:
    server = await asyncio.start_server(lambda r, w: w.close(), "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]

    probe = ProbeConnectivity("127.0.0.1", port, interval_seconds=0.05, timeout_seconds=1.0)
    seen: list[bool] = []
    probe.subscribe(seen.append)

    assert await probe.check_now() is True
    assert probe.is_online()

    server.close()
    await server.wait_closed()

    assert await probe.check_now() is False
    assert seen == [True, False]


@pytest.mark.asyncio
async def test_probe_loop_start_stop() -> None:
    probe = ProbeConnectivity("127.0.0.1", 9, interval_seconds=0.05, timeout_seconds=0.2)
    probe.start()
    assert probe.running
    await asyncio.sleep(0.01)
    await probe.stop()
    assert not probe.running
