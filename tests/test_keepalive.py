"""Tests for the background keep-alive loop."""

import pytest

from devlink.session import KeepAlive, TransportError

from .conftest import wait_until


@pytest.mark.asyncio
async def test_probes_until_stopped():
    probes = []

    async def probe():
        probes.append(True)
        return 1.0

    async def on_failure(error):
        pytest.fail(f"unexpected failure: {error}")

    keepalive = KeepAlive(interval=0.01, probe=probe, on_failure=on_failure)
    keepalive.start()
    await wait_until(lambda: len(probes) >= 3)

    keepalive.stop()

    assert keepalive.is_running is False
    assert keepalive.probes_sent >= 3


@pytest.mark.asyncio
async def test_failure_is_reported_once_and_loop_stops():
    failures = []

    async def probe():
        raise TransportError("no pong")

    async def on_failure(error):
        failures.append(error)

    keepalive = KeepAlive(interval=0.01, probe=probe, on_failure=on_failure)
    keepalive.start()
    await wait_until(lambda: failures)

    assert keepalive.is_running is False
    assert len(failures) == 1
    assert failures[0].reason == "no pong"
    assert keepalive.probes_sent == 1


@pytest.mark.asyncio
async def test_stop_before_first_probe():
    async def probe():
        return 1.0

    async def on_failure(error):
        pass

    keepalive = KeepAlive(interval=3600, probe=probe, on_failure=on_failure)
    keepalive.start()
    keepalive.start()
    assert keepalive.is_running is True

    keepalive.stop()
    keepalive.stop()

    assert keepalive.is_running is False
    assert keepalive.probes_sent == 0
