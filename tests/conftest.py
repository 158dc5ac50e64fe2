"""Test configuration and shared fixtures."""

import asyncio
import json
from typing import Any, Callable, Optional

import pytest
import pytest_asyncio

from devlink.config import ClientConfig
from devlink.session import ConnectionManager, Credentials, TransportError, validate_url
from devlink.session.types import FrameReceived, TransportFailed


SERVER_URL = "ws://127.0.0.1:9001/ws"
PAIRING_ID = "3f2b8c1e-0000-4000-8000-000000000001"


class MemoryCredentialStore:
    """Credential store kept in memory; counts saves."""

    def __init__(self, credentials: Optional[Credentials] = None):
        self.credentials = credentials or Credentials()
        self.saves = 0

    async def load(self) -> Credentials:
        return self.credentials

    async def save(self, credentials: Credentials) -> None:
        self.credentials = credentials
        self.saves += 1

    async def clear(self) -> Credentials:
        await self.save(Credentials())
        return self.credentials


class ScriptedTransport:
    """
    Transport double driven by the test.

    ``deliver``/``fail`` push events through the manager exactly like the
    real reader task: they wait until the manager has applied them.
    """

    def __init__(self):
        self.generation = 0
        self.is_open = False
        self.opened: list[str] = []
        self.sent: list[str] = []
        self.closes = 0
        self.pings = 0
        self.open_error: Optional[BaseException] = None
        self.open_delay = 0.0
        self.ping_error: Optional[BaseException] = None
        self.background_begun = 0
        self.background_ended = 0
        self._on_event: Optional[Callable[[Any], Any]] = None

    async def open(self, url: str, on_event) -> int:
        url = validate_url(url)
        await self.close()
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        if self.open_error is not None:
            raise self.open_error
        self.generation += 1
        self.is_open = True
        self.opened.append(url)
        self._on_event = on_event
        return self.generation

    async def send(self, text: str) -> None:
        if not self.is_open:
            raise TransportError("not connected")
        self.sent.append(text)

    async def ping(self, timeout: Optional[float] = None) -> float:
        self.pings += 1
        if self.ping_error is not None:
            raise self.ping_error
        return 1.0

    async def close(self) -> None:
        if self.is_open:
            self.is_open = False
            self.closes += 1

    def begin_background(self) -> None:
        self.background_begun += 1

    def end_background(self) -> None:
        self.background_ended += 1

    # Test helpers

    async def deliver(self, payload: Any, generation: Optional[int] = None) -> None:
        text = payload if isinstance(payload, str) else json.dumps(payload)
        await self._on_event(FrameReceived(generation=generation or self.generation, text=text))

    async def deliver_binary(self, data: bytes) -> None:
        await self._on_event(FrameReceived(generation=self.generation, data=data))

    async def fail(self, error: BaseException, generation: Optional[int] = None) -> None:
        await self._on_event(TransportFailed(generation=generation or self.generation, error=error))

    def sent_json(self) -> list[Any]:
        decoded = []
        for text in self.sent:
            try:
                decoded.append(json.loads(text))
            except json.JSONDecodeError:
                decoded.append(text)
        return decoded


async def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    """Poll ``predicate`` until it is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def client_config(tmp_path) -> ClientConfig:
    return ClientConfig(
        database_path=str(tmp_path / "client.db"),
        keepalive_interval=3600,
        probe_timeout=1.0,
        connectivity_wait=0.0,
        open_timeout=2.0,
        close_timeout=1.0,
    )


@pytest_asyncio.fixture
async def session_factory(client_config):
    """Build started ConnectionManagers wired to a scripted transport."""
    managers: list[ConnectionManager] = []

    async def factory(
        credentials: Optional[Credentials] = None,
        auto_connect: bool = False,
        **overrides
    ):
        config = ClientConfig(**{**client_config.__dict__, **overrides})
        store = MemoryCredentialStore(credentials)
        transport = ScriptedTransport()
        manager = ConnectionManager(config, store=store, transport=transport)
        managers.append(manager)
        await manager.start(auto_connect=auto_connect)
        return manager, transport, store

    yield factory

    for manager in managers:
        await manager.stop()
