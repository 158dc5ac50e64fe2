"""
Real client session against a real companion server over a local socket.
"""

import asyncio
import json

import pytest
import pytest_asyncio
import uvicorn

from devlink.companion import AuthManager, ConnectionHandler
from devlink.config import ClientConfig, ServerConfig
from devlink.database import close_database
from devlink.server import create_app
from devlink.session import ConnectionManager, ConnectionStatus, Credentials, CredentialStore, SessionEvent

from .conftest import PAIRING_ID, wait_until


@pytest.fixture
def workspace(tmp_path):
    base = tmp_path / "src"
    for name in ("alpha", "beta"):
        (base / name / ".git").mkdir(parents=True)
    commands = base / "alpha" / ".claude" / "commands"
    commands.mkdir(parents=True)
    (commands / "release.md").write_text("Cut a release\nTag and push.", encoding="utf-8")
    return base


@pytest_asyncio.fixture
async def companion(workspace):
    """Companion server on an ephemeral port; yields (handler, ws url)."""
    config = ServerConfig(host="127.0.0.1", port=0, repo_paths=[workspace], auth_timeout=2.0)
    handler = ConnectionHandler(config, AuthManager(pairing_id=PAIRING_ID))
    app = create_app(config, handler=handler, show_banner=False)

    server = uvicorn.Server(uvicorn.Config(app, host="127.0.0.1", port=0, log_level="warning"))
    task = asyncio.create_task(server.serve())
    await wait_until(lambda: server.started)
    port = server.servers[0].sockets[0].getsockname()[1]

    yield handler, f"ws://127.0.0.1:{port}/ws"

    server.should_exit = True
    await task


@pytest.mark.asyncio
async def test_pair_work_reconnect_and_expire(companion, workspace, tmp_path):
    handler, url = companion
    db_path = str(tmp_path / "client.db")
    store = CredentialStore(db_path)
    manager = ConnectionManager(
        ClientConfig(database_path=db_path, keepalive_interval=3600, connectivity_wait=0.0),
        store=store,
    )
    restarts = []

    async def on_restart():
        restarts.append(True)

    manager.state.on(SessionEvent.SERVER_RESTART_DETECTED, on_restart)
    await manager.start(auto_connect=False)

    try:
        # Pair, then work with a repository
        await manager.pair(json.dumps({"uuid": PAIRING_ID, "url": url}))
        await wait_until(lambda: manager.is_authenticated)
        first = manager.credentials
        assert first.has_token()
        assert (await store.load()) == first

        await wait_until(lambda: len(manager.state.repositories) == 2)
        alpha = str(workspace / "alpha")
        assert await manager.select_repository(alpha)
        await wait_until(lambda: manager.state.commands.get("/release") is not None)

        assert await manager.send_prompt("run the tests")
        await wait_until(lambda: manager.state.chat.messages[-1].is_from_server)
        assert manager.state.chat.messages[-1].text == "run the tests"

        # Reconnect with the stored token
        await manager.disconnect()
        await wait_until(lambda: not handler.is_connected)

        await manager.connect()
        await wait_until(lambda: manager.is_authenticated)
        second = manager.credentials
        assert second.client_id == first.client_id
        assert second.reconnection_token != first.reconnection_token

        # Server forgets every token: the next reconnect expires the session
        await manager.disconnect()
        await wait_until(lambda: not handler.is_connected)
        handler.auth.revoke_all()

        await manager.connect()
        await wait_until(lambda: manager.status == ConnectionStatus.FAILED)

        assert manager.state.failure_reason == "session expired"
        assert manager.credentials == Credentials()
        assert (await store.load()) == Credentials()
        assert restarts == [True]
    finally:
        await manager.stop()
        await close_database()
