"""Tests for the companion server: auth table, discovery, and the /ws endpoint."""

import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from devlink.companion import (
    PREDEFINED_COMMANDS,
    AuthManager,
    ConnectionHandler,
    parse_markdown_command,
    scan_custom_commands,
    scan_repositories,
)
from devlink.config import ServerConfig
from devlink.protocol import AuthStatus, Repository
from devlink.server import create_app
from devlink.session.types import CloseCode

from .conftest import PAIRING_ID


def make_repo(base: Path, name: str) -> Path:
    repo = base / name
    (repo / ".git").mkdir(parents=True)
    return repo


@pytest.fixture
def workspace(tmp_path) -> Path:
    base = tmp_path / "src"
    alpha = make_repo(base, "alpha")
    make_repo(base, "beta")
    (base / "notes").mkdir()

    commands = alpha / ".claude" / "commands"
    commands.mkdir(parents=True)
    (commands / "ship_it.md").write_text("Ship the current branch\nRun the deploy script.", encoding="utf-8")
    return base


@pytest.fixture
def server_config(workspace) -> ServerConfig:
    return ServerConfig(repo_paths=[workspace], auth_timeout=0.2)


@pytest.fixture
def client(server_config):
    handler = ConnectionHandler(server_config, AuthManager(pairing_id=PAIRING_ID))
    app = create_app(server_config, handler=handler, show_banner=False)
    with TestClient(app) as test_client:
        yield test_client


def pair(ws) -> dict:
    ws.send_text(PAIRING_ID)
    reply = ws.receive_json()
    assert reply["status"] == "AUTH_SUCCESS"
    return reply


class TestAuthManager:

    def test_pairing_issues_client_and_token(self):
        auth = AuthManager(pairing_id=PAIRING_ID)

        outcome = auth.authenticate(PAIRING_ID)

        assert outcome.succeeded
        assert outcome.method == "pairing_id"
        assert auth.validate_token(outcome.reconnection_token) == outcome.client_id

    def test_token_is_single_use_and_rotated(self):
        auth = AuthManager(pairing_id=PAIRING_ID)
        first = auth.authenticate(PAIRING_ID)

        second = auth.authenticate(json.dumps({"token": first.reconnection_token}))

        assert second.succeeded
        assert second.method == "token"
        assert second.client_id == first.client_id
        assert second.reconnection_token != first.reconnection_token
        assert auth.authenticate(json.dumps({"token": first.reconnection_token})).status == AuthStatus.FAILED
        assert auth.token_count == 1

    @pytest.mark.parametrize("frame", ["wrong-id", "", "{}", '{"token": 5}', "ünïcode"])
    def test_everything_else_fails(self, frame):
        outcome = AuthManager(pairing_id=PAIRING_ID).authenticate(frame)

        assert outcome.status == AuthStatus.FAILED
        assert outcome.client_id is None

    def test_revoke_all_forgets_tokens(self):
        auth = AuthManager(pairing_id=PAIRING_ID)
        token = auth.authenticate(PAIRING_ID).reconnection_token

        auth.revoke_all()

        assert auth.validate_token(token) is None

    def test_replies(self):
        outcome = AuthManager(pairing_id=PAIRING_ID).authenticate("nope")

        assert outcome.reply(legacy=True) == "AUTH_FAILED"
        assert json.loads(outcome.reply()) == {"status": "AUTH_FAILED"}

    def test_pairing_payload(self):
        payload = json.loads(AuthManager(pairing_id=PAIRING_ID).pairing_payload("ws://host:9001/ws"))

        assert payload == {"uuid": PAIRING_ID, "url": "ws://host:9001/ws"}


class TestDiscovery:

    def test_scan_finds_git_directories_sorted(self, workspace, tmp_path):
        repos = scan_repositories([workspace, tmp_path / "missing"])

        assert [r.name for r in repos] == ["alpha", "beta"]
        assert repos[0].path == str(workspace / "alpha")

    def test_custom_commands_from_markdown(self, workspace):
        commands = scan_custom_commands(workspace / "alpha")

        assert [c.name for c in commands] == ["/ship-it"]
        assert commands[0].description == "Ship the current branch"
        assert "deploy script" in commands[0].content

    def test_long_first_line_gets_generated_description(self, tmp_path):
        path = tmp_path / "big_refactor.md"
        path.write_text("x" * 150, encoding="utf-8")

        command = parse_markdown_command(path)

        assert command.name == "/big-refactor"
        assert command.description == "Custom command: big refactor"

    def test_repository_without_commands(self, workspace):
        assert scan_custom_commands(workspace / "beta") == []


class TestEndpoint:

    def test_pairing_and_repository_flow(self, client, workspace):
        with client.websocket_connect("/ws") as ws:
            reply = pair(ws)
            assert reply["client_id"]
            assert reply["reconnection_token"]

            ws.send_json({"type": "list_repos"})
            listing = ws.receive_json()
            assert listing["type"] == "repo_list"
            assert [r["name"] for r in listing["repositories"]] == ["alpha", "beta"]

            alpha = str(workspace / "alpha")
            ws.send_json({"type": "select_repo", "path": alpha})
            selected = ws.receive_json()
            commands = ws.receive_json()
            assert selected == {"type": "repo_selected", "repository": {"name": "alpha", "path": alpha}}
            assert commands["type"] == "commands_list"
            assert len(commands["predefined_commands"]) == len(PREDEFINED_COMMANDS)
            assert [c["name"] for c in commands["custom_commands"]] == ["/ship-it"]

            ws.send_json({"type": "prompt", "text": "run the tests"})
            assert ws.receive_json() == {"type": "response", "text": "run the tests"}

    def test_prompt_without_selection(self, client):
        with client.websocket_connect("/ws") as ws:
            pair(ws)
            ws.send_json({"type": "prompt", "text": "hello"})

            assert ws.receive_json() == {"type": "error", "message": "No repository selected"}

    def test_unknown_repository(self, client):
        with client.websocket_connect("/ws") as ws:
            pair(ws)
            ws.send_json({"type": "select_repo", "path": "/nowhere"})

            assert ws.receive_json() == {"type": "error", "message": "Repository not found: /nowhere"}

    def test_invalid_message(self, client):
        with client.websocket_connect("/ws") as ws:
            pair(ws)
            ws.send_text('{"type": "launch_rockets"}')

            reply = ws.receive_json()
            assert reply["type"] == "error"
            assert reply["message"].startswith("Invalid message")

    def test_wrong_pairing_id_closes(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_text("not-the-id")
            assert ws.receive_json() == {"status": "AUTH_FAILED"}

            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_text()
            assert exc_info.value.code == CloseCode.AUTHENTICATION_FAILED

    def test_binary_auth_frame_closes(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_bytes(b"\x00")
            assert ws.receive_json() == {"status": "AUTH_FAILED"}

    def test_auth_timeout(self, client):
        with client.websocket_connect("/ws") as ws:
            assert ws.receive_json() == {"status": "AUTH_TIMEOUT"}

            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_text()
            assert exc_info.value.code == CloseCode.AUTHENTICATION_TIMEOUT

    def test_token_reconnect_rotates_token(self, client):
        with client.websocket_connect("/ws") as ws:
            first = pair(ws)

        with client.websocket_connect("/ws") as ws:
            ws.send_json({"token": first["reconnection_token"]})
            second = ws.receive_json()

        assert second["status"] == "AUTH_SUCCESS"
        assert second["client_id"] == first["client_id"]
        assert second["reconnection_token"] != first["reconnection_token"]

        with client.websocket_connect("/ws") as ws:
            ws.send_json({"token": first["reconnection_token"]})
            assert ws.receive_json() == {"status": "AUTH_FAILED"}

    def test_second_client_is_refused(self, client):
        with client.websocket_connect("/ws") as ws:
            pair(ws)

            with pytest.raises(WebSocketDisconnect) as exc_info:
                with client.websocket_connect("/ws") as other:
                    other.receive_text()
            assert exc_info.value.code == CloseCode.TRY_AGAIN_LATER

            ws.send_json({"type": "list_repos"})
            assert ws.receive_json()["type"] == "repo_list"

    def test_health_and_status(self, client):
        with client.websocket_connect("/ws") as ws:
            pair(ws)
            health = client.get("/health").json()
            status = client.get("/status").json()
            ws_status = client.get("/ws/status").json()

        assert health == {"status": "healthy", "client_connected": True}
        assert status["active_tokens"] == 1
        assert status["client"]["connected"] is True
        assert status["client"]["repositories"] == 2
        assert ws_status["status"] == "connected"

        assert client.get("/health").json()["client_connected"] is False


def test_legacy_auth_replies(workspace):
    config = ServerConfig(repo_paths=[workspace], legacy_auth_replies=True)
    handler = ConnectionHandler(config, AuthManager(pairing_id=PAIRING_ID))

    with TestClient(create_app(config, handler=handler, show_banner=False)) as client:
        with client.websocket_connect("/ws") as ws:
            ws.send_text(PAIRING_ID)
            assert ws.receive_text() == "AUTH_SUCCESS"

        with client.websocket_connect("/ws") as ws:
            ws.send_text("wrong")
            assert ws.receive_text() == "AUTH_FAILED"


@pytest.mark.asyncio
async def test_assistant_command_runs_in_repository(tmp_path):
    handler = ConnectionHandler(ServerConfig(assistant_command="echo assistant:"))
    repo = Repository(name="alpha", path=str(tmp_path))

    assert await handler.run_prompt("hello", repo) == "assistant: hello"


@pytest.mark.asyncio
async def test_missing_assistant_command(tmp_path):
    handler = ConnectionHandler(ServerConfig(assistant_command="devlink-no-such-binary"))
    repo = Repository(name="alpha", path=str(tmp_path))

    assert (await handler.run_prompt("hello", repo)).startswith("Assistant command failed to start")
