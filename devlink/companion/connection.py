"""
Companion connection handler - the development-machine side of a session.

Integrates:
- Single-client policy (extra connections are refused before accept)
- Auth handshake with timeout (pairing id or reconnection token)
- Repository listing and selection
- Slash command pools for the selected repository
- Prompt relay to the configured assistant command
"""

import asyncio
import logging
import shlex
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from devlink.config import ServerConfig
from devlink.protocol import (
    AuthStatus,
    CommandsListMessage,
    ListReposCommand,
    PromptCommand,
    RepoListMessage,
    RepoSelectedMessage,
    Repository,
    ResponseMessage,
    SelectRepoCommand,
    client_message_adapter,
)
from devlink.session.types import CloseCode
from devlink.utils import truncate_output
from .auth import AuthManager, AuthOutcome
from .repositories import scan_repositories
from .slash_commands import get_predefined_commands, scan_custom_commands
from .transport import send_error, send_message, send_text


logger = logging.getLogger("devlink.companion")


@dataclass
class ClientInfo:
    """The authenticated client."""
    client_id: str
    address: str
    connected_at: float = field(default_factory=time.time)


class ConnectionHandler:
    """
    Serves one authenticated client at a time.

    Usage:
        handler = ConnectionHandler(config.server)

        # In WebSocket endpoint
        await handler.handle_connection(websocket)
    """

    def __init__(self, config: Optional[ServerConfig] = None, auth: Optional[AuthManager] = None):
        self.config = config or ServerConfig()
        self.auth = auth or AuthManager()

        self._client: Optional[ClientInfo] = None
        self._websocket: Optional[WebSocket] = None

        self.repositories: list[Repository] = []
        self.selected_repository: Optional[Repository] = None

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    @property
    def client_id(self) -> Optional[str]:
        return self._client.client_id if self._client else None

    @property
    def repository_count(self) -> int:
        return len(self.repositories)

    def pairing_payload(self) -> str:
        return self.auth.pairing_payload(self.config.websocket_url)

    def refresh_repositories(self) -> list[Repository]:
        self.repositories = scan_repositories(self.config.repo_paths)
        return self.repositories

    # =========================================================================
    # Public API
    # =========================================================================

    async def handle_connection(self, websocket: WebSocket) -> None:
        """
        Handle a new client WebSocket connection.

        This is the main entry point called from the WebSocket endpoint.
        """
        address = self._address(websocket)
        logger.info(f"New connection attempt from {address}")

        if self._client is not None:
            logger.warning(f"Rejecting connection from {address} - another client is already connected")
            await websocket.close(code=CloseCode.TRY_AGAIN_LATER, reason="another client is already connected")
            return

        await websocket.accept()

        outcome = await self._authenticate(websocket, address)
        if outcome is None:
            return

        logger.info(f"Client {address} authenticated ({outcome.method})")
        self._websocket = websocket

        try:
            await self._message_loop(websocket)
        except WebSocketDisconnect:
            logger.info(f"Client {address} disconnected")
        except Exception as e:
            logger.error(f"Client connection error [{address}]: {e}", exc_info=True)
        finally:
            self._cleanup(websocket, address)

    async def handle_message(self, websocket: WebSocket, text: str) -> None:
        """Process one post-auth client frame."""
        try:
            msg = client_message_adapter.validate_json(text)
        except ValidationError as e:
            logger.warning(f"Invalid message: {truncate_output(text, 120)}")
            await send_error(websocket, f"Invalid message: {e.error_count()} validation error(s)")
            return

        if isinstance(msg, ListReposCommand):
            repos = self.refresh_repositories()
            logger.info(f"Listing {len(repos)} repositories")
            await send_message(websocket, RepoListMessage(repositories=repos))

        elif isinstance(msg, SelectRepoCommand):
            await self._select_repository(websocket, msg.path)

        elif isinstance(msg, PromptCommand):
            if self.selected_repository is None:
                await send_error(websocket, "No repository selected")
                return
            output = await self.run_prompt(msg.text, self.selected_repository)
            await send_message(websocket, ResponseMessage(text=output))

    async def run_prompt(self, text: str, repository: Repository) -> str:
        """
        Run the assistant command for ``text`` inside ``repository``.

        Without a configured command the prompt is echoed back.
        """
        if not self.config.assistant_command:
            return text

        cmd = [*shlex.split(self.config.assistant_command), text]
        logger.info(f"Running assistant in {repository.path}: {truncate_output(text, 80)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=repository.path,
            )
        except OSError as e:
            logger.error(f"Assistant command failed to start: {e}")
            return f"Assistant command failed to start: {e}"

        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            logger.warning(f"Assistant exited with {process.returncode}")
            detail = stderr.decode("utf-8", errors="replace").strip()
            return f"Assistant exited with code {process.returncode}: {detail}"
        return stdout.decode("utf-8", errors="replace").strip()

    async def close_all(self) -> None:
        """Close the client connection (server shutdown)."""
        websocket, self._websocket = self._websocket, None
        if websocket is not None:
            try:
                await websocket.close(code=CloseCode.GOING_AWAY, reason="server shutdown")
            except Exception as e:
                logger.debug(f"Error closing client connection: {e}")
        self._client = None
        self.selected_repository = None

    def status(self) -> dict:
        return {
            "connected": self.is_connected,
            "client_id": self.client_id,
            "selected_repository": (
                self.selected_repository.model_dump() if self.selected_repository else None
            ),
            "repositories": self.repository_count,
        }

    # =========================================================================
    # Private Implementation
    # =========================================================================

    async def _authenticate(self, websocket: WebSocket, address: str) -> Optional[AuthOutcome]:
        """Wait for the first frame and answer it. Returns the outcome on success."""
        legacy = self.config.legacy_auth_replies

        try:
            message = await asyncio.wait_for(websocket.receive(), timeout=self.config.auth_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Client {address} authentication timeout")
            await send_text(websocket, AuthOutcome(status=AuthStatus.TIMEOUT).reply(legacy))
            await self._close(websocket, CloseCode.AUTHENTICATION_TIMEOUT, "authentication timeout")
            return None

        if message["type"] == "websocket.disconnect":
            logger.info(f"Client {address} left before authenticating")
            return None

        text = message.get("text")
        if text is None:
            logger.warning(f"Client {address} sent invalid authentication message")
            await send_text(websocket, AuthOutcome(status=AuthStatus.FAILED).reply(legacy))
            await self._close(websocket, CloseCode.AUTHENTICATION_FAILED, "invalid authentication message")
            return None

        # Another client may have authenticated while this one was waiting
        if self._client is not None:
            logger.warning(f"Rejecting {address} - another client is already connected")
            await self._close(websocket, CloseCode.TRY_AGAIN_LATER, "another client is already connected")
            return None

        outcome = self.auth.authenticate(text)
        if not outcome.succeeded:
            logger.warning(f"Client {address} authentication failed ({outcome.method})")
            await send_text(websocket, outcome.reply(legacy))
            await self._close(websocket, CloseCode.AUTHENTICATION_FAILED, "authentication failed")
            return None

        self._client = ClientInfo(client_id=outcome.client_id or "", address=address)
        if not await send_text(websocket, outcome.reply(legacy)):
            self._client = None
            return None
        return outcome

    async def _message_loop(self, websocket: WebSocket) -> None:
        """Main loop for receiving and processing messages."""
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(code=message.get("code", CloseCode.NORMAL))

            text = message.get("text")
            if text is None:
                await send_error(websocket, "Binary frames are not supported")
                continue

            logger.debug(f"Client sent: {truncate_output(text, 200)}")
            await self.handle_message(websocket, text)

    async def _select_repository(self, websocket: WebSocket, path: str) -> None:
        repo = self._find_repository(path)
        if repo is None:
            self.refresh_repositories()
            repo = self._find_repository(path)
        if repo is None:
            await send_error(websocket, f"Repository not found: {path}")
            return

        self.selected_repository = repo
        logger.info(f"Selected repository: {repo.name}")

        await send_message(websocket, RepoSelectedMessage(repository=repo))
        await send_message(websocket, CommandsListMessage(
            predefined_commands=get_predefined_commands(),
            custom_commands=scan_custom_commands(Path(repo.path)),
        ))

    def _find_repository(self, path: str) -> Optional[Repository]:
        for repo in self.repositories:
            if repo.path == path:
                return repo
        try:
            resolved = Path(path).expanduser().resolve()
        except OSError:
            return None
        for repo in self.repositories:
            if Path(repo.path).resolve() == resolved:
                return repo
        return None

    def _cleanup(self, websocket: WebSocket, address: str) -> None:
        if self._websocket is websocket:
            self._websocket = None
            self._client = None
            self.selected_repository = None
        logger.info(f"Cleaned up connection [{address}]")

    @staticmethod
    async def _close(websocket: WebSocket, code: int, reason: str) -> None:
        try:
            await websocket.close(code=code, reason=reason)
        except Exception as e:
            logger.debug(f"Error closing connection: {e}")

    @staticmethod
    def _address(websocket: WebSocket) -> str:
        client = websocket.client
        return f"{client.host}:{client.port}" if client else "unknown"
