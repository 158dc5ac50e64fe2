"""
Message Router for post-auth server frames.

Handles:
- JSON decoding into the closed set of server events
- Repository list / selection updates
- Slash command pools
- Errors and chat responses
- Domain event forwarding

Plain-text frames and JSON objects without a ``type`` are chat entries.
Unknown types are logged and ignored; nothing here changes the connection
state.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from devlink.managers import ChatLog, CommandCatalog, EventLog, LogCategory, LogLevel, RepositoryCatalog
from devlink.protocol import (
    CommandsListMessage,
    ErrorMessage,
    RepoListMessage,
    RepoSelectedMessage,
    Repository,
    ResponseMessage,
    SlashCommand,
    UnrecognizedMessage,
    decode_server_message,
)
from devlink.utils import truncate_output


logger = logging.getLogger("devlink.router")


@dataclass
class RouterCallbacks:
    """Callbacks for the message router."""
    on_repository_list: Optional[Callable[[list[Repository]], Awaitable[None]]] = None
    on_repository_selected: Optional[Callable[[Repository], Awaitable[None]]] = None
    on_commands: Optional[Callable[[list[SlashCommand]], Awaitable[None]]] = None


class MessageRouter:
    """
    Routes inbound server frames to the observers.

    Usage:
        router = MessageRouter(repositories, commands, chat, events, callbacks)
        message = await router.handle_text(frame)
    """

    def __init__(
        self,
        repositories: RepositoryCatalog,
        commands: CommandCatalog,
        chat: ChatLog,
        events: EventLog,
        callbacks: Optional[RouterCallbacks] = None
    ):
        self.repositories = repositories
        self.commands = commands
        self.chat = chat
        self.events = events
        self.callbacks = callbacks or RouterCallbacks()

    async def handle_text(self, text: str) -> Any:
        """
        Handle one text frame.

        Returns:
            The decoded message model, the raw text for chat entries, or
            None when the frame was ignored
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            data = None

        if not isinstance(data, dict):
            self.chat.add_server(text)
            return text

        if "type" not in data:
            if "status" in data:
                logger.info(f"Ignoring status frame outside authentication: {truncate_output(text, 120)}")
                return None
            self.chat.add_server(text)
            return text

        msg = decode_server_message(data)
        await self._dispatch(msg)
        return msg

    def handle_binary(self, data: bytes) -> None:
        logger.info(f"Ignoring binary frame ({len(data)} bytes)")

    async def _dispatch(self, msg: Any) -> None:
        if isinstance(msg, RepoListMessage):
            await self._handle_repo_list(msg)
        elif isinstance(msg, RepoSelectedMessage):
            await self._handle_repo_selected(msg)
        elif isinstance(msg, CommandsListMessage):
            await self._handle_commands_list(msg)
        elif isinstance(msg, ErrorMessage):
            self._handle_error(msg)
        elif isinstance(msg, ResponseMessage):
            self.chat.add_server(msg.text)
        elif isinstance(msg, UnrecognizedMessage):
            logger.warning(f"Ignoring message type={msg.type!r}: {msg.reason}")

    async def _handle_repo_list(self, msg: RepoListMessage) -> None:
        repos = self.repositories.replace(msg.repositories)

        if repos:
            self.events.add(LogLevel.SUCCESS, f"Loaded {len(repos)} repositories", LogCategory.REPOSITORY)
            for repo in repos:
                self.events.add(LogLevel.INFO, f"Repository: {repo.name} at {repo.path}", LogCategory.REPOSITORY)
        else:
            self.events.add(LogLevel.WARNING, "No repositories found", LogCategory.REPOSITORY)

        self.chat.add_server(f"📋 Received {len(repos)} repositories")
        logger.info(f"Received {len(repos)} repositories")

        if self.callbacks.on_repository_list:
            await self.callbacks.on_repository_list(repos)

    async def _handle_repo_selected(self, msg: RepoSelectedMessage) -> None:
        repo = msg.repository
        if self.repositories.select(repo):
            self.commands.reset_custom()

        self.events.add(LogLevel.SUCCESS, f"Repository selected: {repo.name}", LogCategory.REPOSITORY)
        self.chat.add_server(f"✅ Selected repository: {repo.name}")

        if self.callbacks.on_repository_selected:
            await self.callbacks.on_repository_selected(repo)

    async def _handle_commands_list(self, msg: CommandsListMessage) -> None:
        merged = self.commands.replace(msg.predefined_commands, msg.custom_commands)
        custom = self.commands.custom

        if custom:
            names = ", ".join(cmd.name for cmd in custom)
            self.chat.add_server(f"🧩 {len(custom)} custom commands: {names}")
            self.events.add(
                LogLevel.INFO,
                f"Loaded {len(custom)} custom commands for this repository",
                LogCategory.REPOSITORY,
            )
            for cmd in custom:
                self.events.add(LogLevel.INFO, f"Custom command: {cmd.name} - {cmd.description}", LogCategory.REPOSITORY)

        logger.info(f"Commands updated: {len(msg.predefined_commands)} predefined, {len(custom)} custom")

        if self.callbacks.on_commands:
            await self.callbacks.on_commands(merged)

    def _handle_error(self, msg: ErrorMessage) -> None:
        self.chat.add_server(f"❌ Error: {msg.detail}")
        self.events.add(LogLevel.ERROR, f"Error: {msg.detail}", LogCategory.GENERAL)
        logger.warning(f"Server error: {msg.detail}")
