"""
Chat log - the conversation shown to the user.
"""

from dataclasses import dataclass, field
from datetime import datetime
import logging

logger = logging.getLogger("devlink.router")


@dataclass(frozen=True)
class ChatMessage:
    """One chat entry. Identity is its position in the log."""
    text: str
    is_from_server: bool
    timestamp: datetime = field(default_factory=datetime.now)


class ChatLog:
    """Append-only list of chat messages."""

    def __init__(self):
        self._messages: list[ChatMessage] = []

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def add(self, text: str, is_from_server: bool) -> ChatMessage:
        message = ChatMessage(text=text, is_from_server=is_from_server)
        self._messages.append(message)
        return message

    def add_server(self, text: str) -> ChatMessage:
        return self.add(text, is_from_server=True)

    def add_user(self, text: str) -> ChatMessage:
        return self.add(text, is_from_server=False)

    def clear(self) -> None:
        self._messages.clear()
