"""
Observer state fed by the message router: repositories, slash commands,
the chat log, and the diagnostic event log.
"""

from .chat_manager import ChatLog, ChatMessage
from .command_manager import CommandCatalog
from .event_log import EventLog, LogCategory, LogEntry, LogLevel
from .repository_manager import RepositoryCatalog

__all__ = [
    "ChatLog",
    "ChatMessage",
    "CommandCatalog",
    "EventLog",
    "LogCategory",
    "LogEntry",
    "LogLevel",
    "RepositoryCatalog",
]
