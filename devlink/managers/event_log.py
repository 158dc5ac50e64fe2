"""
Diagnostic event log, bounded to the most recent entries.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class LogLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class LogCategory(str, Enum):
    CONNECTION = "Connection"
    AUTHENTICATION = "Authentication"
    REPOSITORY = "Repository"
    GENERAL = "General"


@dataclass(frozen=True)
class LogEntry:
    level: LogLevel
    category: LogCategory
    message: str
    timestamp: datetime = field(default_factory=datetime.now)


class EventLog:
    """Keeps the last ``max_entries`` entries; the oldest are discarded."""

    def __init__(self, max_entries: int = 500):
        self.max_entries = max_entries
        self._entries: deque[LogEntry] = deque(maxlen=max_entries)

    @property
    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def add(
        self,
        level: LogLevel,
        message: str,
        category: LogCategory = LogCategory.GENERAL
    ) -> LogEntry:
        entry = LogEntry(level=level, category=category, message=message)
        self._entries.append(entry)
        return entry

    def by_category(self, category: LogCategory) -> list[LogEntry]:
        return [e for e in self._entries if e.category == category]

    def clear(self) -> None:
        self._entries.clear()
