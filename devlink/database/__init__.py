"""
Database module for devlink.

Provides:
- Key/value settings storage backing the client's credential store
"""

from .models import Base, Setting
from .repository import SettingsRepository, get_repository
from .engine import (
    init_database,
    close_database,
    get_database_path,
    DatabaseSession,
)

__all__ = [
    # Models
    "Base",
    "Setting",
    # Repository
    "SettingsRepository",
    "get_repository",
    # Engine
    "init_database",
    "close_database",
    "get_database_path",
    "DatabaseSession",
]
