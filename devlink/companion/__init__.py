"""
Companion server components: pairing, repositories, slash commands, and the
per-client connection handler.
"""

from .auth import AuthManager, AuthOutcome
from .connection import ClientInfo, ConnectionHandler
from .repositories import is_git_repository, scan_repositories
from .slash_commands import (
    PREDEFINED_COMMANDS,
    get_predefined_commands,
    parse_markdown_command,
    scan_custom_commands,
)

__all__ = [
    "AuthManager",
    "AuthOutcome",
    "ClientInfo",
    "ConnectionHandler",
    "PREDEFINED_COMMANDS",
    "get_predefined_commands",
    "is_git_repository",
    "parse_markdown_command",
    "scan_custom_commands",
    "scan_repositories",
]
