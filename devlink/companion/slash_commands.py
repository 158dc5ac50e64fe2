"""
Slash commands offered to the client.

Predefined commands are always available; custom commands come from
``<repo>/.claude/commands/*.md`` in the selected repository.
"""

import logging
from pathlib import Path
from typing import Optional

from devlink.protocol import SlashCommand


logger = logging.getLogger("devlink.companion")

# First lines at least this long are not used as the description
MAX_DESCRIPTION_LENGTH = 100


PREDEFINED_COMMANDS: tuple[SlashCommand, ...] = (
    SlashCommand(name="/bug", description="Report bugs (sends conversation to Anthropic)"),
    SlashCommand(name="/clear", description="Clear conversation history"),
    SlashCommand(
        name="/compact",
        description="Compact conversation with optional focus instructions",
        usage="/compact [instructions]",
        example="/compact focus on the authentication logic",
    ),
    SlashCommand(name="/config", description="View/modify configuration"),
    SlashCommand(name="/cost", description="Show token usage statistics"),
    SlashCommand(name="/doctor", description="Checks the health of your Claude Code installation"),
    SlashCommand(
        name="/help",
        description="Get usage help",
        usage="/help [command]",
        example="/help model",
    ),
    SlashCommand(name="/init", description="Initialize project with CLAUDE.md guide"),
    SlashCommand(name="/login", description="Switch Anthropic accounts"),
    SlashCommand(name="/logout", description="Sign out from your Anthropic account"),
    SlashCommand(name="/memory", description="Edit CLAUDE.md memory files"),
    SlashCommand(
        name="/model",
        description="Select or change the AI model",
        usage="/model [model-name]",
        example="/model claude-3-opus",
    ),
    SlashCommand(name="/permissions", description="View or update permissions"),
    SlashCommand(name="/pr_comments", description="View pull request comments"),
    SlashCommand(name="/review", description="Request code review"),
    SlashCommand(name="/status", description="View account and system statuses"),
)


def get_predefined_commands() -> list[SlashCommand]:
    return list(PREDEFINED_COMMANDS)


def parse_markdown_command(path: Path) -> Optional[SlashCommand]:
    """
    Turn one ``.md`` file into a command.

    The name is ``/<stem>`` with underscores as dashes; the first line is the
    description when it is short enough.
    """
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Cannot read command file {path}: {e}")
        return None

    stem = path.stem
    lines = content.splitlines()
    if lines and len(lines[0]) < MAX_DESCRIPTION_LENGTH:
        description = lines[0]
    else:
        description = f"Custom command: {stem.replace('_', ' ')}"

    return SlashCommand(
        name=f"/{stem.replace('_', '-')}",
        description=description,
        content=content,
    )


def scan_custom_commands(repo_path: Path) -> list[SlashCommand]:
    """Custom commands of one repository, sorted by name."""
    commands_dir = Path(repo_path) / ".claude" / "commands"
    if not commands_dir.is_dir():
        return []

    commands = []
    for entry in commands_dir.iterdir():
        if entry.is_file() and entry.suffix == ".md":
            command = parse_markdown_command(entry)
            if command is not None:
                commands.append(command)

    commands.sort(key=lambda cmd: cmd.name)
    return commands
