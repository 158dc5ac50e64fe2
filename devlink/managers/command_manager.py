"""
Slash command catalog.

Two pools: predefined (server-wide) and custom (per repository). The merged
list puts predefined commands first, then custom ones.
"""

from typing import Iterable, Optional

from devlink.protocol import SlashCommand


class CommandCatalog:

    def __init__(self):
        self._predefined: list[SlashCommand] = []
        self._custom: list[SlashCommand] = []

    @property
    def predefined(self) -> list[SlashCommand]:
        return list(self._predefined)

    @property
    def custom(self) -> list[SlashCommand]:
        return list(self._custom)

    @property
    def commands(self) -> list[SlashCommand]:
        """Merged, addressable list: predefined first, then custom."""
        merged: list[SlashCommand] = []
        seen: set[str] = set()
        for command in self._predefined + self._custom:
            if command.name in seen:
                continue
            seen.add(command.name)
            merged.append(command)
        return merged

    def get(self, name: str) -> Optional[SlashCommand]:
        for command in self.commands:
            if command.name == name:
                return command
        return None

    def replace(
        self,
        predefined: Iterable[SlashCommand],
        custom: Iterable[SlashCommand]
    ) -> list[SlashCommand]:
        self._predefined = list(predefined)
        self._custom = list(custom)
        return self.commands

    def reset_custom(self) -> None:
        """Drop the custom pool (the active repository changed)."""
        self._custom = []

    def clear(self) -> None:
        self._predefined = []
        self._custom = []
