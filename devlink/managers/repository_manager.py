"""
Repository catalog - the repositories the server reported, keyed by path.
"""

import logging
from typing import Iterable, Optional

from devlink.protocol import Repository

logger = logging.getLogger("devlink.router")


class RepositoryCatalog:
    """
    Repository list plus the selected repository.

    The list is replaced wholesale on every update. Entries are addressed by
    ``path``; two repositories sharing a name are still distinct entries.
    """

    def __init__(self):
        self._repositories: dict[str, Repository] = {}
        self._selected: Optional[Repository] = None

    @property
    def repositories(self) -> list[Repository]:
        return list(self._repositories.values())

    @property
    def selected(self) -> Optional[Repository]:
        return self._selected

    def __len__(self) -> int:
        return len(self._repositories)

    def get(self, path: str) -> Optional[Repository]:
        return self._repositories.get(path)

    def replace(self, repositories: Iterable[Repository]) -> list[Repository]:
        """Replace the whole list. Duplicate paths keep their first entry."""
        replaced: dict[str, Repository] = {}
        for repo in repositories:
            if repo.path in replaced:
                logger.warning(f"Duplicate repository path ignored: {repo.path}")
                continue
            replaced[repo.path] = repo
        self._repositories = replaced
        return self.repositories

    def select(self, repository: Repository) -> bool:
        """
        Mark ``repository`` as selected.

        Returns:
            True if the selection moved to a different path
        """
        changed = self._selected is None or self._selected.path != repository.path
        self._selected = repository
        return changed

    def clear_selection(self) -> None:
        self._selected = None

    def clear(self) -> None:
        self._repositories = {}
        self._selected = None
