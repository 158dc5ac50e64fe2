"""
Git repository discovery for the companion server.
"""

import logging
from pathlib import Path
from typing import Iterable

from devlink.protocol import Repository


logger = logging.getLogger("devlink.companion")


def is_git_repository(path: Path) -> bool:
    return path.is_dir() and (path / ".git").exists()


def scan_repositories(base_paths: Iterable[Path]) -> list[Repository]:
    """
    Find git repositories one level below each base path.

    The base paths themselves are not checked. Results are sorted by name.
    """
    repositories: list[Repository] = []

    for base in base_paths:
        base = Path(base).expanduser()
        if not base.is_dir():
            logger.warning(f"Repository path not found: {base}")
            continue

        try:
            entries = list(base.iterdir())
        except OSError as e:
            logger.warning(f"Cannot read {base}: {e}")
            continue

        for entry in entries:
            if is_git_repository(entry):
                repositories.append(Repository(name=entry.name, path=str(entry)))

    repositories.sort(key=lambda repo: repo.name)
    logger.debug(f"Found {len(repositories)} repositories")
    return repositories
