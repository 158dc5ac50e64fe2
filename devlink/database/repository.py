"""
Database repository for named string settings.
"""

import logging
from typing import Iterable, Optional

from sqlalchemy import select

from .models import Setting, utcnow
from .engine import DatabaseSession

logger = logging.getLogger("devlink.database")


class SettingsRepository:
    """Repository for key/value settings."""

    async def get_many(self, keys: Iterable[str]) -> dict[str, str]:
        """Get the stored values for ``keys``. Missing keys are omitted."""
        keys = list(keys)
        async with DatabaseSession() as session:
            result = await session.execute(
                select(Setting.key, Setting.value).where(Setting.key.in_(keys))
            )
            return {key: value for key, value in result.all()}

    async def set_many(self, values: dict[str, str]) -> None:
        """Insert or update every key in ``values`` in one transaction."""
        async with DatabaseSession() as session:
            for key, value in values.items():
                await session.merge(Setting(key=key, value=value, updated_at=utcnow()))
            await session.commit()


# Global repository instance
_repository: Optional[SettingsRepository] = None


def get_repository() -> SettingsRepository:
    """Get the global repository instance."""
    global _repository
    if _repository is None:
        _repository = SettingsRepository()
    return _repository
