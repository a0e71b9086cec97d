"""Хранилища feature flags.

SqlAlchemyFlagStore импортируется лениво, чтобы in-memory режим не требовал
драйвера БД при импорте.
"""

from typing import Optional

from ..config import FlagSettings, get_settings
from .base import FlagStore
from .memory import InMemoryFlagStore


def create_flag_store(settings: Optional[FlagSettings] = None) -> FlagStore:
    """PostgreSQL хранилище если задан database_url, иначе in-memory."""
    settings = settings or get_settings()
    if settings.database_url:
        from .sqlalchemy_store import SqlAlchemyFlagStore

        return SqlAlchemyFlagStore.from_url(settings.database_url)
    return InMemoryFlagStore()


__all__ = ["FlagStore", "InMemoryFlagStore", "create_flag_store"]
