"""
In-memory хранилище feature flags.

Используется в тестах и для локального запуска без БД. Каждая операция
уступает управление циклу событий (asyncio.sleep(0)) до изменения состояния,
поэтому гонки между конкурентными вызовами воспроизводятся так же, как с
настоящей БД; сама проверка уникальности и запись выполняются без прерываний.
"""

import asyncio
import itertools
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog

from ..errors import DuplicateKeyError, FlagNotFoundError
from ..models import PLATFORM_SCOPE, Flag, FlagCreate, FlagOverride
from .base import FlagStore

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryFlagStore(FlagStore):
    """Хранилище на dict со строгой уникальностью ключа (с учётом регистра)."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._flags: Dict[str, Flag] = {}
        self._overrides: List[FlagOverride] = []
        self._flag_ids = itertools.count(1)
        self._override_ids = itertools.count(1)
        self._clock = clock or _utcnow
        # Журнал вызовов: позволяет проверить, что хранилище не трогали
        self.calls: List[str] = []

    async def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        await asyncio.sleep(0)

    @property
    def mutation_count(self) -> int:
        mutations = {"create_flag", "update_flag", "delete_flag", "upsert_override", "delete_override"}
        return sum(1 for call in self.calls if call in mutations)

    async def create_flag(self, data: FlagCreate) -> Flag:
        await self._enter("create_flag")
        if data.key in self._flags:
            raise DuplicateKeyError(data.key)
        row = data.to_row()
        flag = Flag(
            id=next(self._flag_ids),
            key=row["key"],
            description=row["description"],
            default_enabled=row["default_enabled"],
            metadata=row.get("metadata"),
            created_at=self._clock(),
        )
        self._flags[flag.key] = flag
        logger.debug("Flag row created", key=flag.key, flag_id=flag.id)
        return flag

    async def find_flag_by_key(self, key: str) -> Optional[Flag]:
        await self._enter("find_flag_by_key")
        return self._flags.get(key)

    async def update_flag(self, key: str, data: Dict[str, Any]) -> Flag:
        await self._enter("update_flag")
        existing = self._flags.get(key)
        if existing is None:
            raise FlagNotFoundError(key)
        allowed = {"description", "default_enabled", "metadata"}
        patch = {name: value for name, value in data.items() if name in allowed}
        updated = existing.model_copy(update=patch)
        self._flags[key] = updated
        return updated

    async def delete_flag(self, key: str) -> Optional[Flag]:
        await self._enter("delete_flag")
        flag = self._flags.pop(key, None)
        if flag is None:
            return None
        self._overrides = [item for item in self._overrides if item.flag_id != flag.id]
        return flag

    async def list_flags(self, skip: int, take: int) -> List[Flag]:
        await self._enter("list_flags")
        ordered = sorted(
            self._flags.values(),
            key=lambda flag: (flag.created_at, flag.id),
            reverse=True,
        )
        return ordered[skip:skip + take]

    async def find_override(
        self, flag_id: int, scope: str, target_key: Optional[str]
    ) -> Optional[FlagOverride]:
        await self._enter("find_override")
        for item in self._overrides:
            if item.flag_id == flag_id and item.scope == scope and item.target_key == target_key:
                return item
        return None

    async def upsert_override(
        self,
        flag_id: int,
        scope: str,
        target_key: Optional[str],
        enabled: bool,
        rollout_percentage: Optional[float] = None,
    ) -> FlagOverride:
        await self._enter("upsert_override")
        for index, item in enumerate(self._overrides):
            if item.flag_id == flag_id and item.scope == scope and item.target_key == target_key:
                updated = item.model_copy(
                    update={"enabled": enabled, "rollout_percentage": rollout_percentage}
                )
                self._overrides[index] = updated
                return updated
        return self.add_override(flag_id, scope, target_key, enabled, rollout_percentage)

    async def delete_override(
        self, flag_id: int, scope: str, target_key: Optional[str]
    ) -> int:
        await self._enter("delete_override")
        before = len(self._overrides)
        self._overrides = [
            item
            for item in self._overrides
            if not (item.flag_id == flag_id and item.scope == scope and item.target_key == target_key)
        ]
        return before - len(self._overrides)

    def add_override(
        self,
        flag_id: int,
        scope: str = PLATFORM_SCOPE,
        target_key: Optional[str] = None,
        enabled: Optional[bool] = False,
        rollout_percentage: Optional[float] = None,
    ) -> FlagOverride:
        """Синхронная вставка override без проверки дубликатов (для сидов и тестов)."""
        override = FlagOverride(
            id=next(self._override_ids),
            flag_id=flag_id,
            scope=scope,
            target_key=target_key,
            enabled=enabled,
            rollout_percentage=rollout_percentage,
        )
        self._overrides.append(override)
        return override
