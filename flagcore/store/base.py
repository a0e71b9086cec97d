"""
Абстрактное хранилище feature flags.

Context7: ядро не знает о конкретном бэкенде; все вызовы атомарны сами по себе,
согласованность между lookup и create обеспечивает уникальный индекс по key.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..errors import DuplicateKeyError
from ..models import CreateResult, Flag, FlagCreate, FlagOverride


class FlagStore(ABC):
    """CRUD + lookup над Flag и FlagOverride."""

    @abstractmethod
    async def create_flag(self, data: FlagCreate) -> Flag:
        """Создать флаг; DuplicateKeyError если ключ уже занят."""

    @abstractmethod
    async def find_flag_by_key(self, key: str) -> Optional[Flag]:
        ...

    @abstractmethod
    async def update_flag(self, key: str, data: Dict[str, Any]) -> Flag:
        """Частичное обновление; FlagNotFoundError если флага нет."""

    @abstractmethod
    async def delete_flag(self, key: str) -> Optional[Flag]:
        """Удалить флаг вместе с его overrides; None если флага нет."""

    @abstractmethod
    async def list_flags(self, skip: int, take: int) -> List[Flag]:
        """Страница флагов, отсортированная по created_at desc."""

    @abstractmethod
    async def find_override(
        self, flag_id: int, scope: str, target_key: Optional[str]
    ) -> Optional[FlagOverride]:
        """Первый override для (flag_id, scope, target_key) или None."""

    @abstractmethod
    async def upsert_override(
        self,
        flag_id: int,
        scope: str,
        target_key: Optional[str],
        enabled: bool,
        rollout_percentage: Optional[float] = None,
    ) -> FlagOverride:
        ...

    @abstractmethod
    async def delete_override(
        self, flag_id: int, scope: str, target_key: Optional[str]
    ) -> int:
        """Удалить overrides для комбинации; возвращает число удалённых строк."""

    async def create_or_get(self, data: FlagCreate) -> CreateResult:
        """
        Create-or-get поверх throw-on-conflict семантики.

        Перехватывается только DuplicateKeyError. Если повторное чтение
        ничего не нашло (флаг удалили между конфликтом и чтением), исходный
        конфликт пробрасывается дальше.
        """
        try:
            flag = await self.create_flag(data)
        except DuplicateKeyError:
            existing = await self.find_flag_by_key(data.key)
            if existing is None:
                raise
            return CreateResult.already_exists(existing)
        return CreateResult.created_new(flag)
