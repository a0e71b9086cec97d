"""
Иерархия исключений flagcore.

Валидация ключей падает сразу и локально, ошибки хранилища пробрасываются
вызывающему без ретраев. CacheLoadError никогда не выбрасывается наружу из
кэша: он только сохраняется как состояние загрузки.
"""

from typing import Optional


class FlagError(Exception):
    """Базовое исключение для всех ошибок feature flags."""


class InvalidKeyError(FlagError, ValueError):
    """Ключ флага не соответствует шаблону ^[a-z0-9_.-]+$."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(
            "Feature flag keys must only contain letters, numbers, '.', '-', or '_' characters "
            f"(got {key!r})."
        )


class DuplicateKeyError(FlagError):
    """Флаг с таким ключом уже существует (нарушение уникальности)."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Feature flag {key!r} already exists")


class FlagNotFoundError(FlagError, LookupError):
    """Флаг не найден при админском редактировании."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Feature flag {key!r} not found")


class StoreError(FlagError):
    """Сбой хранилища: соединение или нарушение ограничений, кроме уникальности ключа."""

    def __init__(self, message: str, operation: Optional[str] = None):
        self.operation = operation
        super().__init__(message)


class CacheLoadError(FlagError):
    """Зафиксированная ошибка загрузки кэша флагов."""
