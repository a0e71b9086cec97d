"""
Операции администрирования флагов: список, создание, редактирование, удаление.

Context7: список всегда предваряется reconciliation, чтобы объявленные флаги
были видны даже при первом открытии админки.
"""

from typing import Any, Dict, Iterable, List, Optional

import structlog

from .config import get_settings
from .definitions import DEFAULT_DEFINITIONS, FLAG_KEY_PATTERN, normalize_key
from .errors import FlagNotFoundError, InvalidKeyError
from .models import MISSING, Flag, FlagCreate, FlagDefinition, FlagOverride, is_missing
from .reconciliation import ensure_definitions
from .store.base import FlagStore

logger = structlog.get_logger()


def _clean_description(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


async def list_flags(
    store: FlagStore,
    *,
    limit: Optional[int] = None,
    offset: int = 0,
    definitions: Iterable[FlagDefinition] = DEFAULT_DEFINITIONS,
) -> List[Flag]:
    """
    Страница флагов (новые первыми); limit/offset уходят в хранилище как есть.

    Без limit размер страницы берётся из FEATURE_FLAGS_PAGE_SIZE.
    """
    if limit is None:
        limit = get_settings().page_size
    await ensure_definitions(store, definitions)
    return await store.list_flags(skip=offset, take=limit)


async def create_flag(
    store: FlagStore,
    key: Any,
    *,
    description: Optional[str] = None,
    default_enabled: bool = False,
    metadata: Any = MISSING,
) -> Flag:
    """Явное создание флага администратором; DuplicateKeyError если ключ занят."""
    normalized_key = normalize_key(key)
    if FLAG_KEY_PATTERN.fullmatch(normalized_key) is None:
        raise InvalidKeyError(normalized_key)

    flag = await store.create_flag(
        FlagCreate(
            key=normalized_key,
            description=_clean_description(description),
            default_enabled=bool(default_enabled),
            metadata=metadata,
        )
    )
    logger.info("Feature flag created by admin", key=flag.key, default_enabled=flag.default_enabled)
    return flag


async def _get_existing(store: FlagStore, key: Any) -> Flag:
    normalized_key = normalize_key(key)
    if not normalized_key:
        raise FlagNotFoundError(normalized_key)
    flag = await store.find_flag_by_key(normalized_key)
    if flag is None:
        raise FlagNotFoundError(normalized_key)
    return flag


async def update_flag(
    store: FlagStore,
    key: Any,
    *,
    description: Any = MISSING,
    default_enabled: Any = MISSING,
    metadata: Any = MISSING,
) -> Flag:
    """
    Patch-редактирование флага. Меняются только переданные поля.

    Raises:
        FlagNotFoundError: флага с таким ключом нет
    """
    existing = await _get_existing(store, key)

    patch: Dict[str, Any] = {}
    if not is_missing(description):
        patch["description"] = _clean_description(description)
    if not is_missing(default_enabled):
        patch["default_enabled"] = bool(default_enabled)
    if not is_missing(metadata):
        patch["metadata"] = metadata

    if not patch:
        return existing

    updated = await store.update_flag(existing.key, patch)
    logger.info("Feature flag updated", key=existing.key, fields=sorted(patch))
    return updated


async def toggle_flag(store: FlagStore, key: Any) -> Flag:
    """Инвертировать default_enabled."""
    existing = await _get_existing(store, key)
    return await update_flag(store, existing.key, default_enabled=not existing.default_enabled)


async def delete_flag(store: FlagStore, key: Any) -> Optional[Flag]:
    """Удалить флаг (overrides удаляются каскадно); None если удалять нечего."""
    normalized_key = normalize_key(key)
    if not normalized_key:
        return None
    existing = await store.find_flag_by_key(normalized_key)
    if existing is None:
        return None
    deleted = await store.delete_flag(normalized_key)
    if deleted is not None:
        logger.info("Feature flag deleted", key=normalized_key, flag_id=deleted.id)
    return deleted


async def set_override(
    store: FlagStore,
    key: Any,
    *,
    scope: str,
    target_key: Optional[str] = None,
    enabled: bool,
    rollout_percentage: Optional[float] = None,
) -> FlagOverride:
    """Создать или обновить override флага для (scope, target_key)."""
    if rollout_percentage is not None and not 0 <= rollout_percentage <= 100:
        raise ValueError("rollout_percentage must be between 0 and 100")
    flag = await _get_existing(store, key)
    override = await store.upsert_override(
        flag.id, scope, target_key, bool(enabled), rollout_percentage
    )
    logger.info(
        "Feature flag override saved",
        key=flag.key,
        scope=scope,
        target_key=target_key,
        enabled=override.enabled,
        rollout_percentage=rollout_percentage,
    )
    return override


async def clear_override(
    store: FlagStore,
    key: Any,
    *,
    scope: str,
    target_key: Optional[str] = None,
) -> int:
    flag = await _get_existing(store, key)
    return await store.delete_override(flag.id, scope, target_key)
