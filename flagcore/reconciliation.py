"""
Reconciliation: гарантирует, что объявленные флаги существуют в хранилище.

[C7-ID: FEATURE-FLAGS-004] Context7 best practice: идемпотентный create-or-get
без перезаписи правок администратора. Пустые description/metadata у
существующего флага дозаполняются, всё остальное остаётся как есть.
"""

import asyncio
from typing import Any, Iterable, Optional

import structlog

from .definitions import DEFAULT_DEFINITIONS, FLAG_KEY_PATTERN, normalize_key
from .errors import InvalidKeyError
from .metrics import flag_reconciliation_total
from .models import MISSING, Flag, FlagCreate, FlagDefinition, is_missing
from .store.base import FlagStore

logger = structlog.get_logger()


async def ensure_flag(
    store: FlagStore,
    key: Any,
    *,
    description: Optional[str] = None,
    default_enabled: bool = False,
    metadata: Any = MISSING,
) -> Flag:
    """
    Создать флаг или вернуть существующий, дозаполнив пустые поля.

    Args:
        store: хранилище флагов
        key: ключ флага (обрезается по краям)
        description: описание; подставляется в существующий флаг только если там пусто
        default_enabled: значение по умолчанию для нового флага
        metadata: MISSING - не передано; None или значение - передано явно

    Raises:
        InvalidKeyError: ключ не прошёл проверку (до любого обращения к хранилищу)
        DuplicateKeyError: конфликт уникальности, а повторное чтение ничего не нашло
    """
    normalized_key = normalize_key(key)
    if FLAG_KEY_PATTERN.fullmatch(normalized_key) is None:
        raise InvalidKeyError(normalized_key)

    data = FlagCreate(
        key=normalized_key,
        description=description,
        default_enabled=bool(default_enabled),
        metadata=metadata,
    )

    try:
        result = await store.create_or_get(data)
    except Exception:
        flag_reconciliation_total.labels(outcome="error").inc()
        raise

    if result.created:
        flag_reconciliation_total.labels(outcome="created").inc()
        logger.info("Feature flag created", key=normalized_key, default_enabled=data.default_enabled)
        return result.flag

    existing = result.flag
    patch = {}
    if not existing.description and description:
        patch["description"] = description
    if existing.metadata is None and not is_missing(metadata):
        patch["metadata"] = metadata

    if not patch:
        flag_reconciliation_total.labels(outcome="existing").inc()
        return existing

    updated = await store.update_flag(normalized_key, patch)
    flag_reconciliation_total.labels(outcome="backfilled").inc()
    logger.info("Feature flag backfilled", key=normalized_key, fields=sorted(patch))
    return updated


async def ensure_definitions(
    store: FlagStore,
    definitions: Iterable[FlagDefinition] = DEFAULT_DEFINITIONS,
) -> None:
    """
    Параллельный ensure_flag для каждого объявления.

    Это fan-out, а не транзакция: все вызовы доходят до конца, успешные не
    откатываются. Если какие-то упали, после завершения всех пробрасывается
    первая ошибка.
    """
    items = list(definitions)
    if not items:
        return

    results = await asyncio.gather(
        *(
            ensure_flag(
                store,
                definition.key,
                description=definition.description,
                default_enabled=definition.default_enabled,
            )
            for definition in items
        ),
        return_exceptions=True,
    )

    failures = [
        (definition.key, outcome)
        for definition, outcome in zip(items, results)
        if isinstance(outcome, BaseException)
    ]
    for key, error in failures:
        logger.error(
            "Feature flag ensure failed",
            key=key,
            error=str(error),
            error_type=type(error).__name__,
        )
    if failures:
        raise failures[0][1]

    logger.debug("Feature flag definitions ensured", count=len(items))
