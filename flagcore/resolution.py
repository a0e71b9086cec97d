"""
Resolution Engine: вычисление флага для контекста (scope, target_key).

[C7-ID: FEATURE-FLAGS-005] Context7: OpenFeature-совместимые reason'ы,
auto-create отсутствующих флагов через reconciliation.

Порядок:
1. Пустой ключ -> False без обращения к хранилищу.
2. Поиск флага; если нет - auto-create либо default из контекста.
3. scope="platform" без target_key -> default флага, overrides не читаются.
4. Первый найденный override для (flag_id, scope, target_key); иначе default флага.
5. rollout_percentage работает только как граница: <= 0 -> False, иначе enabled.

Scope контекста по умолчанию берётся из FEATURE_FLAGS_DEFAULT_SCOPE ("platform").
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field

from .config import get_settings
from .definitions import normalize_key
from .metrics import flag_evaluations_total
from .models import MISSING, PLATFORM_SCOPE, Flag, FlagOverride
from .reconciliation import ensure_flag
from .store.base import FlagStore

logger = structlog.get_logger()


class FlagReason(str, Enum):
    """Причины результата вычисления (OpenFeature-style)."""
    DEFAULT = "DEFAULT"  # default флага
    TARGETING_MATCH = "TARGETING_MATCH"  # сработал override
    SPLIT = "SPLIT"  # override с частичным rollout, бакетинга нет
    DISABLED = "DISABLED"  # rollout_percentage <= 0
    STATIC = "STATIC"  # флага нет, вернули default из контекста


class EvaluationContext(BaseModel):
    """Контекст вычисления флага."""

    model_config = ConfigDict(frozen=True)

    scope: str = Field(default_factory=lambda: get_settings().default_scope)
    target_key: Optional[str] = None
    description: Optional[str] = None
    default_enabled: Any = False
    metadata: Any = MISSING
    auto_create: bool = True

    @property
    def is_platform_baseline(self) -> bool:
        return self.scope == PLATFORM_SCOPE and self.target_key is None


@dataclass(frozen=True)
class FlagEvaluation:
    key: str
    value: bool
    reason: FlagReason
    flag: Optional[Flag] = None
    override: Optional[FlagOverride] = None


ContextLike = Union[EvaluationContext, Mapping[str, Any], None]


def build_context(context: ContextLike = None, **options: Any) -> EvaluationContext:
    if context is None:
        return EvaluationContext(**options)
    if isinstance(context, EvaluationContext):
        return context.model_copy(update=options) if options else context
    merged: Dict[str, Any] = dict(context)
    merged.update(options)
    return EvaluationContext(**merged)


def _result(key: str, value: Any, reason: FlagReason, **extra: Any) -> FlagEvaluation:
    flag_evaluations_total.labels(reason=reason.value).inc()
    return FlagEvaluation(key=key, value=bool(value), reason=reason, **extra)


def resolve_override(override: FlagOverride) -> tuple[bool, FlagReason]:
    """Значение override с учётом границ rollout_percentage."""
    percentage = override.rollout_percentage
    if percentage is None:
        return bool(override.enabled), FlagReason.TARGETING_MATCH
    if percentage <= 0:
        return False, FlagReason.DISABLED
    if percentage >= 100:
        return bool(override.enabled), FlagReason.TARGETING_MATCH
    # TODO: бакетинг по target_key для частичного rollout; сейчас процент только ограничивает 0/100
    return bool(override.enabled), FlagReason.SPLIT


async def evaluate(
    store: FlagStore,
    key: Any,
    context: ContextLike = None,
    **options: Any,
) -> FlagEvaluation:
    """
    Вычислить флаг с причиной результата.

    Ошибки хранилища пробрасываются как есть: сбой БД никогда не превращается
    в «флаг выключен».
    """
    normalized_key = normalize_key(key)
    if not normalized_key:
        return _result(normalized_key, False, FlagReason.STATIC)

    ctx = build_context(context, **options)

    flag = await store.find_flag_by_key(normalized_key)
    if flag is None and ctx.auto_create:
        flag = await ensure_flag(
            store,
            normalized_key,
            description=ctx.description,
            default_enabled=bool(ctx.default_enabled),
            metadata=ctx.metadata,
        )

    if flag is None:
        return _result(normalized_key, ctx.default_enabled, FlagReason.STATIC)

    if ctx.is_platform_baseline:
        return _result(normalized_key, flag.default_enabled, FlagReason.DEFAULT, flag=flag)

    override = await store.find_override(flag.id, ctx.scope, ctx.target_key)
    if override is None:
        return _result(normalized_key, flag.default_enabled, FlagReason.DEFAULT, flag=flag)

    value, reason = resolve_override(override)
    if reason is FlagReason.SPLIT:
        logger.debug(
            "Partial rollout percentage treated as plain override",
            key=normalized_key,
            scope=ctx.scope,
            target_key=ctx.target_key,
            rollout_percentage=override.rollout_percentage,
        )
    return _result(normalized_key, value, reason, flag=flag, override=override)


async def is_enabled(
    store: FlagStore,
    key: Any,
    context: ContextLike = None,
    **options: Any,
) -> bool:
    """Включён ли флаг для контекста (строго bool)."""
    evaluation = await evaluate(store, key, context, **options)
    return evaluation.value
