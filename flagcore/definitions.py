"""
Реестр объявленных feature flags.

Context7: единый неизменяемый список флагов, которые должны существовать
в хранилище. Порядок важен только для отображения.
"""

import re
from typing import Any, Iterable, Iterator, List, Optional, Tuple

from .errors import InvalidKeyError
from .models import FlagDefinition

FLAG_KEY_PATTERN = re.compile(r"^[a-z0-9_.-]+$", re.IGNORECASE | re.ASCII)


def normalize_key(value: Any) -> str:
    """Приведение ключа к строке без пробелов по краям; пустые значения -> ''."""
    if not value:
        return ""
    return str(value).strip()


def validate_key(value: Any) -> bool:
    """Проверка ключа по шаблону после нормализации."""
    return FLAG_KEY_PATTERN.fullmatch(normalize_key(value)) is not None


class FlagRegistry:
    """
    Неизменяемый упорядоченный набор FlagDefinition.

    Ключи нормализуются и проверяются при создании реестра: невалидный ключ или дубликат
    означает ошибку в объявлениях, а не в рантайме.
    """

    def __init__(self, definitions: Iterable[FlagDefinition] = ()):
        items: List[FlagDefinition] = []
        seen = set()
        for definition in definitions:
            key = normalize_key(definition.key)
            if FLAG_KEY_PATTERN.fullmatch(key) is None:
                raise InvalidKeyError(definition.key)
            if key in seen:
                raise ValueError(f"Duplicate feature flag definition: {key}")
            seen.add(key)
            if key != definition.key:
                definition = definition.model_copy(update={"key": key})
            items.append(definition)
        self._definitions: Tuple[FlagDefinition, ...] = tuple(items)

    def __iter__(self) -> Iterator[FlagDefinition]:
        return iter(self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None

    def __repr__(self) -> str:
        return f"FlagRegistry({list(self.keys())!r})"

    def get(self, key: Any) -> Optional[FlagDefinition]:
        """Объявление с точно таким ключом или None."""
        for definition in self._definitions:
            if definition.key == key:
                return definition
        return None

    def keys(self) -> List[str]:
        return [definition.key for definition in self._definitions]


DEFAULT_DEFINITIONS = FlagRegistry(
    [
        FlagDefinition(
            key="admin.overview_metrics",
            description="Overview performance metrics and KPIs.",
        ),
        FlagDefinition(
            key="admin.pipeline_health",
            description="Pipeline health monitoring and alert cards.",
        ),
        FlagDefinition(
            key="admin.activity_stream",
            description="Recent activity feed for releases and builds.",
        ),
        FlagDefinition(
            key="admin.storage_usage",
            description="Storage usage breakdown across teams.",
        ),
        FlagDefinition(
            key="admin.future_flags",
            description="Feature flag management workspace.",
        ),
        FlagDefinition(
            key="admin.security_posture",
            description="Security posture reporting and access reviews.",
        ),
        FlagDefinition(
            key="admin.workspace_settings",
            description="Workspace settings and team administration.",
        ),
    ]
)


def resolve_definition_defaults(
    key: str, definitions: Iterable[FlagDefinition] = DEFAULT_DEFINITIONS
) -> Optional[FlagDefinition]:
    """Найти объявление флага по ключу (для подстановки description/default)."""
    if isinstance(definitions, FlagRegistry):
        return definitions.get(key)
    for definition in definitions:
        if definition.key == key:
            return definition
    return None
