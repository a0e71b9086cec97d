"""
Модели данных feature flags.

[C7-ID: FEATURE-FLAGS-003] Pydantic модели для Flag / FlagOverride / FlagDefinition
и маркер MISSING для полей с тремя состояниями (не передано / None / значение).
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

PLATFORM_SCOPE = "platform"


class _Missing:
    """Маркер «значение не передано», отличный от None."""

    _instance: Optional["_Missing"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self

    def __reduce__(self):
        return (_Missing, ())


MISSING: Any = _Missing()


def is_missing(value: Any) -> bool:
    return value is MISSING


class FlagDefinition(BaseModel):
    """Статическое объявление флага (seed для хранилища)."""

    model_config = ConfigDict(frozen=True)

    key: str
    description: Optional[str] = None
    default_enabled: bool = False


class Flag(BaseModel):
    """Персистентный флаг."""

    model_config = ConfigDict(frozen=True)

    id: int
    key: str
    description: Optional[str] = None
    default_enabled: bool = False
    metadata: Optional[Any] = None
    created_at: datetime


class FlagOverride(BaseModel):
    """Переопределение флага для (scope, target_key)."""

    model_config = ConfigDict(frozen=True)

    id: int
    flag_id: int
    scope: str = PLATFORM_SCOPE
    target_key: Optional[str] = None
    enabled: Optional[bool] = False
    rollout_percentage: Optional[float] = Field(default=None, ge=0, le=100)


class FlagCreate(BaseModel):
    """
    Данные для создания флага.

    metadata по умолчанию MISSING: в строку хранилища попадает только
    явно переданное значение (в том числе явный None).
    """

    model_config = ConfigDict(frozen=True)

    key: str
    description: Optional[str] = None
    default_enabled: bool = False
    metadata: Any = MISSING

    @property
    def has_metadata(self) -> bool:
        return not is_missing(self.metadata)

    def to_row(self) -> Dict[str, Any]:
        row: Dict[str, Any] = {
            "key": self.key,
            "description": self.description,
            "default_enabled": bool(self.default_enabled),
        }
        if self.has_metadata:
            row["metadata"] = self.metadata
        return row


@dataclass(frozen=True)
class CreateResult:
    """Результат create-or-get: Created(flag) | AlreadyExists(flag)."""

    flag: Flag
    created: bool

    @classmethod
    def created_new(cls, flag: Flag) -> "CreateResult":
        return cls(flag=flag, created=True)

    @classmethod
    def already_exists(cls, flag: Flag) -> "CreateResult":
        return cls(flag=flag, created=False)
