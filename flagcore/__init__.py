"""
flagcore: движок feature flags с overrides по scope/target.

[C7-ID: FEATURE-FLAGS-002] Context7 best practice: единая система feature flags
- Registry объявленных флагов
- Reconciliation без перезаписи правок администратора
- Resolution с приоритетом overrides
- Single-flight кэш для клиентов
"""

from .cache import CacheSnapshot, FlagCache, flag_cache
from .client import HttpFlagFetcher
from .definitions import (
    DEFAULT_DEFINITIONS,
    FLAG_KEY_PATTERN,
    FlagRegistry,
    normalize_key,
    resolve_definition_defaults,
    validate_key,
)
from .errors import (
    CacheLoadError,
    DuplicateKeyError,
    FlagError,
    FlagNotFoundError,
    InvalidKeyError,
    StoreError,
)
from .management import (
    clear_override,
    create_flag,
    delete_flag,
    list_flags,
    set_override,
    toggle_flag,
    update_flag,
)
from .models import (
    MISSING,
    PLATFORM_SCOPE,
    CreateResult,
    Flag,
    FlagCreate,
    FlagDefinition,
    FlagOverride,
)
from .reconciliation import ensure_definitions, ensure_flag
from .resolution import EvaluationContext, FlagEvaluation, FlagReason, evaluate, is_enabled
from .store import FlagStore, InMemoryFlagStore, create_flag_store

__all__ = [
    "CacheLoadError",
    "CacheSnapshot",
    "CreateResult",
    "DEFAULT_DEFINITIONS",
    "DuplicateKeyError",
    "EvaluationContext",
    "FLAG_KEY_PATTERN",
    "Flag",
    "FlagCache",
    "FlagCreate",
    "FlagDefinition",
    "FlagError",
    "FlagEvaluation",
    "FlagNotFoundError",
    "FlagOverride",
    "FlagReason",
    "FlagRegistry",
    "FlagStore",
    "HttpFlagFetcher",
    "InMemoryFlagStore",
    "InvalidKeyError",
    "MISSING",
    "PLATFORM_SCOPE",
    "StoreError",
    "clear_override",
    "create_flag",
    "create_flag_store",
    "delete_flag",
    "ensure_definitions",
    "ensure_flag",
    "evaluate",
    "flag_cache",
    "is_enabled",
    "list_flags",
    "normalize_key",
    "resolve_definition_defaults",
    "set_override",
    "toggle_flag",
    "update_flag",
    "validate_key",
]
