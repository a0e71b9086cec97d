"""
Клиентский single-flight кэш списка флагов.

[C7-ID: FEATURE-FLAGS-006] Context7: не более одного fetch за время жизни кэша,
независимо от количества конкурентных или последовательных вызовов.

Использование:
    cache = FlagCache()
    flags = await cache.load_once(fetcher, "/feature-flags")

    state = cache.snapshot(fetcher)  # не блокирует, запускает загрузку в фоне
    if state.error:
        ...

Ошибка fetch не выбрасывается: кэш помечается loaded, сообщение сохраняется
в error, повторной загрузки до clear() не будет.
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Set, Union

import structlog

from .config import get_settings
from .errors import CacheLoadError
from .metrics import flag_cache_loads_total

logger = structlog.get_logger()

FetchFn = Callable[[str], Union[Awaitable[Any], Any]]


@dataclass(frozen=True)
class CacheSnapshot:
    flags: List[Any] = field(default_factory=list)
    loaded: bool = False
    error: Optional[str] = None


class FlagCache:
    """Кэш флагов с явным сбросом (clear) вместо глобального состояния модуля."""

    def __init__(self, endpoint: Optional[str] = None):
        self._endpoint = endpoint
        self._generation = 0
        # задачи прошлых поколений живут здесь до завершения
        self._tasks: Set[asyncio.Task] = set()
        self._reset()

    def _reset(self) -> None:
        self._flags: List[Any] = []
        self._loaded = False
        self._error: Optional[str] = None
        self._exception: Optional[CacheLoadError] = None
        self._inflight: Optional[asyncio.Task] = None

    @property
    def flags(self) -> List[Any]:
        return self._flags

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def exception(self) -> Optional[CacheLoadError]:
        """Последняя ошибка загрузки; __cause__ указывает на исходное исключение."""
        return self._exception

    @property
    def endpoint(self) -> str:
        """Endpoint по умолчанию; без явного значения - FEATURE_FLAGS_CACHE_ENDPOINT."""
        return self._endpoint if self._endpoint is not None else get_settings().cache_endpoint

    def clear(self) -> None:
        """Сброс кэша. Незавершённая загрузка прошлого поколения в кэш не запишет."""
        self._generation += 1
        self._reset()
        logger.debug("Feature flag cache cleared", generation=self._generation)

    def _start_load(self, fetch: FetchFn, endpoint: str) -> asyncio.Task:
        if self._inflight is None:
            task = asyncio.ensure_future(self._load(fetch, endpoint, self._generation))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            self._inflight = task
        return self._inflight

    async def _load(self, fetch: FetchFn, endpoint: str, generation: int) -> None:
        try:
            response = fetch(endpoint)
            if inspect.isawaitable(response):
                response = await response
        except Exception as exc:
            flag_cache_loads_total.labels(status="error").inc()
            message = str(exc) or type(exc).__name__
            logger.warning("Feature flag cache load failed", endpoint=endpoint, error=message)
            if generation != self._generation:
                return
            self._loaded = True
            self._error = message
            error = CacheLoadError(message)
            error.__cause__ = exc
            self._exception = error
            return

        flag_cache_loads_total.labels(status="ok").inc()
        if generation != self._generation:
            return
        self._flags = list(response) if isinstance(response, (list, tuple)) else []
        self._loaded = True
        self._error = None
        self._exception = None
        logger.debug("Feature flag cache loaded", endpoint=endpoint, count=len(self._flags))

    async def load_once(self, fetch: FetchFn, endpoint: Optional[str] = None) -> List[Any]:
        """Загрузить флаги не более одного раза и вернуть закэшированный список."""
        if self._loaded:
            return self._flags
        task = self._start_load(fetch, endpoint or self.endpoint)
        # shield: отмена одного вызывающего не отменяет общую загрузку
        await asyncio.shield(task)
        return self._flags

    def snapshot(
        self, fetch: Optional[FetchFn] = None, endpoint: Optional[str] = None
    ) -> CacheSnapshot:
        """
        Текущее состояние кэша без ожидания.

        Если кэш не загружен и передан fetch, загрузка запускается в фоне на
        текущем event loop; вызывающий видит состояние до загрузки и должен
        перечитать его позже. Без работающего loop загрузка не запускается.
        """
        if not self._loaded and fetch is not None and self._inflight is None:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                logger.debug("No running event loop, feature flag cache load skipped")
            else:
                self._start_load(fetch, endpoint or self.endpoint)
        return CacheSnapshot(flags=list(self._flags), loaded=self._loaded, error=self._error)


# Общий экземпляр процесса
flag_cache = FlagCache()
