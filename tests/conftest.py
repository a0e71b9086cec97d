"""
Глобальные фикстуры pytest для flagcore.

Context7: корень репозитория добавляется в sys.path, чтобы тесты работали
и без editable install.
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from flagcore.cache import FlagCache  # noqa: E402
from flagcore.config import get_settings  # noqa: E402
from flagcore.store.memory import InMemoryFlagStore  # noqa: E402


class StepClock:
    """Монотонные часы: каждый вызов на секунду позже предыдущего."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self) -> datetime:
        self.current = self.current + timedelta(seconds=1)
        return self.current


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Тесты не видят FEATURE_FLAGS_* из окружения разработчика."""
    for name in list(os.environ):
        if name.startswith("FEATURE_FLAGS_"):
            monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def store(clock):
    return InMemoryFlagStore(clock=clock)


@pytest.fixture
def cache():
    return FlagCache()


@pytest.fixture
def db_dsn():
    dsn = os.getenv("TEST_DB_DSN")
    if not dsn:
        pytest.skip("TEST_DB_DSN не задан, пропуск интеграционных тестов с реальной БД")
    return dsn
