"""
Unit тесты для reconciliation (ensure_flag / ensure_definitions).

Context7: идемпотентность, дозаполнение пустых полей, fan-out без транзакции.
"""

import pytest

from flagcore.definitions import FlagRegistry
from flagcore.errors import DuplicateKeyError, InvalidKeyError, StoreError
from flagcore.models import FlagDefinition
from flagcore.reconciliation import ensure_definitions, ensure_flag
from flagcore.store.memory import InMemoryFlagStore


class FailingCreateStore(InMemoryFlagStore):
    """Хранилище, у которого create_flag падает для одного ключа."""

    def __init__(self, failing_key: str, **kwargs):
        super().__init__(**kwargs)
        self.failing_key = failing_key

    async def create_flag(self, data):
        if data.key == self.failing_key:
            raise StoreError("connection reset by peer", operation="create_flag")
        return await super().create_flag(data)


class VanishingRowStore(InMemoryFlagStore):
    """Конфликт уникальности, но к моменту повторного чтения строки уже нет."""

    async def create_flag(self, data):
        self.calls.append("create_flag")
        raise DuplicateKeyError(data.key)


async def _all_flags(store):
    return await store.list_flags(skip=0, take=1000)


@pytest.mark.asyncio
async def test_ensure_flag_creates_new_flag(store):
    flag = await ensure_flag(store, "  beta.search ", description="Search v2", default_enabled=True)

    assert flag.key == "beta.search"
    assert flag.description == "Search v2"
    assert flag.default_enabled is True
    assert flag.metadata is None


@pytest.mark.asyncio
@pytest.mark.parametrize("key", ["", "   ", None, "bad key", "flag!", "a/b", "ключ"])
async def test_ensure_flag_rejects_invalid_key_before_store_access(store, key):
    with pytest.raises(InvalidKeyError):
        await ensure_flag(store, key, description="x")

    assert store.calls == []


@pytest.mark.asyncio
async def test_ensure_flag_backfills_missing_description(store):
    await ensure_flag(store, "beta.search")

    flag = await ensure_flag(store, "beta.search", description="Search v2")

    assert flag.description == "Search v2"
    assert "update_flag" in store.calls


@pytest.mark.asyncio
async def test_ensure_flag_keeps_existing_fields(store):
    await ensure_flag(store, "beta.search", description="Original", default_enabled=False)
    await store.update_flag("beta.search", {"default_enabled": True})

    flag = await ensure_flag(store, "beta.search", description="Other", default_enabled=False)

    assert flag.description == "Original"
    assert flag.default_enabled is True
    assert "update_flag" not in store.calls[2:]


@pytest.mark.asyncio
async def test_ensure_flag_metadata_not_supplied_leaves_flag_untouched(store):
    await ensure_flag(store, "beta.search", description="Search")
    calls_before = len(store.calls)

    flag = await ensure_flag(store, "beta.search", description="Search")

    assert flag.metadata is None
    assert "update_flag" not in store.calls[calls_before:]


@pytest.mark.asyncio
async def test_ensure_flag_metadata_explicit_none_counts_as_supplied(store):
    await ensure_flag(store, "beta.search", description="Search")
    calls_before = len(store.calls)

    await ensure_flag(store, "beta.search", description="Search", metadata=None)

    assert "update_flag" in store.calls[calls_before:]


@pytest.mark.asyncio
async def test_ensure_flag_metadata_backfilled_once(store):
    await ensure_flag(store, "beta.search")

    flag = await ensure_flag(store, "beta.search", metadata={"owner": "search-team"})
    assert flag.metadata == {"owner": "search-team"}

    flag = await ensure_flag(store, "beta.search", metadata={"owner": "someone-else"})
    assert flag.metadata == {"owner": "search-team"}


@pytest.mark.asyncio
async def test_ensure_definitions_is_idempotent(store):
    await ensure_definitions(store)
    await ensure_definitions(store)

    flags = await _all_flags(store)
    assert len(flags) == 7
    assert len({flag.key for flag in flags}) == 7


@pytest.mark.asyncio
async def test_ensure_definitions_never_reverts_manual_edit(store):
    await ensure_definitions(store)
    await store.update_flag(
        "admin.pipeline_health",
        {"description": "Edited by admin", "default_enabled": True, "metadata": {"owner": "sre"}},
    )

    await ensure_definitions(store)
    await ensure_flag(
        store,
        "admin.pipeline_health",
        description="Declared description",
        metadata={"owner": "platform"},
    )

    flag = await store.find_flag_by_key("admin.pipeline_health")
    assert flag.description == "Edited by admin"
    assert flag.default_enabled is True
    assert flag.metadata == {"owner": "sre"}


@pytest.mark.asyncio
async def test_ensure_definitions_failure_does_not_block_others(clock):
    store = FailingCreateStore("beta.broken", clock=clock)
    registry = FlagRegistry(
        [
            FlagDefinition(key="beta.one"),
            FlagDefinition(key="beta.broken"),
            FlagDefinition(key="beta.two"),
        ]
    )

    with pytest.raises(StoreError, match="connection reset"):
        await ensure_definitions(store, registry)

    assert await store.find_flag_by_key("beta.one") is not None
    assert await store.find_flag_by_key("beta.two") is not None
    assert await store.find_flag_by_key("beta.broken") is None


@pytest.mark.asyncio
async def test_conflict_without_row_reraises_duplicate(clock):
    store = VanishingRowStore(clock=clock)

    with pytest.raises(DuplicateKeyError):
        await ensure_flag(store, "beta.search")

    assert store.calls == ["create_flag", "find_flag_by_key"]


@pytest.mark.asyncio
async def test_store_error_propagates_unchanged(clock):
    store = FailingCreateStore("beta.search", clock=clock)

    with pytest.raises(StoreError) as exc_info:
        await ensure_flag(store, "beta.search")

    assert exc_info.value.operation == "create_flag"
