"""
PostgreSQL хранилище feature flags на SQLAlchemy asyncio.

Context7 best practice: идемпотентное создание через ON CONFLICT (key) DO NOTHING,
каскадное удаление overrides через внешний ключ ON DELETE CASCADE.
Нарушение уникальности ключа -> DuplicateKeyError, остальные ошибки драйвера -> StoreError.
"""

from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
    select,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, insert as pg_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from ..errors import DuplicateKeyError, FlagNotFoundError, StoreError
from ..models import PLATFORM_SCOPE, CreateResult, Flag, FlagCreate, FlagOverride
from .base import FlagStore

logger = structlog.get_logger()

Base = declarative_base()

UNIQUE_KEY_CONSTRAINT = "uq_feature_flags_key"
_UNIQUE_VIOLATION = "23505"


class FeatureFlagRow(Base):
    __tablename__ = "feature_flags"
    __table_args__ = (UniqueConstraint("key", name=UNIQUE_KEY_CONSTRAINT),)

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    key = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    default_enabled = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    # "metadata" зарезервировано в declarative, атрибут называется metadata_
    metadata_ = Column("metadata", JSONB(none_as_null=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class FeatureFlagOverrideRow(Base):
    __tablename__ = "feature_flag_overrides"
    __table_args__ = (
        CheckConstraint(
            "rollout_percentage IS NULL OR (rollout_percentage >= 0 AND rollout_percentage <= 100)",
            name="ck_feature_flag_overrides_rollout",
        ),
        Index("ix_feature_flag_overrides_lookup", "flag_id", "scope", "target_key"),
    )

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    flag_id = Column(
        BigInteger,
        ForeignKey("feature_flags.id", ondelete="CASCADE"),
        nullable=False,
    )
    scope = Column(String(64), nullable=False, default=PLATFORM_SCOPE, server_default=PLATFORM_SCOPE)
    target_key = Column(String(255), nullable=True)
    enabled = Column(Boolean, nullable=False, default=False)
    rollout_percentage = Column(Float, nullable=True)


def _flag_from_row(row: FeatureFlagRow) -> Flag:
    return Flag(
        id=row.id,
        key=row.key,
        description=row.description,
        default_enabled=bool(row.default_enabled),
        metadata=row.metadata_,
        created_at=row.created_at,
    )


def _flag_from_mapping(values) -> Flag:
    return Flag(
        id=values["id"],
        key=values["key"],
        description=values["description"],
        default_enabled=bool(values["default_enabled"]),
        metadata=values["metadata"],
        created_at=values["created_at"],
    )


def _override_from_row(row: FeatureFlagOverrideRow) -> FlagOverride:
    return FlagOverride(
        id=row.id,
        flag_id=row.flag_id,
        scope=row.scope,
        target_key=row.target_key,
        enabled=row.enabled,
        rollout_percentage=row.rollout_percentage,
    )


def _row_values(data: Dict[str, Any]) -> Dict[str, Any]:
    values = dict(data)
    if "metadata" in values:
        values["metadata_"] = values.pop("metadata")
    return values


def is_unique_key_violation(exc: IntegrityError) -> bool:
    """Нарушение именно уникального индекса по key (а не FK/CHECK)."""
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code is not None and code != _UNIQUE_VIOLATION:
        return False
    constraint = getattr(orig, "constraint_name", None)
    if constraint is None:
        diag = getattr(orig, "diag", None)
        constraint = getattr(diag, "constraint_name", None)
    if constraint is not None:
        return constraint == UNIQUE_KEY_CONSTRAINT
    return UNIQUE_KEY_CONSTRAINT in str(exc) or code == _UNIQUE_VIOLATION


class SqlAlchemyFlagStore(FlagStore):
    """
    FlagStore поверх AsyncEngine.

    Args:
        engine: SQLAlchemy AsyncEngine (postgresql+asyncpg://...)
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_factory = async_sessionmaker(engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, database_url: str, **engine_kwargs: Any) -> "SqlAlchemyFlagStore":
        engine_kwargs.setdefault("pool_pre_ping", True)
        engine = create_async_engine(database_url, **engine_kwargs)
        return cls(engine)

    async def create_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    async def create_flag(self, data: FlagCreate) -> Flag:
        row = FeatureFlagRow(**_row_values(data.to_row()))
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(row)
                    await session.flush()
                    await session.refresh(row)
                    flag = _flag_from_row(row)
        except IntegrityError as exc:
            if is_unique_key_violation(exc):
                raise DuplicateKeyError(data.key) from exc
            raise StoreError(str(exc), operation="create_flag") from exc
        except SQLAlchemyError as exc:
            raise StoreError(str(exc), operation="create_flag") from exc
        return flag

    async def create_or_get(self, data: FlagCreate) -> CreateResult:
        table = FeatureFlagRow.__table__
        statement = (
            pg_insert(table)
            .values(**data.to_row())
            .on_conflict_do_nothing(index_elements=[table.c.key])
            .returning(*table.c)
        )
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    inserted = (await session.execute(statement)).mappings().first()
                    if inserted is not None:
                        return CreateResult.created_new(_flag_from_mapping(inserted))
                    existing = (
                        await session.execute(select(FeatureFlagRow).where(FeatureFlagRow.key == data.key))
                    ).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise StoreError(str(exc), operation="create_or_get") from exc
        if existing is None:
            # Конфликт был, но строку уже удалили
            raise DuplicateKeyError(data.key)
        return CreateResult.already_exists(_flag_from_row(existing))

    async def find_flag_by_key(self, key: str) -> Optional[Flag]:
        try:
            async with self.session_factory() as session:
                row = (
                    await session.execute(select(FeatureFlagRow).where(FeatureFlagRow.key == key))
                ).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise StoreError(str(exc), operation="find_flag_by_key") from exc
        return _flag_from_row(row) if row is not None else None

    async def update_flag(self, key: str, data: Dict[str, Any]) -> Flag:
        allowed = {"description", "default_enabled", "metadata"}
        values = _row_values({name: value for name, value in data.items() if name in allowed})
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    row = (
                        await session.execute(
                            select(FeatureFlagRow).where(FeatureFlagRow.key == key).with_for_update()
                        )
                    ).scalar_one_or_none()
                    if row is None:
                        raise FlagNotFoundError(key)
                    for name, value in values.items():
                        setattr(row, name, value)
                    await session.flush()
                    flag = _flag_from_row(row)
        except SQLAlchemyError as exc:
            raise StoreError(str(exc), operation="update_flag") from exc
        return flag

    async def delete_flag(self, key: str) -> Optional[Flag]:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    row = (
                        await session.execute(select(FeatureFlagRow).where(FeatureFlagRow.key == key))
                    ).scalar_one_or_none()
                    if row is None:
                        return None
                    flag = _flag_from_row(row)
                    await session.delete(row)
        except SQLAlchemyError as exc:
            raise StoreError(str(exc), operation="delete_flag") from exc
        return flag

    async def list_flags(self, skip: int, take: int) -> List[Flag]:
        statement = (
            select(FeatureFlagRow)
            .order_by(FeatureFlagRow.created_at.desc(), FeatureFlagRow.id.desc())
            .offset(skip)
            .limit(take)
        )
        try:
            async with self.session_factory() as session:
                rows = (await session.execute(statement)).scalars().all()
        except SQLAlchemyError as exc:
            raise StoreError(str(exc), operation="list_flags") from exc
        return [_flag_from_row(row) for row in rows]

    def _override_filter(self, flag_id: int, scope: str, target_key: Optional[str]):
        target_clause = (
            FeatureFlagOverrideRow.target_key.is_(None)
            if target_key is None
            else FeatureFlagOverrideRow.target_key == target_key
        )
        return (
            FeatureFlagOverrideRow.flag_id == flag_id,
            FeatureFlagOverrideRow.scope == scope,
            target_clause,
        )

    async def find_override(
        self, flag_id: int, scope: str, target_key: Optional[str]
    ) -> Optional[FlagOverride]:
        statement = (
            select(FeatureFlagOverrideRow)
            .where(*self._override_filter(flag_id, scope, target_key))
            .order_by(FeatureFlagOverrideRow.id)
            .limit(1)
        )
        try:
            async with self.session_factory() as session:
                row = (await session.execute(statement)).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise StoreError(str(exc), operation="find_override") from exc
        return _override_from_row(row) if row is not None else None

    async def upsert_override(
        self,
        flag_id: int,
        scope: str,
        target_key: Optional[str],
        enabled: bool,
        rollout_percentage: Optional[float] = None,
    ) -> FlagOverride:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    row = (
                        await session.execute(
                            select(FeatureFlagOverrideRow)
                            .where(*self._override_filter(flag_id, scope, target_key))
                            .order_by(FeatureFlagOverrideRow.id)
                            .limit(1)
                            .with_for_update()
                        )
                    ).scalar_one_or_none()
                    if row is None:
                        row = FeatureFlagOverrideRow(
                            flag_id=flag_id,
                            scope=scope,
                            target_key=target_key,
                        )
                        session.add(row)
                    row.enabled = bool(enabled)
                    row.rollout_percentage = rollout_percentage
                    await session.flush()
                    override = _override_from_row(row)
        except SQLAlchemyError as exc:
            raise StoreError(str(exc), operation="upsert_override") from exc
        return override

    async def delete_override(
        self, flag_id: int, scope: str, target_key: Optional[str]
    ) -> int:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    rows = (
                        await session.execute(
                            select(FeatureFlagOverrideRow).where(
                                *self._override_filter(flag_id, scope, target_key)
                            )
                        )
                    ).scalars().all()
                    for row in rows:
                        await session.delete(row)
        except SQLAlchemyError as exc:
            raise StoreError(str(exc), operation="delete_override") from exc
        return len(rows)
