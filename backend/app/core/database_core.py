# -*- coding: utf-8 -*-
# backend/app/core/database_core.py
# =============================================================================
# Назначение кода:
#   • Единая точка работы с БД Keyshop (PostgreSQL + asyncpg + SQLAlchemy 2.0).
#   • Явно создаваемый хэндл Database: движок, фабрика сессий, транзакционный
#     scope с гарантированным commit/rollback и трансляцией ошибок хранилища.
#   • Сверка версии схемы (alembic) на старте.
#
# Канон / инварианты:
#   • Только async-движок (create_async_engine).
#   • Никаких глобальных синглтонов движка: Database создаётся в create_app()
#     (или в тестах) и передаётся сервисам/роутам явно.
#   • Каждая многошаговая мутация (покупка, леджер, вебхук) выполняется внутри
#     одного Database.transaction(): выход по исключению = rollback.
#   • Блокировки строк: select(...).with_for_update(). На SQLite блокировка
#     заменяется сериализацией транзакций (BEGIN IMMEDIATE).
#   • Ошибки блокировок → StorageConflictError (повтор операции безопасен);
#     нет таблицы/колонки → SchemaInconsistencyError (фатально).
#
# Запреты:
#   • Никакой бизнес-логики (покупки, зачисления) в этом модуле.
#   • Никакого DDL в рантайме: схема создаётся миграциями (backend/migrations).
#     Database.create_all() существует только для тестов и локальной отладки.
# =============================================================================

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TypeVar

from sqlalchemy import MetaData, event, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from backend.app.core.config_core import Settings
from backend.app.core.errors_core import (
    SchemaInconsistencyError,
    ShopError,
    StorageConflictError,
)
from backend.app.core.logging_core import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Голова цепочки миграций, с которой совместим этот код.
SCHEMA_HEAD_REVISION = "0001"

# Бэкенды, для которых есть upsert и блокировки строк.
SUPPORTED_DIALECTS = ("postgresql", "sqlite")

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Единый declarative Base проекта."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


# -----------------------------------------------------------------------------
# Классификация ошибок хранилища
# -----------------------------------------------------------------------------
_CONFLICT_SQLSTATES = {"40001", "40P01", "55P03"}
_SCHEMA_SQLSTATES = {"42P01", "42703"}
_CONFLICT_MARKERS = (
    "deadlock",
    "could not serialize",
    "lock timeout",
    "lock_timeout",
    "database is locked",
    "database table is locked",
)
_SCHEMA_MARKERS = (
    "no such table",
    "no such column",
    "has no column named",
    "undefinedtable",
    "undefinedcolumn",
)


def translate_db_error(exc: DBAPIError) -> Optional[ShopError]:
    """
    Переводит ошибку драйвера в доменную ошибку хранилища или возвращает None,
    если это обычная ошибка (например, IntegrityError), которую решает сервис.
    """
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    text_ = f"{type(orig).__name__}: {orig}".lower() if orig is not None else str(exc).lower()

    if sqlstate in _CONFLICT_SQLSTATES or any(m in text_ for m in _CONFLICT_MARKERS):
        return StorageConflictError(details={"sqlstate": sqlstate} if sqlstate else None)
    if sqlstate in _SCHEMA_SQLSTATES or any(m in text_ for m in _SCHEMA_MARKERS):
        return SchemaInconsistencyError()
    if "relation" in text_ and "does not exist" in text_:
        return SchemaInconsistencyError()
    return None


# -----------------------------------------------------------------------------
# Движок
# -----------------------------------------------------------------------------
def _install_sqlite_listeners(engine: AsyncEngine) -> None:
    """
    SQLite не умеет SELECT ... FOR UPDATE. Драйверный autobegin отключаем и
    открываем каждую транзакцию как BEGIN IMMEDIATE: писатели сериализуются,
    и проверка «баланс/склад под блокировкой» остаётся корректной.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(
    url: str,
    *,
    pool_size: int = 10,
    max_overflow: int = 10,
    echo: bool = False,
    lock_timeout_sec: int = 30,
) -> AsyncEngine:
    """
    Создаёт AsyncEngine.

    • PostgreSQL: пул по настройкам, pool_pre_ping, lock_timeout на сессию
      (ожидание блокировки строки дольше лимита → StorageConflictError).
    • SQLite (тесты): busy-timeout драйвера и сериализация BEGIN IMMEDIATE.
    • Любой другой бэкенд → ValueError (ошибка конфигурации, сервис не стартует).
    """
    backend = make_url(url).get_backend_name()
    if backend not in SUPPORTED_DIALECTS:
        raise ValueError(f"unsupported database backend: {backend!r}")
    if backend == "sqlite":
        engine = create_async_engine(
            url,
            echo=echo,
            connect_args={"timeout": lock_timeout_sec},
        )
        _install_sqlite_listeners(engine)
        return engine

    connect_args: dict[str, Any] = {}
    if "+asyncpg" in url:
        connect_args["server_settings"] = {"lock_timeout": str(lock_timeout_sec * 1000)}
    return create_async_engine(
        url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        echo=echo,
        connect_args=connect_args,
    )


# -----------------------------------------------------------------------------
# Хэндл хранилища
# -----------------------------------------------------------------------------
class Database:
    """
    Хэндл хранилища, который передаётся в сервисы и роуты.

        db = Database.from_settings(settings)
        async with db.transaction() as session:
            ...  # commit на выходе, rollback при исключении
    """

    def __init__(
        self,
        url: str,
        *,
        pool_size: int = 10,
        max_overflow: int = 10,
        echo: bool = False,
        lock_timeout_sec: int = 30,
        conflict_retries: int = 3,
    ) -> None:
        self.url = url
        self.conflict_retries = max(1, conflict_retries)
        self.engine: AsyncEngine = build_engine(
            url,
            pool_size=pool_size,
            max_overflow=max_overflow,
            echo=echo,
            lock_timeout_sec=lock_timeout_sec,
        )
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=self.engine,
            expire_on_commit=False,
            autoflush=False,
            class_=AsyncSession,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(
            settings.database_url_async(),
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            echo=settings.DB_ECHO,
            lock_timeout_sec=settings.DB_LOCK_TIMEOUT_SEC,
            conflict_retries=settings.DB_CONFLICT_RETRIES,
        )

    # ---- Сессии / транзакции ----
    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Сессия для чтения; транзакцией управляет вызывающий код."""
        async with self.session_factory() as session:
            try:
                yield session
            except DBAPIError as exc:
                translated = translate_db_error(exc)
                if translated is None:
                    raise
                raise translated from exc

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """
        Транзакционный scope: begin → commit на чистом выходе,
        rollback на любом исключении (включая ошибки commit).
        """
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    yield session
            except DBAPIError as exc:
                translated = translate_db_error(exc)
                if translated is None:
                    raise
                if isinstance(translated, SchemaInconsistencyError):
                    logger.error("Schema inconsistency detected", extra={"error": str(exc.orig)})
                raise translated from exc

    async def run_in_transaction(
        self,
        fn: Callable[[AsyncSession], Awaitable[T]],
        *,
        attempts: Optional[int] = None,
    ) -> T:
        """
        Выполняет fn(session) в одной транзакции. При StorageConflictError
        повторяет единицу работы целиком с линейной паузой.
        """
        tries = attempts or self.conflict_retries
        for attempt in range(1, tries + 1):
            try:
                async with self.transaction() as session:
                    return await fn(session)
            except StorageConflictError:
                if attempt >= tries:
                    raise
                logger.warning(
                    "Storage conflict, retrying unit of work",
                    extra={"attempt": attempt, "max_attempts": tries},
                )
                await asyncio.sleep(0.15 * attempt)
        raise StorageConflictError()  # pragma: no cover

    # ---- Схема ----
    async def check_schema_version(self, expected: str = SCHEMA_HEAD_REVISION) -> str:
        """Сверяет alembic_version с ожидаемой ревизией; расхождение фатально."""
        async with self.engine.connect() as conn:
            try:
                rows = (await conn.execute(text("SELECT version_num FROM alembic_version"))).scalars().all()
            except DBAPIError as exc:
                logger.error("alembic_version table is missing; run migrations")
                raise SchemaInconsistencyError(
                    details={"expected": expected, "found": None}
                ) from exc
        if expected not in rows:
            logger.error(
                "Schema version mismatch",
                extra={"expected": expected, "found": list(rows)},
            )
            raise SchemaInconsistencyError(details={"expected": expected, "found": list(rows)})
        return expected

    async def create_all(self) -> None:
        """Создаёт таблицы по метаданным (только тесты/локальная отладка)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    # ---- Health / завершение ----
    async def ping(self) -> bool:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except DBAPIError as exc:
            logger.error("DB ping failed: DB is not reachable", extra={"error": str(exc.orig)})
            return False

    async def dispose(self) -> None:
        await self.engine.dispose()


__all__ = [
    "Base",
    "Database",
    "SCHEMA_HEAD_REVISION",
    "SUPPORTED_DIALECTS",
    "build_engine",
    "translate_db_error",
]
