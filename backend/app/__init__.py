# ==============================================================================
# Keyshop - FastAPI application factory
# ------------------------------------------------------------------------------
# Назначение: создаёт и конфигурирует FastAPI-приложение: логирование,
# хэндл БД, клиент шлюза Epusdt, middleware, обработчики ошибок и роутеры.
#
# Канон/инварианты:
#   • Все долгоживущие зависимости (Settings, Database, EpusdtClient) кладутся
#     в app.state; модульных синглтонов нет. Тесты передают свои экземпляры.
#   • При DB_CHECK_SCHEMA_ON_STARTUP старт падает, если ревизия схемы в БД
#     не совпадает с ожидаемой (нельзя работать с деньгами на чужой схеме).
#   • Балансы меняют только сервисы; этот модуль не совершает финансовых
#     операций.
#
# Запреты:
#   • Не запускает планировщики и бот - только HTTP-API.
# ==============================================================================
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core import boot_core
from .core.config_core import Settings, get_settings
from .core.database_core import Database
from .core.errors_core import setup_exception_handlers
from .core.logging_core import CorrelationIdMiddleware, get_logger, setup_logging
from .integrations.epusdt_api import EpusdtClient
from .routes import list_registered_routes, register
from .services import services_health_snapshot

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    gateway_client: Optional[EpusdtClient] = None,
) -> FastAPI:
    """Создать FastAPI-приложение Keyshop."""

    settings = settings or get_settings()
    setup_logging(settings)
    db = database or Database.from_settings(settings)
    client = gateway_client or EpusdtClient.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        boot_core(settings)
        if settings.DB_CHECK_SCHEMA_ON_STARTUP:
            await db.check_schema_version()
        logger.info("Keyshop API started", extra={"routes": ",".join(list_registered_routes())})
        try:
            yield
        finally:
            await db.dispose()
            logger.info("Keyshop API stopped")

    app = FastAPI(title=settings.PROJECT_NAME, version=settings.APP_VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.db = db
    app.state.gateway_client = client

    origins = settings.effective_cors_origins()
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    app.add_middleware(CorrelationIdMiddleware)

    setup_exception_handlers(app)
    register(app, prefix=settings.API_PREFIX)

    @app.get("/health", tags=["health"])
    async def health() -> dict:
        """Живость сервиса: доступность БД и сводка по трейдам."""
        snapshot = await services_health_snapshot(db)
        return {
            "ok": bool(snapshot["db"]),
            "data": {"version": settings.APP_VERSION, "env": settings.env_normalized, **snapshot},
        }

    return app


__all__ = ["create_app"]


# ==============================================================================
# Пояснения «для чайника»:
#   • Этот модуль ничего не пишет в БД и не двигает деньги - только собирает API.
#   • Планировщик истечения трейдов запускается отдельным процессом:
#       python -m backend.app.scheduler.expire_trades
# ==============================================================================
