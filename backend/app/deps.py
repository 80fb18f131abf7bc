# -*- coding: utf-8 -*-
# backend/app/deps.py
# =============================================================================
# Keyshop - Общие зависимости FastAPI: настройки, хэндл БД, сессия чтения,
#           клиент шлюза, сервис трейдов, админ-гейт, лимиты списков и ETag.
# -----------------------------------------------------------------------------
# Канон/требования:
#   • Settings, Database и EpusdtClient живут в app.state (их создаёт
#     create_app()); глобальных синглтонов нет, тесты подменяют их целиком.
#   • get_db() выдаёт сессию ТОЛЬКО для чтения; мутации идут через
#     Database.transaction()/run_in_transaction() внутри сервисов.
#   • Админские ручки: заголовок X-Admin-Telegram-Id ∈ ADMIN_TELEGRAM_IDS.
#
# Этот модуль НЕ делает бизнес-логику, только инфраструктуру/валидацию.
# =============================================================================
from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

from fastapi import Depends, Header, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config_core import Settings
from backend.app.core.database_core import Database
from backend.app.core.errors_core import AdminAccessDeniedError
from backend.app.core.logging_core import get_logger, set_request_context
from backend.app.integrations.epusdt_api import EpusdtClient
from backend.app.services.epusdt_service import EpusdtTradeService

logger = get_logger(__name__)


# -----------------------------------------------------------------------------
# Состояние приложения
# -----------------------------------------------------------------------------
def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_database(request: Request) -> Database:
    return request.app.state.db


def get_gateway_client(request: Request) -> EpusdtClient:
    return request.app.state.gateway_client


async def get_db(db: Database = Depends(get_database)) -> AsyncIterator[AsyncSession]:
    """
    Сессия для чтения в роутах. Транзакцию не открывает и не коммитит.
    """
    async with db.session() as session:
        yield session


def get_trade_service(
    db: Database = Depends(get_database),
    client: EpusdtClient = Depends(get_gateway_client),
    settings: Settings = Depends(get_app_settings),
) -> EpusdtTradeService:
    return EpusdtTradeService(db, client, settings)


# -----------------------------------------------------------------------------
# Админ-гейт
# -----------------------------------------------------------------------------
@dataclass
class AdminContext:
    telegram_id: str


async def require_admin(
    x_admin_telegram_id: Optional[str] = Header(default=None, alias="X-Admin-Telegram-Id"),
    settings: Settings = Depends(get_app_settings),
) -> AdminContext:
    tg = (x_admin_telegram_id or "").strip()
    if not tg or tg not in settings.admin_ids:
        logger.warning("Admin access denied", extra={"telegram_id": tg or None})
        raise AdminAccessDeniedError()
    set_request_context(user_id=tg)
    return AdminContext(telegram_id=tg)


# -----------------------------------------------------------------------------
# Списки / ETag
# -----------------------------------------------------------------------------
async def list_limit(
    limit: int = Query(20, ge=1, le=100, description="Page size (1..100)"),
) -> int:
    return limit


def make_etag(payload: Any) -> str:
    """
    Детерминированный ETag из JSON-представления payload.
    Фронт/бот шлют его в If-None-Match и получают 304.
    """
    raw = json.dumps(payload, ensure_ascii=False, sort_keys=True, separators=(",", ":"), default=str)
    return '"' + hashlib.sha256(raw.encode("utf-8")).hexdigest() + '"'


__all__ = [
    "AdminContext",
    "get_app_settings",
    "get_database",
    "get_gateway_client",
    "get_db",
    "get_trade_service",
    "require_admin",
    "list_limit",
    "make_etag",
]
