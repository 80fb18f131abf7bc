# -*- coding: utf-8 -*-
# backend/app/routes/user_routes.py
# =============================================================================
# Keyshop - Пользовательские ручки (регистрация, профиль, история)
# -----------------------------------------------------------------------------
# Что делает модуль:
#   • POST /users - первый контакт бота: создать пользователя или вернуть
#     существующего (с api_token для бота).
#   • GET /users/{telegram_id} - профиль и баланс.
#   • GET /users/{telegram_id}/transactions - леджер (новые сверху).
#   • GET /users/{telegram_id}/orders - купленные ключи.
#
# Надёжность:
#   • Здесь только чтение и get-or-create; баланс меняют сервисы леджера.
#   • Ошибки - доменные исключения (UserNotFoundError → 404).
# =============================================================================

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.database_core import Database
from backend.app.core.logging_core import get_logger, set_request_context
from backend.app.core.utils_core import as_utc, to_ledger_str
from backend.app.deps import get_database, get_db, list_limit
from backend.app.schemas.common_schemas import OkResponse
from backend.app.schemas.orders_schemas import OrderOut
from backend.app.schemas.transactions_schemas import TransactionOut
from backend.app.schemas.user_schemas import UserCreateIn, UserOut
from backend.app.services.orders_service import list_user_orders
from backend.app.services.transactions_service import list_user_transactions
from backend.app.services.users_service import (
    get_or_create_user,
    get_user_by_telegram_id,
    user_to_dict,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


@router.post("", response_model=OkResponse[UserOut])
async def register_user(payload: UserCreateIn, db: Database = Depends(get_database)) -> dict:
    user = await get_or_create_user(db, payload.telegram_id, payload.username)
    set_request_context(user_id=user.id)
    return {"ok": True, "data": user_to_dict(user, with_token=True)}


@router.get("/{telegram_id}", response_model=OkResponse[UserOut])
async def get_user(telegram_id: str, session: AsyncSession = Depends(get_db)) -> dict:
    user = await get_user_by_telegram_id(session, telegram_id)
    return {"ok": True, "data": user_to_dict(user)}


@router.get("/{telegram_id}/transactions", response_model=OkResponse[List[TransactionOut]])
async def get_user_transactions(
    telegram_id: str,
    limit: int = Depends(list_limit),
    session: AsyncSession = Depends(get_db),
) -> dict:
    user = await get_user_by_telegram_id(session, telegram_id)
    rows = await list_user_transactions(session, user_id=user.id, limit=limit)
    items = []
    for tx in rows:
        created = as_utc(tx.created_at)
        items.append(
            {
                "id": tx.id,
                "kind": tx.kind,
                "amount": to_ledger_str(tx.amount),
                "note": tx.note,
                "createdAt": created.isoformat() if created else None,
            }
        )
    return {"ok": True, "data": items}


@router.get("/{telegram_id}/orders", response_model=OkResponse[List[OrderOut]])
async def get_user_orders(
    telegram_id: str,
    limit: int = Depends(list_limit),
    session: AsyncSession = Depends(get_db),
) -> dict:
    user = await get_user_by_telegram_id(session, telegram_id)
    return {"ok": True, "data": await list_user_orders(session, user_id=user.id, limit=limit)}


__all__ = ["router"]
