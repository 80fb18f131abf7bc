# -*- coding: utf-8 -*-
# backend/app/services/users_service.py
# =============================================================================
# Назначение кода:
#   • Пользователи Keyshop: создание при первом контакте, поиск по Telegram ID,
#     чтение баланса.
#
# Канон/инварианты:
#   • Новый пользователь: баланс 0, случайный api_token (32 hex).
#   • Повторный get_or_create не создаёт дублей (UNIQUE telegram_id; гонка
#     двух первых контактов решается повтором чтения после IntegrityError).
#   • Баланс здесь только читается.
#
# Запреты:
#   • api_token не логируется.
# =============================================================================

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.database_core import Database
from backend.app.core.errors_core import UserNotFoundError, ValidationFailedError
from backend.app.core.logging_core import get_logger
from backend.app.core.utils_core import q_ledger, to_ledger_str
from backend.app.crud import UserCRUD
from backend.app.models import User

logger = get_logger(__name__)


def user_to_dict(user: User, *, with_token: bool = False) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": user.id,
        "telegramId": user.telegram_id,
        "username": user.username,
        "balance": to_ledger_str(user.balance),
    }
    if with_token:
        data["apiToken"] = user.api_token
    return data


async def get_or_create_user(db: Database, telegram_id: str, username: Optional[str] = None) -> User:
    tg = str(telegram_id or "").strip()
    if not tg:
        raise ValidationFailedError("telegram_id is required.", details={"field": "telegram_id"})

    async def _unit(session: AsyncSession) -> User:
        users = UserCRUD(session)
        user = await users.get_by_telegram(tg)
        if user is not None:
            if username is not None:
                await users.set_username(user, username)
            return user
        created = await users.create(tg, username)
        logger.info("User created", extra={"user_id": created.id})
        return created

    try:
        return await db.run_in_transaction(_unit)
    except IntegrityError:
        # конкурентный первый контакт: пользователь уже записан другим запросом
        async with db.session() as session:
            user = await UserCRUD(session).get_by_telegram(tg)
        if user is None:
            raise
        return user


async def get_user_by_telegram_id(session: AsyncSession, telegram_id: str) -> User:
    user = await UserCRUD(session).get_by_telegram(str(telegram_id))
    if user is None:
        raise UserNotFoundError(details={"telegram_id": str(telegram_id)})
    return user


async def get_user_balance(session: AsyncSession, user_id: int) -> Decimal:
    user = await UserCRUD(session).get_by_id(user_id)
    if user is None:
        raise UserNotFoundError(details={"user_id": int(user_id)})
    return q_ledger(user.balance)


__all__ = [
    "user_to_dict",
    "get_or_create_user",
    "get_user_by_telegram_id",
    "get_user_balance",
]
