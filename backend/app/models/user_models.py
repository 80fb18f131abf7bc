# -*- coding: utf-8 -*-
# backend/app/models/user_models.py
# =============================================================================
# Назначение кода:
#   ORM-модель домена «Пользователи» Keyshop:
#   • User - покупатель (Telegram-аккаунт) с денежным балансом.
#
# Канон/инварианты:
#   • Бизнес-идентификатор: telegram_id (строка, уникален в системе).
#   • balance: Numeric(20,6). Меняется ТОЛЬКО через леджер
#     (services/transactions_service.adjust_balance), всегда вместе с записью
#     Transaction. Сумма транзакций пользователя == balance.
#   • Пользователь создаётся при первом контакте и никогда не удаляется.
#
# Запреты:
#   • Модель НЕ выполняет денежных операций.
#   • CHECK на неотрицательность не ставим: запрет минуса обеспечивает покупка
#     (проверка под блокировкой), а админская корректировка вправе уйти в минус явно.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import Numeric

from ..core.database_core import Base


class User(Base):
    """
    Покупатель.

    Поля:
      • telegram_id - внешний идентификатор аккаунта (уникальный).
      • username    - отображаемое имя (может быть NULL/меняться).
      • balance     - денежный баланс (Decimal, 6 знаков).
      • api_token   - персональный токен (32 hex), выдаётся при создании.
    """

    __tablename__ = "users"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    telegram_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    username: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    balance: Mapped[Decimal] = mapped_column(
        Numeric(20, 6), nullable=False, default=Decimal("0"), server_default="0"
    )
    api_token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} tg={self.telegram_id} balance={self.balance}>"


__all__ = ["User"]
