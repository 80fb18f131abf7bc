# -*- coding: utf-8 -*-
# backend/app/schemas/transactions_schemas.py
# =============================================================================
# Назначение кода:
# Pydantic-схемы леджера Keyshop: записи transactions и админская
# корректировка баланса.
#
# Канон / инварианты:
# • Сумма корректировки ≠ 0 (знак задаёт направление).
# • Уход в минус только с явным allowNegative=true.
# • Суммы наружу - строкой (до 6 знаков).
#
# Запреты:
# • Никакой бизнес-логики в схемах - только форма данных/валидация.
# =============================================================================

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import Field, field_validator

from backend.app.core.utils_core import MONEY_LIMIT
from backend.app.schemas.common_schemas import CamelModel


class TransactionOut(CamelModel):
    id: int
    kind: str
    amount: str
    note: Optional[str] = None
    created_at: Optional[str] = None


class AdminAdjustBalanceIn(CamelModel):
    telegram_id: str = Field(..., min_length=1, max_length=64)
    amount: Decimal = Field(..., gt=-MONEY_LIMIT, lt=MONEY_LIMIT)
    note: Optional[str] = Field(None, max_length=500)
    allow_negative: bool = False

    @field_validator("amount")
    @classmethod
    def _non_zero(cls, v: Decimal) -> Decimal:
        if v == 0:
            raise ValueError("amount must be non-zero")
        return v


class LedgerResultOut(CamelModel):
    user_id: int
    transaction_id: int
    kind: str
    delta: str
    balance: str


__all__ = ["TransactionOut", "AdminAdjustBalanceIn", "LedgerResultOut"]
