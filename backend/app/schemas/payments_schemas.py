# -*- coding: utf-8 -*-
# backend/app/schemas/payments_schemas.py
# =============================================================================
# Назначение кода:
# Pydantic-схемы пополнения через Epusdt: создание трейда и DTO статуса.
#
# Канон / инварианты:
# • amount > 0; amountIsUsdt=true → сумма пересчитывается по курсу
#   EPUSDT_FORCED_RATE (по умолчанию 1:1).
# • Тело вебхука здесь НЕ описано моделью: отсутствие поля - 400 до проверки
#   подписи, разбор делает epusdt_webhook_service.parse_callback().
#
# Запреты:
# • Нет бизнес-логики - только формы данных.
# =============================================================================

from __future__ import annotations

from decimal import Decimal
from typing import Dict, Optional

from pydantic import Field

from backend.app.core.utils_core import MONEY_LIMIT
from backend.app.schemas.common_schemas import CamelModel


class CreateTradeIn(CamelModel):
    telegram_id: str = Field(..., min_length=1, max_length=64)
    amount: Decimal = Field(..., gt=Decimal(0), lt=MONEY_LIMIT)
    amount_is_usdt: bool = False


class TradeStatusOut(CamelModel):
    trade_id: Optional[str] = None
    order_id: str
    status: str
    amount: str
    actual_amount: Optional[str] = None
    token: Optional[str] = None
    payment_url: str = ""
    checkout_page_url: str = ""
    block_transaction_id: Optional[str] = None
    updated_at: Optional[str] = None


class GatewayEnvOut(CamelModel):
    """Какие переменные шлюза заданы (значения секретов не отдаются)."""

    configured: Dict[str, bool]
    ok: bool


__all__ = ["CreateTradeIn", "TradeStatusOut", "GatewayEnvOut"]
