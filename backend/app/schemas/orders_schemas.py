# -*- coding: utf-8 -*-
# backend/app/schemas/orders_schemas.py
# =============================================================================
# Назначение кода:
# Pydantic-схемы покупки ключа за баланс и истории заказов Keyshop.
#
# Канон / инварианты:
# • Ответ покупки: {orderId, key, amount, productId, productName}.
# • amount - цена на момент продажи, строка с 2 знаками.
#
# Запреты:
# • В схемах НЕТ бизнес-логики - только форма данных и валидация.
# =============================================================================

from __future__ import annotations

from typing import Optional

from pydantic import Field

from backend.app.schemas.common_schemas import CamelModel


class PurchaseIn(CamelModel):
    telegram_id: str = Field(..., min_length=1, max_length=64, description="Telegram ID покупателя")
    product_id: int = Field(..., ge=1)


class PurchaseOut(CamelModel):
    order_id: int
    key: str
    amount: str
    product_id: int
    product_name: str


class OrderOut(CamelModel):
    """Строка истории «Мои заказы»."""

    order_id: int
    product_id: int
    product_name: str
    key: str
    amount: str
    created_at: Optional[str] = None


__all__ = ["PurchaseIn", "PurchaseOut", "OrderOut"]
