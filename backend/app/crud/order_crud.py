# -*- coding: utf-8 -*-
# backend/app/crud/order_crud.py
# ============================================================================
# Назначение:
#   • CRUD для orders: создание записи продажи и выборки истории.
#
# Канон/инварианты:
#   • Заказ неизменяем; product_key_id UNIQUE (один заказ на ключ).
#   • Создание заказа происходит только внутри транзакции покупки
#     (services/orders_service.purchase), commit делает вызывающий код.
#
# Запреты:
#   • Никакой бизнес-логики оплаты; только CRUD.
# ============================================================================

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.logging_core import get_logger
from backend.app.models import Order, Product, ProductKey

logger = get_logger(__name__)


class OrderCRUD:
    """CRUD-обёртка для orders."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, order_id: int) -> Order | None:
        return await self.session.get(Order, int(order_id))

    async def create(self, *, user_id: int, product_id: int, product_key_id: int, amount: Decimal) -> Order:
        """
        Сохранить заказ и вернуть его с первичным ключом.

        Commit выполняется на уровне вызывающего кода.
        """

        order = Order(
            user_id=int(user_id),
            product_id=int(product_id),
            product_key_id=int(product_key_id),
            amount=amount,
        )
        self.session.add(order)
        await self.session.flush()
        return order

    async def list_by_user(self, user_id: int, *, limit: int = 10) -> list[tuple[Order, Product, ProductKey]]:
        """Последние заказы пользователя вместе с товаром и ключом (id DESC)."""

        stmt = (
            select(Order, Product, ProductKey)
            .join(Product, Product.id == Order.product_id)
            .join(ProductKey, ProductKey.id == Order.product_key_id)
            .where(Order.user_id == int(user_id))
            .order_by(Order.id.desc())
            .limit(int(limit))
        )
        rows = (await self.session.execute(stmt)).all()
        return [(o, p, k) for o, p, k in rows]
