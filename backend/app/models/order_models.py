# -*- coding: utf-8 -*-
# backend/app/models/order_models.py
# =============================================================================
# Назначение кода:
#   ORM-модель «Заказ» Keyshop: неизменяемая запись продажи одного ключа
#   одному пользователю по зафиксированной цене.
#
# Канон/инварианты:
#   • Один заказ на ключ: product_key_id UNIQUE. Существование заказа -
#     окончательное доказательство того, что ключ продан.
#   • amount - цена на момент продажи (Numeric(18,2)), последующие правки
#     цены товара на заказ не влияют.
#   • Заказ создаётся только в services/orders_service.purchase(), в той же
#     транзакции, что и продажа ключа и списание баланса.
#
# Запреты:
#   • Заказы не редактируются и не удаляются.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, Integer, func
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import Numeric

from ..core.database_core import Base


class Order(Base):
    """Продажа ключа: пользователь, товар, ключ, сумма."""

    __tablename__ = "orders"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    product_key_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("product_keys.id", ondelete="RESTRICT"), nullable=False, unique=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Order id={self.id} user={self.user_id} key={self.product_key_id} amount={self.amount}>"


Index("ix_orders_user_id_id", Order.user_id, Order.id)

__all__ = ["Order"]
