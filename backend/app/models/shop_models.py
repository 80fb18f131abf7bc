# -*- coding: utf-8 -*-
# backend/app/models/shop_models.py
# =============================================================================
# Назначение кода:
#   ORM-модели домена «Магазин» Keyshop:
#   • Product    - позиция каталога (цена, категория, активность);
#   • ProductKey - один секретный ключ товара (продаётся ровно один раз).
#
# Канон/инварианты:
#   • Цена - Numeric(18,2), строго > 0; sub_category обязательна и не пустая.
#   • Ключ переходит unsold → sold ровно один раз, в той же транзакции,
#     что и создание Order. После продажи value/is_sold не меняются.
#   • Удаление товара: только неактивного и без ключей. Непроданные ключи
#     удаляются отдельной явной операцией (shop_service.purge_unsold_keys).
#
# Запреты:
#   • Модели деньги не двигают и ключи не резервируют (см. services/).
# =============================================================================

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    false,
    func,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import Numeric

from ..core.database_core import Base


class Product(Base):
    """Позиция каталога. sort_order влияет только на витрину."""

    __tablename__ = "products"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        CheckConstraint("price > 0", name="price_positive"),
        CheckConstraint("length(sub_category) > 0", name="sub_category_not_empty"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    sub_category: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=true()
    )
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} price={self.price} active={self.is_active}>"


class ProductKey(Base):
    """
    Секретный ключ товара.

    Поля:
      • key_value       - сама лицензия (никогда не логируется).
      • is_sold         - продан ли ключ.
      • sold_to_user_id - покупатель (ставится при продаже).
      • sold_at         - момент продажи.
    """

    __tablename__ = "product_keys"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    key_value: Mapped[str] = mapped_column(Text, nullable=False)
    is_sold: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    sold_to_user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=True
    )
    sold_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<ProductKey id={self.id} product={self.product_id} sold={self.is_sold}>"


# Выбор «самого раннего непроданного ключа» идёт по этому индексу.
Index("ix_product_keys_product_sold_id", ProductKey.product_id, ProductKey.is_sold, ProductKey.id)

__all__ = ["Product", "ProductKey"]
