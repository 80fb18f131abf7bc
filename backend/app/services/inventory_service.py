# -*- coding: utf-8 -*-
# backend/app/services/inventory_service.py
# =============================================================================
# Назначение кода:
#   • Резервирование ключей склада: reserve_key() выбирает самый ранний
#     непроданный ключ товара под эксклюзивной блокировкой и помечает его
#     проданным внутри текущей (ещё не закоммиченной) транзакции.
#
# Канон/инварианты:
#   • Вызывается ТОЛЬКО внутри активной транзакции вызывающего (покупка).
#     Откат транзакции отменяет резервирование целиком.
#   • N конкурентных резервирований при K < N свободных ключах: ровно K
#     успешных, N−K получают OutOfStockError; ключ не выдаётся дважды.
#   • Товар должен быть активен (проверку делает вызывающий при загрузке
#     товара; здесь повторная защита от вызова в обход).
#
# Запреты:
#   • Никаких денежных операций и создания заказов.
#   • Значение ключа не логируется.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.errors_core import OutOfStockError, ProductUnavailableError
from backend.app.core.logging_core import get_logger
from backend.app.core.utils_core import utcnow
from backend.app.crud import ProductCRUD, ProductKeyCRUD
from backend.app.models import ProductKey

logger = get_logger(__name__)


@dataclass
class KeyHandle:
    """Зарезервированный ключ (строка уже помечена проданной в транзакции)."""

    key_id: int
    product_id: int
    key_value: str
    sold_at: datetime
    row: ProductKey


async def reserve_key(session: AsyncSession, *, product_id: int, buyer_id: int) -> KeyHandle:
    if not session.in_transaction():
        raise RuntimeError("reserve_key() must run inside an active transaction")

    product = await ProductCRUD(session).get_by_id(product_id)
    if product is None or not product.is_active:
        raise ProductUnavailableError(details={"product_id": int(product_id)})

    key = await ProductKeyCRUD(session).lock_first_unsold_key(product_id)
    if key is None:
        logger.info("Out of stock", extra={"product_id": int(product_id)})
        raise OutOfStockError(details={"product_id": int(product_id)})

    now = utcnow()
    key.is_sold = True
    key.sold_to_user_id = int(buyer_id)
    key.sold_at = now
    await session.flush()

    logger.info(
        "Key reserved",
        extra={"product_id": int(product_id), "key_id": key.id, "user_id": int(buyer_id)},
    )
    return KeyHandle(
        key_id=key.id,
        product_id=key.product_id,
        key_value=key.key_value,
        sold_at=now,
        row=key,
    )


__all__ = ["KeyHandle", "reserve_key"]
