# -*- coding: utf-8 -*-
# backend/app/services/orders_service.py
# =============================================================================
# Назначение кода:
#   Оркестратор покупки Keyshop: одна операция «купить ключ за баланс».
#     • purchase(...)            - вся покупка в одной транзакции (с повтором
#                                   при StorageConflictError);
#     • purchase_in_session(...) - то же ядро внутри транзакции вызывающего;
#     • list_user_orders(...)    - история покупок пользователя.
#
# Канон/инварианты:
#   • Шаги: товар активен → блокировка пользователя → balance ≥ price (по
#     заблокированной строке) → reserve_key → списание через леджер →
#     запись Order → commit. Любая ошибка на любом шаге = полный rollback:
#     ни проданного ключа без заказа, ни списания без ключа.
#   • Конкурентные покупки одного пользователя сериализуются блокировкой
#     строки пользователя, одного товара блокировкой строки ключа.
#   • Сумма заказа фиксируется по цене на момент продажи.
#
# Запреты:
#   • Баланс напрямую не трогаем: только transactions_service.adjust_balance.
#   • Значение ключа не пишем в логи.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.database_core import Database
from backend.app.core.errors_core import (
    InsufficientBalanceError,
    ProductUnavailableError,
    UserNotFoundError,
)
from backend.app.core.logging_core import get_logger
from backend.app.core.utils_core import as_utc, q_price, to_price_str
from backend.app.crud import OrderCRUD, ProductCRUD, UserCRUD
from backend.app.models import TxKind
from backend.app.services.inventory_service import reserve_key
from backend.app.services.transactions_service import adjust_balance

logger = get_logger(__name__)


# -----------------------------------------------------------------------------
# Результат покупки
# -----------------------------------------------------------------------------
@dataclass
class PurchaseResult:
    order_id: int
    key: str
    amount: Decimal
    product_id: int
    product_name: str
    key_id: int
    balance: Decimal

    def to_dict(self) -> Dict[str, Any]:
        """Форма ответа для бота/UI: {orderId, key, amount, productId, productName}."""
        return {
            "orderId": self.order_id,
            "key": self.key,
            "amount": to_price_str(self.amount),
            "productId": self.product_id,
            "productName": self.product_name,
        }


# -----------------------------------------------------------------------------
# Ядро покупки
# -----------------------------------------------------------------------------
async def purchase_in_session(session: AsyncSession, *, user_id: int, product_id: int) -> PurchaseResult:
    """
    Покупка внутри уже открытой транзакции. commit/rollback делает вызывающий.
    """
    # 1) товар
    product = await ProductCRUD(session).get_by_id(product_id)
    if product is None or not product.is_active:
        raise ProductUnavailableError(details={"product_id": int(product_id)})
    price = q_price(product.price)

    # 2) пользователь под блокировкой
    user = await UserCRUD(session).lock_for_update(user_id)
    if user is None:
        raise UserNotFoundError(details={"user_id": int(user_id)})

    # 3) достаточность средств по заблокированной строке
    if Decimal(user.balance) < price:
        raise InsufficientBalanceError(
            details={"balance": str(user.balance), "price": to_price_str(price)}
        )

    # 4) ключ
    handle = await reserve_key(session, product_id=product.id, buyer_id=user.id)

    # 5) списание
    ledger = await adjust_balance(
        session,
        user_id=user.id,
        delta=-price,
        note=f"Buy product {product.id} key#{handle.key_id}",
        kind=TxKind.PURCHASE,
    )

    # 6) заказ
    order = await OrderCRUD(session).create(
        user_id=user.id,
        product_id=product.id,
        product_key_id=handle.key_id,
        amount=price,
    )

    return PurchaseResult(
        order_id=order.id,
        key=handle.key_value,
        amount=price,
        product_id=product.id,
        product_name=product.name,
        key_id=handle.key_id,
        balance=ledger.balance,
    )


async def purchase(db: Database, *, user_id: int, product_id: int) -> PurchaseResult:
    """Покупка одной единицей работы; при конфликте блокировок повтор с начала."""

    async def _unit(session: AsyncSession) -> PurchaseResult:
        return await purchase_in_session(session, user_id=user_id, product_id=product_id)

    result = await db.run_in_transaction(_unit)
    logger.info(
        "Purchase committed",
        extra={
            "user_id": int(user_id),
            "product_id": result.product_id,
            "order_id": result.order_id,
            "key_id": result.key_id,
            "amount": to_price_str(result.amount),
        },
    )
    return result


# -----------------------------------------------------------------------------
# История
# -----------------------------------------------------------------------------
async def list_user_orders(session: AsyncSession, *, user_id: int, limit: int = 10) -> List[Dict[str, Any]]:
    limit = min(max(int(limit), 1), 100)
    rows = await OrderCRUD(session).list_by_user(user_id, limit=limit)
    return [
        {
            "orderId": order.id,
            "productId": product.id,
            "productName": product.name,
            "key": key.key_value,
            "amount": to_price_str(order.amount),
            "createdAt": as_utc(order.created_at).isoformat() if order.created_at else None,
        }
        for order, product, key in rows
    ]


__all__ = ["PurchaseResult", "purchase", "purchase_in_session", "list_user_orders"]
