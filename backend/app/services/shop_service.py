# -*- coding: utf-8 -*-
# backend/app/services/shop_service.py
# =============================================================================
# Назначение кода:
# Жизненный цикл каталога Keyshop: товары и склад ключей.
#   • create/update/set_active/delete товара;
#   • purge_unsold_keys - явная каскадная операция над непроданными ключами;
#   • import_keys / update_key_value / delete_key;
#   • витрина: list_active_products (со счётчиком остатка), count_available_keys.
#
# Канон/инварианты:
# • Имя товара уникально; цена > 0; sub_category обязательна и не пуста.
#   Если category не задана, берётся sub_category.
# • Удаление товара - явная проверка предусловий:
#     активен → ProductStillActiveError;
#     есть ключи (любые) → ProductHasKeysError с количеством.
#   Непроданные ключи удаляются ТОЛЬКО отдельной операцией purge_unsold_keys;
#   проданные ключи и заказы не трогаются никогда.
# • Проданный ключ неизменяем: правка/удаление → ValidationFailedError.
#
# Запреты:
# • Никаких денежных операций (см. transactions_service / orders_service).
# • Значения ключей не логируются.
# =============================================================================

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.database_core import Database
from backend.app.core.errors_core import (
    DuplicateProductNameError,
    NotFoundError,
    ProductHasKeysError,
    ProductStillActiveError,
    ValidationFailedError,
)
from backend.app.core.logging_core import get_logger
from backend.app.core.utils_core import NumberLike, q_price, to_price_str
from backend.app.crud import ProductCRUD, ProductKeyCRUD
from backend.app.models import Product, ProductKey

logger = get_logger(__name__)


# ---- Валидация ---------------------------------------------------------------

def _clean_name(name: Optional[str]) -> str:
    value = (name or "").strip()
    if not value:
        raise ValidationFailedError("Product name is required.", details={"field": "name"})
    return value


def _clean_price(price: NumberLike) -> Decimal:
    try:
        value = q_price(price)
    except ValueError:
        raise ValidationFailedError("Price must be a number.", details={"field": "price"}) from None
    if value <= 0:
        raise ValidationFailedError("Price must be greater than zero.", details={"field": "price"})
    return value


def _clean_sub_category(sub_category: Optional[str]) -> str:
    value = (sub_category or "").strip()
    if not value:
        raise ValidationFailedError(
            "Sub category is required.", details={"field": "sub_category"}
        )
    return value


async def _require_product(session: AsyncSession, product_id: int) -> Product:
    product = await ProductCRUD(session).get_by_id(product_id)
    if product is None:
        raise NotFoundError("Product not found.", details={"product_id": int(product_id)})
    return product


async def _ensure_name_free(session: AsyncSession, name: str, *, exclude_id: Optional[int] = None) -> None:
    existing = await ProductCRUD(session).get_by_name(name)
    if existing is not None and existing.id != exclude_id:
        raise DuplicateProductNameError(details={"name": name})


def product_to_dict(product: Product, *, stock: Optional[int] = None) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": product.id,
        "name": product.name,
        "price": to_price_str(product.price),
        "category": product.category,
        "subCategory": product.sub_category,
        "description": product.description,
        "isActive": bool(product.is_active),
        "sortOrder": product.sort_order,
    }
    if stock is not None:
        data["stock"] = int(stock)
    return data


# ---- Товары ------------------------------------------------------------------

async def create_product(
    db: Database,
    *,
    name: str,
    price: NumberLike,
    sub_category: str,
    category: Optional[str] = None,
    description: Optional[str] = None,
    is_active: bool = True,
    sort_order: int = 0,
) -> Product:
    clean_name = _clean_name(name)
    clean_price = _clean_price(price)
    clean_sub = _clean_sub_category(sub_category)

    async def _unit(session: AsyncSession) -> Product:
        await _ensure_name_free(session, clean_name)
        product = Product(
            name=clean_name,
            price=clean_price,
            sub_category=clean_sub,
            category=(category or "").strip() or clean_sub,
            description=description,
            is_active=bool(is_active),
            sort_order=int(sort_order),
        )
        try:
            return await ProductCRUD(session).create(product)
        except IntegrityError:
            raise DuplicateProductNameError(details={"name": clean_name}) from None

    product = await db.run_in_transaction(_unit)
    logger.info("Product created", extra={"product_id": product.id, "active": product.is_active})
    return product


async def update_product(
    db: Database,
    product_id: int,
    *,
    name: Optional[str] = None,
    price: Optional[NumberLike] = None,
    category: Optional[str] = None,
    sub_category: Optional[str] = None,
    description: Optional[str] = None,
    sort_order: Optional[int] = None,
    is_active: Optional[bool] = None,
) -> Product:
    """Частичное обновление: None означает «не менять»."""

    async def _unit(session: AsyncSession) -> Product:
        product = await _require_product(session, product_id)
        if name is not None:
            clean_name = _clean_name(name)
            await _ensure_name_free(session, clean_name, exclude_id=product.id)
            product.name = clean_name
        if price is not None:
            product.price = _clean_price(price)
        if sub_category is not None:
            product.sub_category = _clean_sub_category(sub_category)
        if category is not None:
            product.category = category.strip() or product.sub_category
        if description is not None:
            product.description = description
        if sort_order is not None:
            product.sort_order = int(sort_order)
        if is_active is not None:
            product.is_active = bool(is_active)
        try:
            await session.flush()
        except IntegrityError:
            raise DuplicateProductNameError(details={"name": product.name}) from None
        return product

    product = await db.run_in_transaction(_unit)
    logger.info("Product updated", extra={"product_id": product.id})
    return product


async def set_product_active(db: Database, product_id: int, active: bool) -> Product:
    return await update_product(db, product_id, is_active=bool(active))


async def delete_product(db: Database, product_id: int) -> None:
    """Удалить неактивный товар без ключей. Заказы и проданные ключи не трогаются."""

    async def _unit(session: AsyncSession) -> None:
        product = await _require_product(session, product_id)
        if product.is_active:
            raise ProductStillActiveError(details={"product_id": product.id})
        keys = ProductKeyCRUD(session)
        unsold = await keys.count_unsold(product.id)
        sold = await keys.count_sold(product.id)
        if unsold or sold:
            raise ProductHasKeysError(
                details={"product_id": product.id, "unsold": unsold, "sold": sold}
            )
        await ProductCRUD(session).delete(product)

    await db.run_in_transaction(_unit)
    logger.info("Product deleted", extra={"product_id": int(product_id)})


async def purge_unsold_keys(db: Database, product_id: int) -> int:
    """Явный каскад: удалить все непроданные ключи товара. Возвращает число удалённых."""

    async def _unit(session: AsyncSession) -> int:
        await _require_product(session, product_id)
        return await ProductKeyCRUD(session).delete_unsold(product_id)

    removed = await db.run_in_transaction(_unit)
    logger.warning("Unsold keys purged", extra={"product_id": int(product_id), "count": removed})
    return removed


# ---- Ключи -------------------------------------------------------------------

def _split_lines(lines: Union[str, Iterable[str]]) -> List[str]:
    raw = lines.splitlines() if isinstance(lines, str) else list(lines)
    return [line.strip() for line in raw if line and line.strip()]


async def import_keys(db: Database, product_id: int, lines: Union[str, Iterable[str]]) -> int:
    values = _split_lines(lines)

    async def _unit(session: AsyncSession) -> int:
        await _require_product(session, product_id)
        if not values:
            return 0
        return await ProductKeyCRUD(session).add_many(product_id, values)

    inserted = await db.run_in_transaction(_unit)
    logger.info("Keys imported", extra={"product_id": int(product_id), "count": inserted})
    return inserted


async def _require_unsold_key(session: AsyncSession, key_id: int) -> ProductKey:
    key = await ProductKeyCRUD(session).lock_by_id(key_id)
    if key is None:
        raise NotFoundError("Key not found.", details={"key_id": int(key_id)})
    if key.is_sold:
        raise ValidationFailedError("Sold keys cannot be changed.", details={"key_id": key.id})
    return key


async def update_key_value(db: Database, key_id: int, value: str) -> ProductKey:
    clean = (value or "").strip()
    if not clean:
        raise ValidationFailedError("Key value is required.", details={"field": "key_value"})

    async def _unit(session: AsyncSession) -> ProductKey:
        key = await _require_unsold_key(session, key_id)
        key.key_value = clean
        await session.flush()
        return key

    return await db.run_in_transaction(_unit)


async def delete_key(db: Database, key_id: int) -> None:
    async def _unit(session: AsyncSession) -> None:
        key = await _require_unsold_key(session, key_id)
        await ProductKeyCRUD(session).delete(key)

    await db.run_in_transaction(_unit)
    logger.info("Key deleted", extra={"key_id": int(key_id)})


# ---- Витрина -----------------------------------------------------------------

async def list_active_products(session: AsyncSession) -> List[Dict[str, Any]]:
    """Активные товары (sort_order, id) с остатком непроданных ключей."""
    products = await ProductCRUD(session).list_active()
    counts = await ProductKeyCRUD(session).unsold_counts([p.id for p in products])
    return [product_to_dict(p, stock=counts.get(p.id, 0)) for p in products]


async def list_all_products(session: AsyncSession) -> List[Dict[str, Any]]:
    products = await ProductCRUD(session).list_all()
    counts = await ProductKeyCRUD(session).unsold_counts([p.id for p in products])
    return [product_to_dict(p, stock=counts.get(p.id, 0)) for p in products]


async def count_available_keys(session: AsyncSession, product_id: int) -> int:
    return await ProductKeyCRUD(session).count_unsold(product_id)


async def get_product(session: AsyncSession, product_id: int) -> Product:
    return await _require_product(session, product_id)


__all__ = [
    "product_to_dict",
    "create_product",
    "update_product",
    "set_product_active",
    "delete_product",
    "purge_unsold_keys",
    "import_keys",
    "update_key_value",
    "delete_key",
    "list_active_products",
    "list_all_products",
    "count_available_keys",
    "get_product",
]
