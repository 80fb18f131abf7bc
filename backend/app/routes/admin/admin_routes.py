# -*- coding: utf-8 -*-
# backend/app/routes/admin/admin_routes.py
# =============================================================================
# Назначение кода:
# Админ-API Keyshop: ручные корректировки баланса и жизненный цикл каталога
# (товары, импорт/очистка/правка ключей).
#
# Канон/инварианты (важно):
# • Доступ только с заголовком X-Admin-Telegram-Id из ADMIN_TELEGRAM_IDS.
# • Любые денежные операции идут ТОЛЬКО через transactions_service
#   (одна строка леджера на корректировку, kind=admin_adjustment).
# • Баланс пользователя не уходит в минус, если явно не указан allowNegative.
# • Удалить можно только неактивный товар без ключей; проданные ключи
#   (и заказы на них) неприкосновенны.
#
# Запреты:
# • Никаких прямых SQL из роутов; только сервисные функции.
# • Значения ключей в логи не пишем.
# =============================================================================

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.database_core import Database
from backend.app.core.logging_core import get_logger
from backend.app.core.utils_core import to_ledger_str
from backend.app.deps import AdminContext, get_database, get_db, require_admin
from backend.app.schemas.common_schemas import OkResponse
from backend.app.schemas.shop_schemas import (
    KeysCountOut,
    KeysImportIn,
    KeyUpdateIn,
    ProductCreateIn,
    ProductOut,
    ProductUpdateIn,
)
from backend.app.schemas.transactions_schemas import AdminAdjustBalanceIn, LedgerResultOut
from backend.app.services.shop_service import (
    count_available_keys,
    create_product,
    delete_key,
    delete_product,
    import_keys,
    list_all_products,
    product_to_dict,
    purge_unsold_keys,
    update_key_value,
    update_product,
)
from backend.app.services.transactions_service import admin_adjust_balance

logger = get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


# =============================================================================
# Баланс
# =============================================================================

@router.post("/adjust-balance", response_model=OkResponse[LedgerResultOut])
async def adjust_balance_endpoint(
    payload: AdminAdjustBalanceIn,
    admin: AdminContext = Depends(require_admin),
    db: Database = Depends(get_database),
) -> dict:
    """
    Ручная корректировка: amount > 0 - начисление, amount < 0 - списание.
    Ответ содержит итоговый баланс и id строки леджера.
    """
    note = payload.note or f"Admin adjustment by {admin.telegram_id}"
    result = await admin_adjust_balance(
        db,
        telegram_id=payload.telegram_id,
        amount=payload.amount,
        note=note,
        allow_negative=payload.allow_negative,
    )
    return {
        "ok": True,
        "data": {
            "userId": result.user_id,
            "transactionId": result.transaction_id,
            "kind": result.kind,
            "delta": to_ledger_str(result.delta),
            "balance": to_ledger_str(result.balance),
        },
    }


# =============================================================================
# Каталог
# =============================================================================

@router.get("/products", response_model=OkResponse[List[ProductOut]])
async def admin_list_products(session: AsyncSession = Depends(get_db)) -> dict:
    return {"ok": True, "data": await list_all_products(session)}


@router.post("/products", response_model=OkResponse[ProductOut])
async def admin_create_product(payload: ProductCreateIn, db: Database = Depends(get_database)) -> dict:
    product = await create_product(
        db,
        name=payload.name,
        price=payload.price,
        sub_category=payload.sub_category,
        category=payload.category,
        description=payload.description,
        is_active=payload.is_active,
        sort_order=payload.sort_order,
    )
    return {"ok": True, "data": product_to_dict(product, stock=0)}


@router.patch("/products/{product_id}", response_model=OkResponse[ProductOut])
async def admin_update_product(
    product_id: int,
    payload: ProductUpdateIn,
    db: Database = Depends(get_database),
) -> dict:
    product = await update_product(db, product_id, **payload.model_dump(exclude_unset=True))
    async with db.session() as session:
        stock = await count_available_keys(session, product.id)
    return {"ok": True, "data": product_to_dict(product, stock=stock)}


@router.delete("/products/{product_id}", response_model=OkResponse[dict])
async def admin_delete_product(product_id: int, db: Database = Depends(get_database)) -> dict:
    await delete_product(db, product_id)
    return {"ok": True, "data": {"productId": product_id, "deleted": True}}


# =============================================================================
# Ключи
# =============================================================================

@router.post("/products/{product_id}/keys/import", response_model=OkResponse[KeysCountOut])
async def admin_import_keys(
    product_id: int,
    payload: KeysImportIn,
    db: Database = Depends(get_database),
) -> dict:
    inserted = await import_keys(db, product_id, payload.lines())
    return {"ok": True, "data": {"productId": product_id, "count": inserted}}


@router.post("/products/{product_id}/keys/purge", response_model=OkResponse[KeysCountOut])
async def admin_purge_keys(product_id: int, db: Database = Depends(get_database)) -> dict:
    removed = await purge_unsold_keys(db, product_id)
    return {"ok": True, "data": {"productId": product_id, "count": removed}}


@router.patch("/keys/{key_id}", response_model=OkResponse[dict])
async def admin_update_key(key_id: int, payload: KeyUpdateIn, db: Database = Depends(get_database)) -> dict:
    key = await update_key_value(db, key_id, payload.key_value)
    return {"ok": True, "data": {"keyId": key.id, "productId": key.product_id}}


@router.delete("/keys/{key_id}", response_model=OkResponse[dict])
async def admin_delete_key(key_id: int, db: Database = Depends(get_database)) -> dict:
    await delete_key(db, key_id)
    return {"ok": True, "data": {"keyId": key_id, "deleted": True}}


__all__ = ["router"]
