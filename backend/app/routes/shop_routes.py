# -*- coding: utf-8 -*-
# backend/app/routes/shop_routes.py
# =============================================================================
# Назначение кода:
# Витрина и покупка Keyshop: каталог активных товаров с остатком и покупка
# ключа за внутренний баланс.
#
# Канон / инварианты:
# • Покупка - одна атомарная операция сервиса (orders_service.purchase):
#   либо заказ + проданный ключ + списание, либо ничего.
# • Ошибки покупки различимы по коду: product_unavailable / user_not_found /
#   insufficient_balance / out_of_stock - бот рисует понятное сообщение.
# • Витрина отдаёт ETag; If-None-Match с тем же значением → 304.
#
# Запреты:
# • Никаких прямых SQL и денежных действий в роутере.
# =============================================================================

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.database_core import Database
from backend.app.core.logging_core import get_logger, set_request_context
from backend.app.deps import get_database, get_db, make_etag
from backend.app.schemas.common_schemas import OkResponse
from backend.app.schemas.orders_schemas import PurchaseIn, PurchaseOut
from backend.app.schemas.shop_schemas import ProductOut
from backend.app.services.orders_service import purchase
from backend.app.services.shop_service import list_active_products
from backend.app.services.users_service import get_user_by_telegram_id

logger = get_logger(__name__)

router = APIRouter(prefix="/shop", tags=["shop"])


@router.get("/products", response_model=OkResponse[List[ProductOut]])
async def get_products(
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_db),
):
    items = await list_active_products(session)
    tag = make_etag(items)
    if request.headers.get("if-none-match") == tag:
        return Response(status_code=status.HTTP_304_NOT_MODIFIED, headers={"ETag": tag})
    response.headers["ETag"] = tag
    return {"ok": True, "data": items}


@router.post("/purchase", response_model=OkResponse[PurchaseOut])
async def purchase_product(
    payload: PurchaseIn,
    db: Database = Depends(get_database),
) -> dict:
    async with db.session() as session:
        user = await get_user_by_telegram_id(session, payload.telegram_id)
    set_request_context(user_id=user.id)
    result = await purchase(db, user_id=user.id, product_id=payload.product_id)
    return {"ok": True, "data": result.to_dict()}


__all__ = ["router"]
