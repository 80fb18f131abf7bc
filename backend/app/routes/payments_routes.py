# -*- coding: utf-8 -*-
# backend/app/routes/payments_routes.py
# =============================================================================
# Назначение кода:
# Пополнение баланса через шлюз Epusdt:
#   • POST /payments/epusdt/create  - создать трейд, вернуть DTO статуса;
#   • GET  /payments/epusdt/status  - статус по tradeId или orderId;
#   • POST /payments/epusdt/webhook - callback шлюза (подпись → зачисление);
#   • GET  /payments/epusdt/env     - какие переменные шлюза заданы.
#
# Канон / инварианты:
# • Вебхук: отсутствие обязательного поля → 400 ДО проверки подписи;
#   неверная подпись → 401; неизвестный трейд → 404. Шлюз получает HTTP
#   ошибку и доставляет callback повторно.
# • Повторная доставка paid-callback'а отвечает {ok: true} без повторного
#   зачисления.
# • Ядро не повторяет запрос к шлюзу само (нет дублей трейдов).
#
# Запреты:
# • Никаких зачислений в роутере - только сервисы.
# • Токен шлюза не отдаётся наружу и не логируется.
# =============================================================================

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request

from backend.app.core.config_core import Settings
from backend.app.core.database_core import Database
from backend.app.core.errors_core import MalformedCallbackError
from backend.app.core.logging_core import get_logger, set_request_context
from backend.app.deps import get_app_settings, get_database, get_trade_service
from backend.app.schemas.common_schemas import OkResponse
from backend.app.schemas.payments_schemas import CreateTradeIn, GatewayEnvOut, TradeStatusOut
from backend.app.services.epusdt_service import EpusdtTradeService
from backend.app.services.epusdt_webhook_service import handle_callback, parse_callback
from backend.app.services.users_service import get_user_by_telegram_id

logger = get_logger(__name__)

router = APIRouter(prefix="/payments/epusdt", tags=["payments"])


@router.post("/create", response_model=OkResponse[TradeStatusOut])
async def create_trade(
    payload: CreateTradeIn,
    db: Database = Depends(get_database),
    service: EpusdtTradeService = Depends(get_trade_service),
) -> dict:
    async with db.session() as session:
        user = await get_user_by_telegram_id(session, payload.telegram_id)
    set_request_context(user_id=user.id)
    trade = await service.create_trade(
        user_id=user.id,
        amount=payload.amount,
        amount_is_usdt=payload.amount_is_usdt,
    )
    set_request_context(order_id=trade.order_id)
    return {"ok": True, "data": service.trade_status_dto(trade)}


@router.get("/status", response_model=OkResponse[TradeStatusOut])
async def trade_status(
    trade_id: Optional[str] = Query(None, alias="tradeId"),
    order_id: Optional[str] = Query(None, alias="orderId"),
    service: EpusdtTradeService = Depends(get_trade_service),
) -> dict:
    return {"ok": True, "data": await service.get_trade_status(trade_id=trade_id, order_id=order_id)}


@router.post("/webhook", response_model=OkResponse[TradeStatusOut])
async def epusdt_webhook(
    request: Request,
    db: Database = Depends(get_database),
    settings: Settings = Depends(get_app_settings),
    service: EpusdtTradeService = Depends(get_trade_service),
) -> dict:
    try:
        body: Any = await request.json()
    except ValueError:
        raise MalformedCallbackError("invalid body") from None
    payload = parse_callback(body)
    set_request_context(order_id=payload.order_id)
    trade = await handle_callback(db, payload, token=settings.EPUSDT_TOKEN)
    return {"ok": True, "data": service.trade_status_dto(trade)}


@router.get("/env", response_model=OkResponse[GatewayEnvOut])
async def gateway_env(settings: Settings = Depends(get_app_settings)) -> dict:
    configured = settings.gateway_env_status()
    return {"ok": True, "data": {"configured": configured, "ok": all(configured.values())}}


__all__ = ["router"]
