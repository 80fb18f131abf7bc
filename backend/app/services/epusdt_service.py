# -*- coding: utf-8 -*-
# backend/app/services/epusdt_service.py
# =============================================================================
# Назначение кода:
#   Менеджер трейдов платёжного шлюза Epusdt (пополнение баланса в USDT):
#     • create_trade()          - order_id генерируется ДО запроса к шлюзу,
#                                  затем upsert по order_id (повтор безопасен);
#     • get_payment_url()       - URL оплаты: от шлюза → checkout по trade_id
#                                  → локальная страница статуса по order_id;
#     • trade_status_dto()      - DTO статуса для бота/админки;
#     • mark_trade_expired() / expire_overdue_trades() - pending → expired
#                                  по сроку (без движения денег).
#
# Канон/инварианты:
#   • Строка трейда пишется только после определённого ответа шлюза
#     (успех). Таймаут/сеть/отказ → строка не создаётся.
#   • Статусы односторонние: pending → {paid | expired | failed}.
#   • Upsert не переписывает статус существующего трейда.
#   • Ядро не повторяет запрос к шлюзу само; повтор решает вызывающий
#     с тем же order_id.
#
# Запреты:
#   • Баланс не меняется здесь: зачисление делает только вебхук
#     (services/epusdt_webhook_service.py) через леджер.
# =============================================================================

from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
from urllib.parse import quote

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config_core import Settings
from backend.app.core.database_core import Database
from backend.app.core.errors_core import (
    GatewayBusinessError,
    TradeNotFoundError,
    UserNotFoundError,
    ValidationFailedError,
)
from backend.app.core.logging_core import get_logger
from backend.app.core.utils_core import (
    NumberLike,
    as_utc,
    decimal_from,
    parse_epoch_or_iso,
    q_price,
    random_hex,
    to_price_str,
    unix_ms,
    utcnow,
)
from backend.app.crud import GatewayTradeCRUD, UserCRUD
from backend.app.integrations.epusdt_api import EpusdtClient, json_amount
from backend.app.models import GatewayTrade, TradeStatus

logger = get_logger(__name__)

CHECKOUT_PATH = "/pay/checkout-counter/"
LOCAL_STATUS_PATH = "/payments/order/"

_HAS_PORT_RE = re.compile(r":\d+$")


# -----------------------------------------------------------------------------
# Чистые функции
# -----------------------------------------------------------------------------
def convert_amount(amount: NumberLike, *, amount_is_usdt: bool, rate: NumberLike = 1) -> Decimal:
    """
    Сумма для шлюза (2 знака). amount_is_usdt → amount × rate.
    rate ≤ 0 или нечисловой трактуется как 1.
    """
    try:
        value = decimal_from(amount)
    except ValueError:
        raise ValidationFailedError("Amount must be a number.", details={"field": "amount"}) from None
    if value <= 0:
        raise ValidationFailedError("Amount must be greater than zero.", details={"field": "amount"})
    if amount_is_usdt:
        try:
            factor = decimal_from(rate)
        except ValueError:
            factor = Decimal(1)
        if factor <= 0:
            factor = Decimal(1)
        value = value * factor
    try:
        return q_price(value)
    except ValueError:
        raise ValidationFailedError("Amount is too large.", details={"field": "amount"}) from None


def make_order_id(user_id: int) -> str:
    """<unix ms>-<user id>-<6 hex>."""
    return f"{unix_ms()}-{int(user_id)}-{random_hex(3)}"


def _optional_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return decimal_from(value)
    except ValueError:
        return None


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


# -----------------------------------------------------------------------------
# Сервис
# -----------------------------------------------------------------------------
class EpusdtTradeService:
    """Жизненный цикл трейдов Epusdt поверх хэндла БД и клиента шлюза."""

    def __init__(self, db: Database, client: EpusdtClient, settings: Settings) -> None:
        self.db = db
        self.client = client
        self.settings = settings

    # ---- URL -------------------------------------------------------------
    def get_payment_url(self, trade: GatewayTrade) -> str:
        if trade.payment_url:
            return trade.payment_url
        if trade.trade_id:
            base = (self.settings.EPUSDT_BASE_URL or "").rstrip("/")
            if base:
                if not _HAS_PORT_RE.search(base):
                    base = f"{base}:{self.settings.EPUSDT_CHECKOUT_PORT}"
                return f"{base}{CHECKOUT_PATH}{trade.trade_id}"
        return self.local_checkout_url(trade)

    def local_checkout_url(self, trade: GatewayTrade) -> str:
        base = (self.settings.BASE_URL or "").rstrip("/")
        if not base or not trade.order_id:
            return ""
        return f"{base}{LOCAL_STATUS_PATH}{quote(trade.order_id, safe='')}"

    def trade_status_dto(self, trade: GatewayTrade) -> Dict[str, Any]:
        updated = as_utc(trade.updated_at)
        return {
            "tradeId": trade.trade_id,
            "orderId": trade.order_id,
            "status": trade.status,
            "amount": to_price_str(trade.amount),
            "actualAmount": (
                f"{Decimal(trade.actual_amount):.6f}" if trade.actual_amount is not None else None
            ),
            "token": trade.token,
            "paymentUrl": self.get_payment_url(trade),
            "checkoutPageUrl": self.local_checkout_url(trade),
            "blockTransactionId": trade.block_transaction_id,
            "updatedAt": updated.isoformat() if updated else None,
        }

    # ---- Создание --------------------------------------------------------
    async def create_trade(
        self,
        *,
        user_id: int,
        amount: NumberLike,
        amount_is_usdt: bool = False,
        order_id: Optional[str] = None,
        notify_url: Optional[str] = None,
        redirect_url: Optional[str] = None,
    ) -> GatewayTrade:
        value = convert_amount(
            amount, amount_is_usdt=amount_is_usdt, rate=self.settings.EPUSDT_FORCED_RATE
        )
        notify = notify_url or self.settings.epusdt_notify_url
        if not notify:
            raise GatewayBusinessError(
                "Payment gateway is not configured.", details={"missing": "EPUSDT_NOTIFY_URL"}
            )
        redirect = redirect_url or self.settings.epusdt_redirect_url or None

        async with self.db.session() as session:
            if await UserCRUD(session).get_by_id(user_id) is None:
                raise UserNotFoundError(details={"user_id": int(user_id)})

        oid = order_id or make_order_id(user_id)
        payload: Dict[str, Any] = {
            "order_id": oid,
            "amount": json_amount(value),
            "notify_url": notify,
            "redirect_url": redirect,
        }
        result = await self.client.create_transaction(payload)
        data = result.reply.get("data") or {}
        if not isinstance(data, dict):
            data = {}

        async def _unit(session: AsyncSession) -> GatewayTrade:
            return await GatewayTradeCRUD(session).upsert_by_order_id(
                order_id=oid,
                user_id=user_id,
                trade_id=_optional_str(data.get("trade_id")),
                amount=value,
                actual_amount=_optional_decimal(data.get("actual_amount")),
                token=_optional_str(data.get("token")),
                payment_url=_optional_str(data.get("payment_url")),
                expiration_time=parse_epoch_or_iso(data.get("expiration_time")),
                raw_request=result.body,
                raw_response=result.reply,
            )

        trade = await self.db.run_in_transaction(_unit)
        logger.info(
            "Gateway trade created",
            extra={
                "order_id": oid,
                "trade_id": trade.trade_id,
                "user_id": int(user_id),
                "amount": to_price_str(value),
                "sign_variant": result.strategy,
            },
        )
        return trade

    # ---- Чтение ----------------------------------------------------------
    async def find_trade(
        self, *, trade_id: Optional[str] = None, order_id: Optional[str] = None
    ) -> GatewayTrade:
        if not trade_id and not order_id:
            raise ValidationFailedError("tradeId or orderId is required.")
        async with self.db.session() as session:
            crud = GatewayTradeCRUD(session)
            trade = await crud.get_by_trade_id(trade_id) if trade_id else await crud.get_by_order_id(order_id or "")
        if trade is None:
            raise TradeNotFoundError(details={"trade_id": trade_id, "order_id": order_id})
        return trade

    async def get_trade_status(
        self, *, trade_id: Optional[str] = None, order_id: Optional[str] = None
    ) -> Dict[str, Any]:
        return self.trade_status_dto(await self.find_trade(trade_id=trade_id, order_id=order_id))

    # ---- Истечение -------------------------------------------------------
    async def mark_trade_expired(self, trade_id: str) -> GatewayTrade:
        """pending → expired. Трейд в конечном статусе не меняется."""

        async def _unit(session: AsyncSession) -> GatewayTrade:
            trade = await GatewayTradeCRUD(session).lock_by_trade_id(trade_id)
            if trade is None:
                raise TradeNotFoundError(details={"trade_id": trade_id})
            if trade.status == TradeStatus.PENDING.value:
                trade.status = TradeStatus.EXPIRED.value
                trade.updated_at = utcnow()
                await session.flush()
            return trade

        trade = await self.db.run_in_transaction(_unit)
        logger.info("Trade expiry requested", extra={"trade_id": trade_id, "status": trade.status})
        return trade

    async def expire_overdue_trades(self, now: Optional[datetime] = None, *, limit: int = 200) -> int:
        moment = now or utcnow()

        async def _unit(session: AsyncSession) -> int:
            trades = await GatewayTradeCRUD(session).list_overdue_pending(moment, limit=limit)
            for trade in trades:
                trade.status = TradeStatus.EXPIRED.value
                trade.updated_at = moment
            await session.flush()
            return len(trades)

        expired = await self.db.run_in_transaction(_unit)
        if expired:
            logger.info("Overdue trades expired", extra={"count": expired})
        return expired


__all__ = [
    "EpusdtTradeService",
    "convert_amount",
    "make_order_id",
]
