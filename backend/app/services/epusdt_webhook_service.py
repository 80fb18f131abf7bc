# -*- coding: utf-8 -*-
# backend/app/services/epusdt_webhook_service.py
# =============================================================================
# Назначение кода:
#   Приём callback-уведомлений Epusdt и идемпотентное зачисление депозита.
#     • parse_callback()  - валидация тела (8 обязательных полей, числа, статус);
#     • handle_callback() - подпись → блокировка трейда → переход статуса →
#                           зачисление через леджер ровно один раз.
#
# Канон/инварианты:
#   • Подпись проверяется ДО любых изменений состояния (InvalidSignatureError).
#   • Код статуса: 2 → paid, 3 → expired, иначе pending.
#   • Проверка статуса трейда и зачисление выполняются в одной транзакции
#     под блокировкой строки трейда. Два конкурентных paid-callback'а не
#     могут зачислить дважды: второй увидит paid и обновит только аудит.
#   • Трейд уже paid → обновляются только raw_callback/updated_at.
#   • paid-callback для pending или expired трейда → статус paid и
#     зачисление actual_amount (оплата пришла после истечения срока).
#   • Не-paid callback меняет статус только у pending трейда; конечные
#     статусы назад не откатываются.
#   • Ошибка зачисления откатывает и смену статуса: повторная доставка
#     callback'а зачислит корректно.
#
# Запреты:
#   • Никаких зачислений в обход transactions_service.adjust_balance.
#   • Никаких предположений о порядке доставки: только состояние трейда.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.database_core import Database
from backend.app.core.errors_core import (
    InvalidSignatureError,
    MalformedCallbackError,
    TradeNotFoundError,
)
from backend.app.core.logging_core import get_logger
from backend.app.core.utils_core import decimal_from, q_ledger, utcnow
from backend.app.crud import GatewayTradeCRUD
from backend.app.integrations.epusdt_api import CALLBACK_SIGNED_FIELDS, verify_signature
from backend.app.models import GatewayTrade, TradeStatus, TxKind
from backend.app.services.transactions_service import adjust_balance

logger = get_logger(__name__)

REQUIRED_FIELDS = (
    "trade_id",
    "order_id",
    "amount",
    "actual_amount",
    "token",
    "block_transaction_id",
    "signature",
    "status",
)


@dataclass
class CallbackPayload:
    trade_id: str
    order_id: str
    amount: Decimal
    actual_amount: Decimal
    token: str
    block_transaction_id: str
    signature: str
    status: int
    raw: Dict[str, Any]

    def signed_fields(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in CALLBACK_SIGNED_FIELDS}


def map_status(code: int) -> TradeStatus:
    if code == 2:
        return TradeStatus.PAID
    if code == 3:
        return TradeStatus.EXPIRED
    return TradeStatus.PENDING


def _parse_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("boolean status")
    number = decimal_from(value)
    if number != number.to_integral_value():
        raise ValueError("status is not an integer")
    return int(number)


def parse_callback(body: Any) -> CallbackPayload:
    """Проверка тела callback'а. Любое нарушение → MalformedCallbackError (400)."""
    if not isinstance(body, Mapping):
        raise MalformedCallbackError("invalid body")
    for name in REQUIRED_FIELDS:
        if name not in body:
            raise MalformedCallbackError(f"missing field: {name}", details={"field": name})

    try:
        amount = decimal_from(body["amount"])
    except ValueError:
        raise MalformedCallbackError("invalid amount", details={"field": "amount"}) from None
    if amount <= 0:
        raise MalformedCallbackError("invalid amount", details={"field": "amount"})

    try:
        actual_amount = decimal_from(body["actual_amount"])
    except ValueError:
        raise MalformedCallbackError("invalid actual_amount", details={"field": "actual_amount"}) from None
    if actual_amount < 0:
        raise MalformedCallbackError("invalid actual_amount", details={"field": "actual_amount"})

    try:
        status_code = _parse_int(body["status"])
    except ValueError:
        raise MalformedCallbackError("invalid status", details={"field": "status"}) from None

    return CallbackPayload(
        trade_id=str(body["trade_id"] or ""),
        order_id=str(body["order_id"] or ""),
        amount=amount,
        actual_amount=actual_amount,
        token=str(body["token"] or ""),
        block_transaction_id=str(body["block_transaction_id"] or ""),
        signature=str(body["signature"] or ""),
        status=status_code,
        raw=dict(body),
    )


def _apply_callback_fields(trade: GatewayTrade, payload: CallbackPayload, status: TradeStatus) -> None:
    trade.status = status.value
    trade.trade_id = payload.trade_id or trade.trade_id
    trade.actual_amount = payload.actual_amount
    trade.token = payload.token or trade.token
    trade.block_transaction_id = payload.block_transaction_id or trade.block_transaction_id
    trade.raw_callback = payload.raw
    trade.updated_at = utcnow()


async def handle_callback(db: Database, payload: CallbackPayload, *, token: str) -> GatewayTrade:
    if not verify_signature(payload.signed_fields(), payload.signature, token):
        logger.warning(
            "Callback signature mismatch",
            extra={"order_id": payload.order_id, "trade_id": payload.trade_id},
        )
        raise InvalidSignatureError()

    new_status = map_status(payload.status)

    async def _unit(session: AsyncSession) -> GatewayTrade:
        trade = await GatewayTradeCRUD(session).lock_by_order_id(payload.order_id)
        if trade is None:
            raise TradeNotFoundError(details={"order_id": payload.order_id})

        if trade.status == TradeStatus.PAID.value:
            trade.raw_callback = payload.raw
            trade.updated_at = utcnow()
            await session.flush()
            logger.info(
                "Duplicate callback for paid trade, credit skipped",
                extra={"order_id": trade.order_id, "trade_id": trade.trade_id},
            )
            return trade

        if new_status is TradeStatus.PAID:
            previous = trade.status
            _apply_callback_fields(trade, payload, new_status)
            await session.flush()
            credit = q_ledger(payload.actual_amount)
            await adjust_balance(
                session,
                user_id=trade.user_id,
                delta=credit,
                note=f"Epusdt deposit {trade.trade_id or trade.order_id}",
                kind=TxKind.GATEWAY_DEPOSIT,
            )
            logger.info(
                "Gateway deposit credited",
                extra={
                    "order_id": trade.order_id,
                    "trade_id": trade.trade_id,
                    "user_id": trade.user_id,
                    "amount": str(credit),
                    "previous_status": previous,
                },
            )
            return trade

        if trade.status == TradeStatus.PENDING.value:
            _apply_callback_fields(trade, payload, new_status)
        else:
            trade.raw_callback = payload.raw
            trade.updated_at = utcnow()
        await session.flush()
        logger.info(
            "Callback status applied",
            extra={"order_id": trade.order_id, "status": trade.status, "reported": new_status.value},
        )
        return trade

    return await db.run_in_transaction(_unit)


__all__ = [
    "REQUIRED_FIELDS",
    "CallbackPayload",
    "map_status",
    "parse_callback",
    "handle_callback",
]
