# -*- coding: utf-8 -*-
# backend/app/models/transactions_models.py
# =============================================================================
# Назначение кода:
#   ORM-модели денежного журнала Keyshop:
#   • Transaction  - запись леджера (дельта баланса пользователя);
#   • GatewayTrade - одна попытка оплаты через шлюз Epusdt.
#
# Канон/инварианты:
#   • Transaction append-only: создаётся только adjust_balance(), не правится.
#     SUM(transactions.amount) пользователя == users.balance.
#   • GatewayTrade: order_id UNIQUE (генерирует приложение до похода в шлюз),
#     trade_id выдаёт шлюз. Переходы статуса pending → paid|expired|failed
#     односторонние; зачисление по оплаченному трейду происходит ровно один раз.
#   • raw_request/raw_response/raw_callback - снимки для аудита.
#
# Запреты:
#   • Модели не двигают деньги: зачисление делает webhook-сервис через леджер.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import Numeric

from ..core.database_core import Base

# JSONB в PostgreSQL, обычный JSON в остальных диалектах (тесты на SQLite).
JsonType = JSON().with_variant(JSONB(), "postgresql")


class TxKind(str, Enum):
    """Вид записи леджера."""

    RECHARGE = "recharge"
    PURCHASE = "purchase"
    ADMIN_ADJUSTMENT = "admin_adjustment"
    GATEWAY_DEPOSIT = "gateway_deposit"


class TradeStatus(str, Enum):
    """Статус трейда шлюза."""

    PENDING = "pending"
    PAID = "paid"
    EXPIRED = "expired"
    FAILED = "failed"


class Transaction(Base):
    """
    Запись леджера.

    Поля:
      • kind   - recharge | purchase | admin_adjustment | gateway_deposit.
      • amount - дельта баланса со знаком (Numeric(20,6)).
      • note   - свободный комментарий (товар/ключ, трейд, причина админа).
    """

    __tablename__ = "transactions"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        CheckConstraint(
            "kind IN ('recharge', 'purchase', 'admin_adjustment', 'gateway_deposit')",
            name="kind_known",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Transaction id={self.id} user={self.user_id} kind={self.kind} amount={self.amount}>"


class GatewayTrade(Base):
    """
    Трейд шлюза Epusdt.

    Поля:
      • order_id             - внутренний идентификатор (ms-user-hex6), UNIQUE.
      • trade_id             - идентификатор шлюза (после создания).
      • amount               - запрошенная сумма (2 знака).
      • actual_amount        - сумма к оплате/оплаченная по данным шлюза.
      • token                - адрес кошелька для оплаты (от шлюза).
      • payment_url          - URL кассы от шлюза.
      • expiration_time      - срок жизни счёта.
      • block_transaction_id - хеш транзакции в блокчейне (после оплаты).
    """

    __tablename__ = "gateway_trades"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'paid', 'expired', 'failed')",
            name="status_known",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    trade_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=TradeStatus.PENDING.value, server_default="pending"
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    actual_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 6), nullable=True)
    token: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    payment_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expiration_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    block_transaction_id: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)

    raw_request: Mapped[Optional[Dict[str, Any]]] = mapped_column(JsonType, nullable=True)
    raw_response: Mapped[Optional[Dict[str, Any]]] = mapped_column(JsonType, nullable=True)
    raw_callback: Mapped[Optional[Dict[str, Any]]] = mapped_column(JsonType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<GatewayTrade order={self.order_id} trade={self.trade_id} status={self.status}>"


Index("ix_transactions_user_id_id", Transaction.user_id, Transaction.id)
Index("ix_gateway_trades_trade_id", GatewayTrade.trade_id)
Index("ix_gateway_trades_status_expiration", GatewayTrade.status, GatewayTrade.expiration_time)

__all__ = ["TxKind", "TradeStatus", "Transaction", "GatewayTrade"]
