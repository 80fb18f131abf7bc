"""CRUD for the money journal: ledger entries and gateway trades.

======================================================================
Назначение:
    • TransactionCRUD: добавление записей леджера и выборки/суммы по
      пользователю (для истории и сверки баланса).
    • GatewayTradeCRUD: upsert трейда по order_id, чтение по order_id /
      trade_id, блокировка строки трейда FOR UPDATE для вебхука.

Канон/инварианты:
    • Записи леджера append-only; CRUD их не правит и не удаляет.
    • upsert_by_order_id(): INSERT ... ON CONFLICT (order_id) DO UPDATE.
      Повторный createTrade с тем же order_id не создаёт дублей.
    • lock_by_order_id() держит строку трейда до конца транзакции: проверка
      статуса и зачисление по вебхуку выполняются под этой блокировкой.

Запреты:
    • Балансы здесь не меняются; зачисление выполняет леджер.
======================================================================
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.errors_core import SchemaInconsistencyError
from backend.app.core.logging_core import get_logger
from backend.app.models import GatewayTrade, TradeStatus, Transaction

logger = get_logger(__name__)


class TransactionCRUD:
    """CRUD-обёртка для transactions (append-only)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(self, *, user_id: int, kind: str, amount: Decimal, note: str | None) -> Transaction:
        tx = Transaction(user_id=int(user_id), kind=kind, amount=amount, note=note)
        self.session.add(tx)
        await self.session.flush()
        return tx

    async def list_by_user(self, user_id: int, *, limit: int = 50) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == int(user_id))
            .order_by(Transaction.id.desc())
            .limit(int(limit))
        )
        return list((await self.session.scalars(stmt)).all())

    async def sum_by_user(self, user_id: int) -> Decimal:
        stmt = select(func.coalesce(func.sum(Transaction.amount), 0)).where(
            Transaction.user_id == int(user_id)
        )
        return Decimal(str(await self.session.scalar(stmt) or 0))


class GatewayTradeCRUD:
    """CRUD-обёртка для gateway_trades."""

    # Поля, которые upsert переписывает при повторе с тем же order_id.
    _UPSERT_FIELDS = (
        "trade_id",
        "status",
        "amount",
        "actual_amount",
        "token",
        "payment_url",
        "expiration_time",
        "raw_request",
        "raw_response",
    )

    def __init__(self, session: AsyncSession):
        self.session = session

    def _insert(self):
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(GatewayTrade)
        if dialect == "sqlite":
            return sqlite_insert(GatewayTrade)
        raise SchemaInconsistencyError("Unsupported database dialect.", details={"dialect": dialect})

    async def get_by_order_id(self, order_id: str) -> GatewayTrade | None:
        stmt = (
            select(GatewayTrade)
            .where(GatewayTrade.order_id == order_id)
            .execution_options(populate_existing=True)
        )
        return await self.session.scalar(stmt)

    async def get_by_trade_id(self, trade_id: str) -> GatewayTrade | None:
        stmt = (
            select(GatewayTrade)
            .where(GatewayTrade.trade_id == trade_id)
            .order_by(GatewayTrade.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return await self.session.scalar(stmt)

    async def lock_by_order_id(self, order_id: str) -> GatewayTrade | None:
        """Трейд под FOR UPDATE (значения перечитываются из БД)."""
        stmt = (
            select(GatewayTrade)
            .where(GatewayTrade.order_id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return await self.session.scalar(stmt)

    async def lock_by_trade_id(self, trade_id: str) -> GatewayTrade | None:
        stmt = (
            select(GatewayTrade)
            .where(GatewayTrade.trade_id == trade_id)
            .order_by(GatewayTrade.id.desc())
            .limit(1)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return await self.session.scalar(stmt)

    async def upsert_by_order_id(self, *, order_id: str, user_id: int, **fields: Any) -> GatewayTrade:
        """
        INSERT ... ON CONFLICT (order_id) DO UPDATE и возврат актуальной строки.

        Неизвестные поля запрещены (ValueError), чтобы опечатка не терялась молча.
        """
        unknown = set(fields) - set(self._UPSERT_FIELDS)
        if unknown:
            raise ValueError(f"unknown trade fields: {sorted(unknown)}")

        values: Dict[str, Any] = {"order_id": order_id, "user_id": int(user_id)}
        values.setdefault("status", TradeStatus.PENDING.value)
        values.update(fields)

        stmt = self._insert().values(**values)
        set_ = {name: getattr(stmt.excluded, name) for name in fields}
        set_["updated_at"] = func.now()
        stmt = stmt.on_conflict_do_update(index_elements=[GatewayTrade.order_id], set_=set_)
        await self.session.execute(stmt)

        trade = await self.get_by_order_id(order_id)
        assert trade is not None  # строка только что записана в этой транзакции
        return trade

    async def list_overdue_pending(self, now: datetime, *, limit: int = 200) -> list[GatewayTrade]:
        """pending-трейды с истёкшим expiration_time, под FOR UPDATE (SKIP LOCKED в PG)."""
        stmt = (
            select(GatewayTrade)
            .where(
                GatewayTrade.status == TradeStatus.PENDING.value,
                GatewayTrade.expiration_time.is_not(None),
                GatewayTrade.expiration_time < now,
            )
            .order_by(GatewayTrade.id.asc())
            .limit(int(limit))
            .execution_options(populate_existing=True)
        )
        if self.session.get_bind().dialect.name == "postgresql":
            stmt = stmt.with_for_update(skip_locked=True)
        return list((await self.session.scalars(stmt)).all())
