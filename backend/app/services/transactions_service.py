# -*- coding: utf-8 -*-
# backend/app/services/transactions_service.py
# =============================================================================
# Keyshop: денежный леджер (Balance Ledger)
# -----------------------------------------------------------------------------
# ЕДИНСТВЕННАЯ точка входа для изменения баланса пользователя.
#   • adjust_balance(...)            - вложенный вызов внутри транзакции вызывающего
#   • adjust_balance_standalone(...) - собственная транзакция с ретраями конфликтов
#   • admin_adjust_balance(...)      - ручная корректировка администратором
#   • reconcile_balance(...)         - сверка баланса с суммой леджера
#
# Правила:
#   • Каждое изменение: блокировка строки пользователя → balance += delta →
#     запись Transaction с той же дельтой. Всё в одной единице работы.
#   • Вид записи по знаку (delta ≥ 0 → recharge, delta < 0 → purchase),
#     если вызывающий не указал иной (admin_adjustment, gateway_deposit).
#   • Сам леджер отрицательный итог не запрещает: достаточность средств
#     проверяет покупка до списания, админ уходит в минус только явно.
#   • Любая ошибка хранилища пробрасывается; откат делает транзакционный scope.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.database_core import Database
from backend.app.core.errors_core import UserNotFoundError, ValidationFailedError
from backend.app.core.logging_core import get_logger
from backend.app.core.utils_core import NumberLike, q_ledger
from backend.app.crud import TransactionCRUD, UserCRUD
from backend.app.models import Transaction, TxKind

logger = get_logger(__name__)


# -----------------------------------------------------------------------------
# DTO результата операции
# -----------------------------------------------------------------------------
@dataclass
class LedgerResult:
    user_id: int
    delta: Decimal
    kind: str
    balance: Decimal            # баланс после операции
    transaction_id: int
    note: Optional[str] = None


def infer_kind(delta: Decimal) -> TxKind:
    """delta ≥ 0 → recharge, delta < 0 → purchase."""
    return TxKind.RECHARGE if delta >= 0 else TxKind.PURCHASE


# -----------------------------------------------------------------------------
# Ядро леджера
# -----------------------------------------------------------------------------
async def adjust_balance(
    session: AsyncSession,
    *,
    user_id: int,
    delta: NumberLike,
    note: Optional[str] = None,
    kind: Optional[TxKind | str] = None,
) -> LedgerResult:
    """
    Изменить баланс пользователя и добавить запись леджера.

    Вызывается ВНУТРИ активной транзакции (Database.transaction()); commit и
    rollback принадлежат вызывающему. Блокирует строку пользователя.
    """
    if not session.in_transaction():
        raise RuntimeError("adjust_balance() must run inside an active transaction")

    amount = q_ledger(delta)
    kind_value = TxKind(kind).value if kind is not None else infer_kind(amount).value

    users = UserCRUD(session)
    user = await users.lock_for_update(user_id)
    if user is None:
        raise UserNotFoundError(details={"user_id": int(user_id)})

    new_balance = await users.apply_balance_delta(user, amount)
    tx = await TransactionCRUD(session).append(
        user_id=user.id,
        kind=kind_value,
        amount=amount,
        note=note,
    )

    logger.info(
        "Ledger entry appended",
        extra={"user_id": user.id, "kind": kind_value, "delta": str(amount), "tx_id": tx.id},
    )
    return LedgerResult(
        user_id=user.id,
        delta=amount,
        kind=kind_value,
        balance=new_balance,
        transaction_id=tx.id,
        note=note,
    )


async def adjust_balance_standalone(
    db: Database,
    *,
    user_id: int,
    delta: NumberLike,
    note: Optional[str] = None,
    kind: Optional[TxKind | str] = None,
) -> LedgerResult:
    """adjust_balance() в собственной транзакции (повтор при StorageConflict)."""

    async def _unit(session: AsyncSession) -> LedgerResult:
        return await adjust_balance(session, user_id=user_id, delta=delta, note=note, kind=kind)

    return await db.run_in_transaction(_unit)


# -----------------------------------------------------------------------------
# Админская корректировка
# -----------------------------------------------------------------------------
async def admin_adjust_balance(
    db: Database,
    *,
    telegram_id: str,
    amount: NumberLike,
    note: Optional[str] = None,
    allow_negative: bool = False,
) -> LedgerResult:
    """
    Ручная корректировка баланса по Telegram ID.

    amount ≠ 0. Уход баланса в минус разрешён только с allow_negative=True.
    """
    try:
        delta = q_ledger(amount)
    except ValueError:
        raise ValidationFailedError("Amount must be a number.", details={"field": "amount"}) from None
    if delta == 0:
        raise ValidationFailedError("Amount must be non-zero.", details={"field": "amount"})

    async def _unit(session: AsyncSession) -> LedgerResult:
        users = UserCRUD(session)
        user = await users.get_by_telegram(str(telegram_id))
        if user is None:
            raise UserNotFoundError(details={"telegram_id": str(telegram_id)})
        if not allow_negative:
            locked = await users.lock_for_update(user.id)
            assert locked is not None
            if Decimal(locked.balance) + delta < 0:
                raise ValidationFailedError(
                    "Adjustment would make the balance negative.",
                    details={"balance": str(locked.balance), "amount": str(delta)},
                )
        return await adjust_balance(
            session,
            user_id=user.id,
            delta=delta,
            note=note,
            kind=TxKind.ADMIN_ADJUSTMENT,
        )

    result = await db.run_in_transaction(_unit)
    logger.warning(
        "Admin balance adjustment applied",
        extra={"user_id": result.user_id, "delta": str(result.delta), "tx_id": result.transaction_id},
    )
    return result


# -----------------------------------------------------------------------------
# Чтение / сверка
# -----------------------------------------------------------------------------
async def list_user_transactions(
    session: AsyncSession, *, user_id: int, limit: int = 50
) -> list[Transaction]:
    limit = min(max(int(limit), 1), 100)
    return await TransactionCRUD(session).list_by_user(user_id, limit=limit)


async def reconcile_balance(session: AsyncSession, *, user_id: int) -> Tuple[Decimal, Decimal]:
    """(баланс пользователя, сумма его транзакций). Должны совпадать всегда."""
    user = await UserCRUD(session).get_by_id(user_id)
    if user is None:
        raise UserNotFoundError(details={"user_id": int(user_id)})
    ledger_sum = await TransactionCRUD(session).sum_by_user(user_id)
    return q_ledger(user.balance), q_ledger(ledger_sum)


__all__ = [
    "LedgerResult",
    "infer_kind",
    "adjust_balance",
    "adjust_balance_standalone",
    "admin_adjust_balance",
    "list_user_transactions",
    "reconcile_balance",
]
