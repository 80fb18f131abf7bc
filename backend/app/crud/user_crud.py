"""User CRUD: lookup, creation without duplicates, row lock and balance primitive.

======================================================================
Назначение:
    • Безопасный доступ к таблице users: поиск по id/telegram_id,
      создание без дублей, блокировка строки FOR UPDATE.
    • Примитив изменения баланса apply_balance_delta() используется
      ТОЛЬКО леджером (services/transactions_service.adjust_balance).

Канон/инварианты:
    • Баланс меняется только под блокировкой строки пользователя и
      только вместе с записью в transactions (это обеспечивает сервис).
    • Блокирующие чтения идут с populate_existing: значение баланса берётся
      из заблокированной строки, а не из кэша identity map.

Запреты:
    • Не вызывать apply_balance_delta() в обход леджера.
======================================================================
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Select, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from backend.app.core.logging_core import get_logger
from backend.app.core.utils_core import q_ledger, random_hex
from backend.app.models import User

logger = get_logger(__name__)


class UserCRUD:
    """CRUD-обёртка для users."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: int) -> User | None:
        """Получить пользователя по первичному ключу (без блокировки)."""

        return await self.session.get(User, int(user_id))

    async def get_by_telegram(self, telegram_id: str) -> User | None:
        """Найти пользователя по Telegram ID (уникальное поле)."""

        stmt: Select[tuple[User]] = select(User).where(User.telegram_id == str(telegram_id))
        return await self.session.scalar(stmt)

    async def create(self, telegram_id: str, username: str | None = None) -> User:
        """Создать пользователя с нулевым балансом и случайным api_token (32 hex)."""

        user = User(
            telegram_id=str(telegram_id),
            username=username,
            balance=Decimal("0"),
            api_token=random_hex(16),
        )
        self.session.add(user)
        await self.session.flush()
        return user

    async def lock_for_update(self, user_id: int) -> User | None:
        """Получить пользователя под FOR UPDATE (актуальные значения из БД)."""

        stmt = (
            select(User)
            .where(User.id == int(user_id))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return await self.session.scalar(stmt)

    async def apply_balance_delta(self, user: User, delta: Decimal) -> Decimal:
        """
        Атомарно прибавить delta к балансу заблокированного пользователя.

        Вызывающий обязан держать блокировку строки (lock_for_update) в той же
        транзакции. Возвращает новый баланс.
        """

        new_balance = q_ledger(Decimal(user.balance) + delta)
        await self.session.execute(
            update(User)
            .where(User.id == user.id)
            .values(balance=User.balance + delta, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        # identity map держим в согласии с БД без повторного чтения
        set_committed_value(user, "balance", new_balance)
        return new_balance

    async def set_username(self, user: User, username: str | None) -> User:
        if user.username != username:
            user.username = username
            await self.session.flush()
        return user
