# -*- coding: utf-8 -*-
# backend/app/crud/shop_crud.py
# =============================================================================
# Назначение:
#   • CRUD каталога (products) и склада ключей (product_keys).
#   • Примитив резервирования: lock_first_unsold_key() выбирает самый ранний
#     непроданный ключ товара под эксклюзивной блокировкой строки.
#
# Канон/инварианты:
#   • Два конкурентных резервирования последнего ключа не могут оба успеть:
#     строка ключа блокируется FOR UPDATE до конца транзакции.
#   • PostgreSQL: сначала SKIP LOCKED (параллельные покупатели берут разные
#     ключи), затем блокирующее ожидание, если свободных строк не видно.
#   • Проданные ключи не удаляются и не редактируются.
#
# Запреты:
#   • Никаких денежных действий и создания заказов в CRUD.
# =============================================================================
from __future__ import annotations

from typing import Iterable, Sequence

from sqlalchemy import Select, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models import Product, ProductKey


class ProductCRUD:
    """CRUD-обёртка для products."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, product_id: int) -> Product | None:
        """Получить товар по id (без блокировки: каталог в покупке только читается)."""
        return await self.session.get(Product, int(product_id))

    async def get_by_name(self, name: str) -> Product | None:
        stmt: Select[tuple[Product]] = select(Product).where(Product.name == name)
        return await self.session.scalar(stmt)

    async def create(self, product: Product) -> Product:
        self.session.add(product)
        await self.session.flush()
        return product

    async def delete(self, product: Product) -> None:
        await self.session.delete(product)
        await self.session.flush()

    async def list_active(self) -> list[Product]:
        """Активные товары в порядке витрины (sort_order, id)."""
        stmt = (
            select(Product)
            .where(Product.is_active.is_(True))
            .order_by(Product.sort_order.asc(), Product.id.asc())
        )
        return list((await self.session.scalars(stmt)).all())

    async def list_all(self) -> list[Product]:
        stmt = select(Product).order_by(Product.sort_order.asc(), Product.id.asc())
        return list((await self.session.scalars(stmt)).all())


class ProductKeyCRUD:
    """CRUD-обёртка для product_keys."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _unsold(self, product_id: int) -> Select[tuple[ProductKey]]:
        return (
            select(ProductKey)
            .where(ProductKey.product_id == int(product_id), ProductKey.is_sold.is_(False))
            .order_by(ProductKey.id.asc())
            .limit(1)
            .execution_options(populate_existing=True)
        )

    async def lock_first_unsold_key(self, product_id: int, *, rounds: int = 3) -> ProductKey | None:
        """
        Самый ранний непроданный ключ товара под FOR UPDATE или None.

        PostgreSQL с LIMIT + FOR UPDATE может вернуть пустой результат, если
        ожидаемая строка была продана конкурентом. Поэтому: SKIP LOCKED,
        затем блокирующее ожидание, затем контрольная проверка остатка.
        На SQLite FOR UPDATE не генерируется, транзакции сериализованы.
        """
        skip_locked = self.session.get_bind().dialect.name == "postgresql"
        for _ in range(max(1, rounds)):
            if skip_locked:
                key = await self.session.scalar(self._unsold(product_id).with_for_update(skip_locked=True))
                if key is not None:
                    return key
            key = await self.session.scalar(self._unsold(product_id).with_for_update())
            if key is not None and not key.is_sold:
                return key
            if not skip_locked or await self.count_unsold(product_id) == 0:
                return None
        return None

    async def get_by_id(self, key_id: int) -> ProductKey | None:
        return await self.session.get(ProductKey, int(key_id))

    async def lock_by_id(self, key_id: int) -> ProductKey | None:
        stmt = (
            select(ProductKey)
            .where(ProductKey.id == int(key_id))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return await self.session.scalar(stmt)

    async def count_unsold(self, product_id: int) -> int:
        stmt = select(func.count(ProductKey.id)).where(
            ProductKey.product_id == int(product_id), ProductKey.is_sold.is_(False)
        )
        return int(await self.session.scalar(stmt) or 0)

    async def count_sold(self, product_id: int) -> int:
        stmt = select(func.count(ProductKey.id)).where(
            ProductKey.product_id == int(product_id), ProductKey.is_sold.is_(True)
        )
        return int(await self.session.scalar(stmt) or 0)

    async def unsold_counts(self, product_ids: Sequence[int]) -> dict[int, int]:
        """Остатки по нескольким товарам одним запросом."""
        if not product_ids:
            return {}
        stmt = (
            select(ProductKey.product_id, func.count(ProductKey.id))
            .where(ProductKey.product_id.in_(list(product_ids)), ProductKey.is_sold.is_(False))
            .group_by(ProductKey.product_id)
        )
        rows = (await self.session.execute(stmt)).all()
        counts = {int(pid): int(cnt) for pid, cnt in rows}
        return {int(pid): counts.get(int(pid), 0) for pid in product_ids}

    async def add_many(self, product_id: int, values: Iterable[str]) -> int:
        keys = [ProductKey(product_id=int(product_id), key_value=v, is_sold=False) for v in values]
        self.session.add_all(keys)
        await self.session.flush()
        return len(keys)

    async def delete_unsold(self, product_id: int) -> int:
        """Удалить ВСЕ непроданные ключи товара; проданные не трогаются."""
        result = await self.session.execute(
            delete(ProductKey)
            .where(ProductKey.product_id == int(product_id), ProductKey.is_sold.is_(False))
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)

    async def delete(self, key: ProductKey) -> None:
        await self.session.delete(key)
        await self.session.flush()
