"""
Inventory allocation and the purchase orchestrator.
"""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from backend.app.core.errors_core import (
    InsufficientBalanceError,
    OutOfStockError,
    ProductUnavailableError,
    UserNotFoundError,
)
from backend.app.models import Order, ProductKey, Transaction
from backend.app.services.inventory_service import reserve_key
from backend.app.services.orders_service import list_user_orders, purchase
from backend.app.services.shop_service import count_available_keys, set_product_active
from backend.app.services.transactions_service import reconcile_balance


async def _count(db, model) -> int:
    async with db.session() as session:
        return int(await session.scalar(select(func.count()).select_from(model)))


class TestReserveKey:
    """Single-key reservation inside a caller's transaction"""

    async def test_marks_oldest_unsold_key(self, db, make_user, make_product):
        user = await make_user()
        product = await make_product(keys=["FIRST", "SECOND"])

        async with db.transaction() as session:
            handle = await reserve_key(session, product_id=product.id, buyer_id=user.id)

        assert handle.key_value == "FIRST"
        async with db.session() as session:
            key = await session.get(ProductKey, handle.key_id)
            assert key.is_sold is True
            assert key.sold_to_user_id == user.id
            assert key.sold_at is not None
            assert await count_available_keys(session, product.id) == 1

    async def test_out_of_stock(self, db, make_user, make_product):
        user = await make_user()
        product = await make_product(keys=[])
        async with db.transaction() as session:
            with pytest.raises(OutOfStockError):
                await reserve_key(session, product_id=product.id, buyer_id=user.id)

    async def test_inactive_product(self, db, make_user, make_product):
        user = await make_user()
        product = await make_product(active=False)
        async with db.transaction() as session:
            with pytest.raises(ProductUnavailableError):
                await reserve_key(session, product_id=product.id, buyer_id=user.id)

    async def test_requires_active_transaction(self, db, make_user, make_product):
        user = await make_user()
        product = await make_product()
        async with db.session() as session:
            with pytest.raises(RuntimeError):
                await reserve_key(session, product_id=product.id, buyer_id=user.id)


class TestPurchase:
    """Balance check, key allocation, debit and order in one unit of work"""

    async def test_successful_purchase(self, db, make_user, make_product):
        user = await make_user(balance="15.00")
        product = await make_product(name="Windows 11 Pro", price="10.00", keys=["W11-KEY"])

        result = await purchase(db, user_id=user.id, product_id=product.id)

        assert result.key == "W11-KEY"
        assert result.amount == Decimal("10.00")
        assert result.balance == Decimal("5")
        assert result.to_dict() == {
            "orderId": result.order_id,
            "key": "W11-KEY",
            "amount": "10.00",
            "productId": product.id,
            "productName": "Windows 11 Pro",
        }
        async with db.session() as session:
            balance, ledger_sum = await reconcile_balance(session, user_id=user.id)
            order = await session.get(Order, result.order_id)
            debit = (
                await session.scalars(
                    select(Transaction).where(Transaction.kind == "purchase", Transaction.user_id == user.id)
                )
            ).one()
        assert balance == ledger_sum == Decimal("5")
        assert order.product_key_id == result.key_id
        assert order.amount == Decimal("10.00")
        assert debit.amount == Decimal("-10")
        assert debit.note == f"Buy product {product.id} key#{result.key_id}"

    async def test_second_purchase_out_of_stock_changes_nothing(self, db, make_user, make_product):
        user = await make_user(balance="25.00")
        product = await make_product(price="10.00", keys=["ONLY-ONE"])
        await purchase(db, user_id=user.id, product_id=product.id)
        tx_before = await _count(db, Transaction)

        with pytest.raises(OutOfStockError):
            await purchase(db, user_id=user.id, product_id=product.id)

        assert await _count(db, Transaction) == tx_before
        assert await _count(db, Order) == 1
        async with db.session() as session:
            balance, _ = await reconcile_balance(session, user_id=user.id)
        assert balance == Decimal("15")

    async def test_insufficient_balance_sells_nothing(self, db, make_user, make_product):
        user = await make_user(balance="9.99")
        product = await make_product(price="10.00", keys=["K1"])

        with pytest.raises(InsufficientBalanceError) as exc:
            await purchase(db, user_id=user.id, product_id=product.id)

        assert exc.value.details["price"] == "10.00"
        async with db.session() as session:
            assert await count_available_keys(session, product.id) == 1
        assert await _count(db, Order) == 0

    async def test_inactive_product(self, db, make_user, make_product):
        user = await make_user(balance=100)
        product = await make_product()
        await set_product_active(db, product.id, False)
        with pytest.raises(ProductUnavailableError):
            await purchase(db, user_id=user.id, product_id=product.id)

    async def test_missing_product(self, db, make_user):
        user = await make_user(balance=100)
        with pytest.raises(ProductUnavailableError):
            await purchase(db, user_id=user.id, product_id=999)

    async def test_missing_user(self, db, make_product):
        product = await make_product()
        with pytest.raises(UserNotFoundError):
            await purchase(db, user_id=999, product_id=product.id)

    async def test_order_history(self, db, make_user, make_product):
        user = await make_user(balance=100)
        product = await make_product(name="Office 2021", price="20.00", keys=["O-1", "O-2"])
        first = await purchase(db, user_id=user.id, product_id=product.id)
        second = await purchase(db, user_id=user.id, product_id=product.id)

        async with db.session() as session:
            history = await list_user_orders(session, user_id=user.id)

        assert [h["orderId"] for h in history] == [second.order_id, first.order_id]
        assert {h["key"] for h in history} == {"O-1", "O-2"}
        assert history[0]["productName"] == "Office 2021"
        assert history[0]["amount"] == "20.00"


class TestConcurrentPurchases:
    """Parallel buyers never share a key and never oversell"""

    async def test_eight_buyers_three_keys(self, db, make_user, make_product):
        product = await make_product(price="10.00", keys=["K-1", "K-2", "K-3"])
        users = [await make_user(f"70{i}", balance=50) for i in range(8)]

        results = await asyncio.gather(
            *(purchase(db, user_id=u.id, product_id=product.id) for u in users),
            return_exceptions=True,
        )

        sold = [r for r in results if not isinstance(r, Exception)]
        failed = [r for r in results if isinstance(r, Exception)]
        assert len(sold) == 3
        assert len(failed) == 5
        assert all(isinstance(e, OutOfStockError) for e in failed)
        assert sorted(r.key for r in sold) == ["K-1", "K-2", "K-3"]
        assert len({r.key_id for r in sold}) == 3

        assert await _count(db, Order) == 3
        async with db.session() as session:
            assert await count_available_keys(session, product.id) == 0
            for user in users:
                balance, ledger_sum = await reconcile_balance(session, user_id=user.id)
                assert balance == ledger_sum
                assert balance in (Decimal("40"), Decimal("50"))

    async def test_same_user_cannot_overspend(self, db, make_user, make_product):
        """Balance for two keys, five parallel attempts: exactly two succeed"""
        user = await make_user(balance="20.00")
        product = await make_product(price="10.00", keys=[f"K-{i}" for i in range(5)])

        results = await asyncio.gather(
            *(purchase(db, user_id=user.id, product_id=product.id) for _ in range(5)),
            return_exceptions=True,
        )

        assert sum(1 for r in results if not isinstance(r, Exception)) == 2
        assert all(isinstance(r, InsufficientBalanceError) for r in results if isinstance(r, Exception))
        async with db.session() as session:
            balance, ledger_sum = await reconcile_balance(session, user_id=user.id)
            assert await count_available_keys(session, product.id) == 3
        assert balance == ledger_sum == Decimal("0")
