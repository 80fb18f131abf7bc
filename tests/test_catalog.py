"""
Catalog lifecycle: products, key import and the storefront listing.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from backend.app.core.errors_core import (
    DuplicateProductNameError,
    NotFoundError,
    ProductHasKeysError,
    ProductStillActiveError,
    ValidationFailedError,
)
from backend.app.models import ProductKey
from backend.app.services.orders_service import purchase
from backend.app.services.shop_service import (
    count_available_keys,
    create_product,
    delete_key,
    delete_product,
    get_product,
    import_keys,
    list_active_products,
    list_all_products,
    purge_unsold_keys,
    set_product_active,
    update_key_value,
    update_product,
)


async def _keys(db, product_id):
    async with db.session() as session:
        rows = await session.scalars(
            select(ProductKey).where(ProductKey.product_id == product_id).order_by(ProductKey.id)
        )
        return list(rows.all())


class TestProducts:
    async def test_create_product(self, db):
        product = await create_product(db, name="  Windows 11 Pro ", price="19.999", sub_category="windows")

        assert product.name == "Windows 11 Pro"
        assert product.price == Decimal("20.00")
        assert product.category == "windows"
        assert product.is_active is True

    async def test_duplicate_name(self, db, make_product):
        await make_product(name="Office 2021")
        with pytest.raises(DuplicateProductNameError):
            await create_product(db, name="Office 2021", price="5", sub_category="office")

    @pytest.mark.parametrize(
        "fields", [{"name": " "}, {"price": "0"}, {"price": "free"}, {"price": "1e30"}, {"sub_category": ""}]
    )
    async def test_invalid_fields(self, db, fields):
        params = dict(name="Thing", price="1", sub_category="windows")
        params.update(fields)
        with pytest.raises(ValidationFailedError):
            await create_product(db, **params)

    async def test_update_is_partial(self, db, make_product):
        product = await make_product(name="Old name", price="10.00")

        updated = await update_product(db, product.id, price="12.5", description="New text")

        assert updated.name == "Old name"
        assert updated.price == Decimal("12.50")
        assert updated.description == "New text"

    async def test_rename_to_taken_name(self, db, make_product):
        await make_product(name="First")
        second = await make_product(name="Second")
        with pytest.raises(DuplicateProductNameError):
            await update_product(db, second.id, name="First")

    async def test_update_missing_product(self, db):
        with pytest.raises(NotFoundError):
            await update_product(db, 404, price="1")


class TestDeleteProduct:
    """Deletion needs an inactive product without keys"""

    async def test_active_product_not_deleted(self, db, make_product):
        product = await make_product(keys=[])
        with pytest.raises(ProductStillActiveError):
            await delete_product(db, product.id)

    async def test_product_with_keys_not_deleted(self, db, make_product):
        product = await make_product(keys=["A", "B"])
        await set_product_active(db, product.id, False)

        with pytest.raises(ProductHasKeysError) as exc:
            await delete_product(db, product.id)
        assert exc.value.details["unsold"] == 2

    async def test_purge_then_delete(self, db, make_product):
        product = await make_product(keys=["A", "B", "C"])
        await set_product_active(db, product.id, False)

        assert await purge_unsold_keys(db, product.id) == 3
        await delete_product(db, product.id)

        async with db.session() as session:
            with pytest.raises(NotFoundError):
                await get_product(session, product.id)

    async def test_sold_keys_survive_purge(self, db, make_user, make_product):
        user = await make_user(balance=50)
        product = await make_product(price="10.00", keys=["SOLD", "LEFT"])
        await purchase(db, user_id=user.id, product_id=product.id)
        await set_product_active(db, product.id, False)

        assert await purge_unsold_keys(db, product.id) == 1
        with pytest.raises(ProductHasKeysError) as exc:
            await delete_product(db, product.id)
        assert exc.value.details["sold"] == 1
        assert [k.key_value for k in await _keys(db, product.id)] == ["SOLD"]


class TestKeys:
    async def test_import_skips_blank_lines(self, db, make_product):
        product = await make_product(keys=[])

        count = await import_keys(db, product.id, "AAA-1\n\n  BBB-2  \n   \nCCC-3\n")

        assert count == 3
        assert [k.key_value for k in await _keys(db, product.id)] == ["AAA-1", "BBB-2", "CCC-3"]

    async def test_import_into_missing_product(self, db):
        with pytest.raises(NotFoundError):
            await import_keys(db, 999, ["X"])

    async def test_edit_and_delete_unsold_key(self, db, make_product):
        product = await make_product(keys=["TYPO", "DROP"])
        typo, drop = await _keys(db, product.id)

        fixed = await update_key_value(db, typo.id, " FIXED ")
        await delete_key(db, drop.id)

        assert fixed.key_value == "FIXED"
        assert [k.key_value for k in await _keys(db, product.id)] == ["FIXED"]

    async def test_sold_key_is_immutable(self, db, make_user, make_product):
        user = await make_user(balance=10)
        product = await make_product(price="10.00", keys=["ONLY"])
        result = await purchase(db, user_id=user.id, product_id=product.id)

        with pytest.raises(ValidationFailedError):
            await update_key_value(db, result.key_id, "OTHER")
        with pytest.raises(ValidationFailedError):
            await delete_key(db, result.key_id)

    async def test_empty_key_value_rejected(self, db, make_product):
        product = await make_product(keys=["K"])
        (key,) = await _keys(db, product.id)
        with pytest.raises(ValidationFailedError):
            await update_key_value(db, key.id, "   ")


class TestListing:
    """Storefront shows active products with their unsold stock"""

    async def test_active_listing_with_stock(self, db, make_user, make_product):
        user = await make_user(balance=100)
        first = await make_product(name="First", keys=["1", "2", "3"])
        await make_product(name="Hidden", keys=["H"], active=False)
        empty = await make_product(name="Empty", keys=[])
        await purchase(db, user_id=user.id, product_id=first.id)

        async with db.session() as session:
            listing = await list_active_products(session)
            everything = await list_all_products(session)

        assert [(p["id"], p["stock"]) for p in listing] == [(first.id, 2), (empty.id, 0)]
        assert listing[0]["price"] == "10.00"
        assert listing[0]["subCategory"] == "windows"
        assert {p["name"] for p in everything} == {"First", "Hidden", "Empty"}

    async def test_sort_order_wins_over_id(self, db, make_product):
        late = await make_product(name="Late")
        early = await make_product(name="Early")
        await update_product(db, late.id, sort_order=5)

        async with db.session() as session:
            listing = await list_active_products(session)
            assert await count_available_keys(session, early.id) == 1

        assert [p["name"] for p in listing] == ["Early", "Late"]
