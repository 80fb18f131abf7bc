"""
Webhook reconciler: signed gateway callbacks credit the buyer exactly once.
"""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import select

from backend.app.core.errors_core import (
    InvalidSignatureError,
    MalformedCallbackError,
    TradeNotFoundError,
)
from backend.app.integrations.epusdt_api import CALLBACK_SIGNED_FIELDS
from backend.app.models import Transaction
from backend.app.services import epusdt_webhook_service
from backend.app.services.epusdt_service import EpusdtTradeService
from backend.app.services.epusdt_webhook_service import (
    REQUIRED_FIELDS,
    handle_callback,
    map_status,
    parse_callback,
)
from backend.app.services.transactions_service import reconcile_balance

from conftest import GATEWAY_TOKEN

# Forged values that still pass parse_callback.
_TAMPERED = {"amount": 11, "actual_amount": 1000, "status": 3}


@pytest.fixture
def service(db, gateway_client, settings) -> EpusdtTradeService:
    return EpusdtTradeService(db, gateway_client, settings)


async def _deposits(db, user_id):
    async with db.session() as session:
        rows = await session.scalars(
            select(Transaction).where(Transaction.user_id == user_id, Transaction.kind == "gateway_deposit")
        )
        return list(rows.all())


async def _balance(db, user_id) -> Decimal:
    async with db.session() as session:
        balance, ledger_sum = await reconcile_balance(session, user_id=user_id)
    assert balance == ledger_sum
    return balance


class TestParseCallback:
    """Shape validation happens before any signature or storage work"""

    def _body(self, **overrides):
        body = {
            "trade_id": "T1",
            "order_id": "o-1",
            "amount": 10,
            "actual_amount": 10,
            "token": "TWallet",
            "block_transaction_id": "0xabc",
            "signature": "deadbeef",
            "status": 2,
        }
        body.update(overrides)
        return body

    def test_valid_body(self):
        payload = parse_callback(self._body(amount="10.5"))
        assert payload.amount == Decimal("10.5")
        assert payload.status == 2

    @pytest.mark.parametrize("field", REQUIRED_FIELDS)
    def test_missing_field(self, field):
        body = self._body()
        del body[field]
        with pytest.raises(MalformedCallbackError) as exc:
            parse_callback(body)
        assert exc.value.message == f"missing field: {field}"
        assert exc.value.http_status == 400

    @pytest.mark.parametrize(
        "overrides",
        [
            {"amount": 0},
            {"amount": "x"},
            {"amount": "1e30"},
            {"actual_amount": -1},
            {"actual_amount": "1e30"},
            {"status": "paid"},
            {"status": 2.5},
            {"status": True},
        ],
    )
    def test_invalid_values(self, overrides):
        with pytest.raises(MalformedCallbackError):
            parse_callback(self._body(**overrides))

    def test_non_object_body(self):
        with pytest.raises(MalformedCallbackError):
            parse_callback(["not", "an", "object"])

    def test_status_mapping(self):
        assert [map_status(c).value for c in (1, 2, 3, 7)] == ["pending", "paid", "expired", "pending"]


class TestHandleCallback:
    """Signature check, state transitions and the single credit"""

    async def test_paid_callback_credits_actual_amount(self, db, service, make_user, signed_callback):
        user = await make_user()
        trade = await service.create_trade(user_id=user.id, amount="10")

        body = signed_callback(trade.order_id, trade_id=trade.trade_id, amount=10, actual_amount=9.87)
        updated = await handle_callback(db, parse_callback(body), token=GATEWAY_TOKEN)

        assert updated.status == "paid"
        assert updated.block_transaction_id == "0xblockhash"
        assert updated.raw_callback["signature"] == body["signature"]
        assert await _balance(db, user.id) == Decimal("9.87")
        deposits = await _deposits(db, user.id)
        assert len(deposits) == 1
        assert deposits[0].note == f"Epusdt deposit {trade.trade_id}"

    async def test_duplicate_paid_callback_credits_once(self, db, service, make_user, signed_callback):
        user = await make_user()
        trade = await service.create_trade(user_id=user.id, amount="10")
        payload = parse_callback(signed_callback(trade.order_id, trade_id=trade.trade_id))

        await handle_callback(db, payload, token=GATEWAY_TOKEN)
        again = await handle_callback(db, payload, token=GATEWAY_TOKEN)

        assert again.status == "paid"
        assert await _balance(db, user.id) == Decimal("10")
        assert len(await _deposits(db, user.id)) == 1

    async def test_concurrent_duplicates_credit_once(self, db, service, make_user, signed_callback):
        user = await make_user()
        trade = await service.create_trade(user_id=user.id, amount="10")
        payload = parse_callback(signed_callback(trade.order_id, trade_id=trade.trade_id))

        results = await asyncio.gather(
            *(handle_callback(db, payload, token=GATEWAY_TOKEN) for _ in range(5))
        )

        assert all(r.status == "paid" for r in results)
        assert await _balance(db, user.id) == Decimal("10")
        assert len(await _deposits(db, user.id)) == 1

    @pytest.mark.parametrize("field", CALLBACK_SIGNED_FIELDS)
    async def test_tampered_signature_rejected(self, db, service, make_user, signed_callback, field):
        user = await make_user()
        trade = await service.create_trade(user_id=user.id, amount="10")
        body = signed_callback(trade.order_id, trade_id=trade.trade_id)
        body[field] = _TAMPERED.get(field, f"{body[field]}-forged")

        with pytest.raises(InvalidSignatureError):
            await handle_callback(db, parse_callback(body), token=GATEWAY_TOKEN)

        assert await _balance(db, user.id) == Decimal("0")
        assert await _deposits(db, user.id) == []
        stored = await service.find_trade(order_id=trade.order_id)
        assert stored.status == "pending"
        assert stored.raw_callback is None
        assert stored.block_transaction_id is None

    async def test_failed_credit_rolls_back_then_redelivery_credits(
        self, db, service, make_user, signed_callback, monkeypatch
    ):
        user = await make_user()
        trade = await service.create_trade(user_id=user.id, amount="10")
        payload = parse_callback(signed_callback(trade.order_id, trade_id=trade.trade_id))

        async def broken_ledger(*args, **kwargs):
            raise RuntimeError("ledger down")

        monkeypatch.setattr(epusdt_webhook_service, "adjust_balance", broken_ledger)
        with pytest.raises(RuntimeError):
            await handle_callback(db, payload, token=GATEWAY_TOKEN)

        stored = await service.find_trade(order_id=trade.order_id)
        assert stored.status == "pending"
        assert stored.raw_callback is None
        assert await _balance(db, user.id) == Decimal("0")

        monkeypatch.undo()
        redelivered = await handle_callback(db, payload, token=GATEWAY_TOKEN)

        assert redelivered.status == "paid"
        assert await _balance(db, user.id) == Decimal("10")
        assert len(await _deposits(db, user.id)) == 1

    async def test_wrong_token_rejected(self, db, service, make_user, signed_callback):
        user = await make_user()
        trade = await service.create_trade(user_id=user.id, amount="10")
        body = signed_callback(trade.order_id, token="someone-else")
        with pytest.raises(InvalidSignatureError):
            await handle_callback(db, parse_callback(body), token=GATEWAY_TOKEN)

    async def test_unknown_order(self, db, signed_callback):
        with pytest.raises(TradeNotFoundError):
            await handle_callback(db, parse_callback(signed_callback("no-such-order")), token=GATEWAY_TOKEN)

    async def test_expired_callback_on_pending_trade(self, db, service, make_user, signed_callback):
        user = await make_user()
        trade = await service.create_trade(user_id=user.id, amount="10")

        updated = await handle_callback(
            db, parse_callback(signed_callback(trade.order_id, status=3)), token=GATEWAY_TOKEN
        )

        assert updated.status == "expired"
        assert await _balance(db, user.id) == Decimal("0")

    async def test_late_payment_after_expiry_is_credited(self, db, service, make_user, signed_callback):
        user = await make_user()
        trade = await service.create_trade(user_id=user.id, amount="10")
        await service.mark_trade_expired(trade.trade_id)

        updated = await handle_callback(
            db, parse_callback(signed_callback(trade.order_id, trade_id=trade.trade_id)), token=GATEWAY_TOKEN
        )

        assert updated.status == "paid"
        assert await _balance(db, user.id) == Decimal("10")

    async def test_non_paid_callback_never_downgrades_paid_trade(self, db, service, make_user, signed_callback):
        user = await make_user()
        trade = await service.create_trade(user_id=user.id, amount="10")
        await handle_callback(db, parse_callback(signed_callback(trade.order_id)), token=GATEWAY_TOKEN)

        for status in (1, 3):
            updated = await handle_callback(
                db, parse_callback(signed_callback(trade.order_id, status=status)), token=GATEWAY_TOKEN
            )
            assert updated.status == "paid"

        assert await _balance(db, user.id) == Decimal("10")

    async def test_pending_callback_keeps_pending(self, db, service, make_user, signed_callback):
        user = await make_user()
        trade = await service.create_trade(user_id=user.id, amount="10")
        updated = await handle_callback(
            db, parse_callback(signed_callback(trade.order_id, status=1)), token=GATEWAY_TOKEN
        )
        assert updated.status == "pending"
        assert updated.raw_callback is not None
