"""
Gateway trade manager: trade creation, status DTO, payment URLs and expiry.
"""

from datetime import timedelta
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import func, select

from backend.app.core.errors_core import (
    GatewayBusinessError,
    GatewayTimeoutError,
    TradeNotFoundError,
    UserNotFoundError,
    ValidationFailedError,
)
from backend.app.core.utils_core import utcnow
from backend.app.crud import GatewayTradeCRUD
from backend.app.models import GatewayTrade, TradeStatus
from backend.app.services.epusdt_service import EpusdtTradeService, convert_amount, make_order_id


@pytest.fixture
def service(db, gateway_client, settings) -> EpusdtTradeService:
    return EpusdtTradeService(db, gateway_client, settings)


async def _trade_count(db) -> int:
    async with db.session() as session:
        return int(await session.scalar(select(func.count(GatewayTrade.id))))


class TestConvertAmount:
    def test_plain_amount_rounded_to_cents(self):
        assert convert_amount("10.005", amount_is_usdt=False) == Decimal("10.01")

    def test_usdt_amount_multiplied_by_rate(self):
        assert convert_amount("10", amount_is_usdt=True, rate="7.2") == Decimal("72.00")

    @pytest.mark.parametrize("rate", ["0", "-1", "abc"])
    def test_bad_rate_treated_as_one(self, rate):
        assert convert_amount("10", amount_is_usdt=True, rate=rate) == Decimal("10.00")

    @pytest.mark.parametrize("amount", ["0", "-5", "ten"])
    def test_invalid_amount(self, amount):
        with pytest.raises(ValidationFailedError):
            convert_amount(amount, amount_is_usdt=False)

    def test_amount_out_of_range(self):
        with pytest.raises(ValidationFailedError):
            convert_amount("1e30", amount_is_usdt=False)
        with pytest.raises(ValidationFailedError):
            convert_amount("999999999999", amount_is_usdt=True, rate="10")


class TestOrderId:
    def test_format(self):
        ms, uid, suffix = make_order_id(42).split("-")
        assert ms.isdigit() and len(ms) >= 13
        assert uid == "42"
        assert len(suffix) == 6
        assert int(suffix, 16) >= 0


class TestCreateTrade:
    """Trade creation against the fake gateway"""

    async def test_trade_persisted_as_pending(self, db, service, fake_gateway, make_user):
        user = await make_user()

        trade = await service.create_trade(user_id=user.id, amount="10")

        assert trade.status == TradeStatus.PENDING.value
        assert trade.trade_id == "T0001"
        assert trade.amount == Decimal("10.00")
        assert trade.actual_amount == Decimal("10")
        assert trade.token == "TWalletAddress0001"
        assert trade.expiration_time is not None
        assert trade.raw_request["signature"]
        assert trade.raw_response["status_code"] == 200

        sent = fake_gateway.requests[0]
        assert sent["order_id"] == trade.order_id
        assert sent["amount"] == 10
        assert sent["notify_url"] == "https://shop.test/api/payments/epusdt/webhook"
        assert sent["redirect_url"] == "https://shop.test/payments/order"

    async def test_usdt_amount_uses_forced_rate(self, db, gateway_client, settings, fake_gateway, make_user):
        user = await make_user()
        service = EpusdtTradeService(db, gateway_client, settings.model_copy(update={"EPUSDT_FORCED_RATE": Decimal("2")}))

        trade = await service.create_trade(user_id=user.id, amount="5.25", amount_is_usdt=True)

        assert trade.amount == Decimal("10.50")
        assert fake_gateway.requests[0]["amount"] == 10.5

    async def test_unknown_user_never_reaches_gateway(self, db, service, fake_gateway):
        with pytest.raises(UserNotFoundError):
            await service.create_trade(user_id=999, amount="10")
        assert fake_gateway.requests == []

    async def test_gateway_rejection_persists_nothing(self, db, service, fake_gateway, make_user):
        user = await make_user()
        fake_gateway.queue({"status_code": 400, "message": "金额错误", "data": None})

        with pytest.raises(GatewayBusinessError):
            await service.create_trade(user_id=user.id, amount="10")
        assert await _trade_count(db) == 0

    async def test_gateway_timeout_persists_nothing(self, db, service, fake_gateway, make_user):
        user = await make_user()
        fake_gateway.queue(httpx.ReadTimeout("timed out"))

        with pytest.raises(GatewayTimeoutError):
            await service.create_trade(user_id=user.id, amount="10")
        assert await _trade_count(db) == 0
        assert len(fake_gateway.requests) == 1

    async def test_missing_notify_url(self, db, gateway_client, settings, make_user):
        user = await make_user()
        bare = settings.model_copy(update={"BASE_URL": "", "EPUSDT_NOTIFY_URL": None})
        service = EpusdtTradeService(db, gateway_client, bare)
        with pytest.raises(GatewayBusinessError) as exc:
            await service.create_trade(user_id=user.id, amount="10")
        assert exc.value.details["missing"] == "EPUSDT_NOTIFY_URL"

    async def test_same_order_id_updates_existing_row(self, db, service, make_user):
        user = await make_user()
        first = await service.create_trade(user_id=user.id, amount="10", order_id="fixed-order-1")
        second = await service.create_trade(user_id=user.id, amount="12", order_id="fixed-order-1")

        assert first.id == second.id
        assert second.amount == Decimal("12.00")
        assert second.trade_id == "T0002"
        assert await _trade_count(db) == 1


class TestTradeStatus:
    """Lookup and DTO shape"""

    async def test_status_by_trade_or_order_id(self, service, make_user):
        user = await make_user()
        trade = await service.create_trade(user_id=user.id, amount="10")

        by_trade = await service.get_trade_status(trade_id=trade.trade_id)
        by_order = await service.get_trade_status(order_id=trade.order_id)

        assert by_trade == by_order
        assert by_trade["status"] == "pending"
        assert by_trade["amount"] == "10.00"
        assert by_trade["actualAmount"] == "10.000000"
        assert by_trade["paymentUrl"] == "http://gateway.test:8000/pay/checkout-counter/T0001"
        assert by_trade["checkoutPageUrl"] == f"https://shop.test/payments/order/{trade.order_id}"

    async def test_lookup_requires_an_identifier(self, service):
        with pytest.raises(ValidationFailedError):
            await service.find_trade()

    async def test_unknown_trade(self, service):
        with pytest.raises(TradeNotFoundError):
            await service.find_trade(order_id="missing")


class TestPaymentUrl:
    """Where the buyer is sent to pay (pure URL building, no storage)"""

    def _trade(self, **fields) -> GatewayTrade:
        base = {"order_id": "1700000000000-1-abcdef", "trade_id": None, "payment_url": None}
        base.update(fields)
        return GatewayTrade(**base)

    def _service(self, gateway_client, settings, **overrides) -> EpusdtTradeService:
        return EpusdtTradeService(None, gateway_client, settings.model_copy(update=overrides))

    def test_gateway_url_wins(self, gateway_client, settings):
        trade = self._trade(trade_id="T9", payment_url="https://pay.example/x")
        assert self._service(gateway_client, settings).get_payment_url(trade) == "https://pay.example/x"

    def test_checkout_counter_with_explicit_port(self, gateway_client, settings):
        url = self._service(gateway_client, settings).get_payment_url(self._trade(trade_id="T9"))
        assert url == "http://gateway.test:8000/pay/checkout-counter/T9"

    def test_checkout_counter_port_added(self, gateway_client, settings):
        svc = self._service(gateway_client, settings, EPUSDT_BASE_URL="http://gw.test")
        assert svc.get_payment_url(self._trade(trade_id="T9")) == "http://gw.test:8001/pay/checkout-counter/T9"

    def test_local_status_page_fallback(self, gateway_client, settings):
        url = self._service(gateway_client, settings).get_payment_url(self._trade(order_id="a b/c"))
        assert url == "https://shop.test/payments/order/a%20b%2Fc"

    def test_no_base_url_no_fallback(self, gateway_client, settings):
        svc = self._service(gateway_client, settings, BASE_URL="")
        assert svc.get_payment_url(self._trade()) == ""


class TestExpiry:
    """Pending trades past expiration_time become expired"""

    async def _seed(self, db, user_id, order_id, *, expires_in, status="pending"):
        async with db.transaction() as session:
            await GatewayTradeCRUD(session).upsert_by_order_id(
                order_id=order_id,
                user_id=user_id,
                trade_id=f"T-{order_id}",
                amount=Decimal("10"),
                expiration_time=utcnow() + expires_in,
            )
            if status != "pending":
                trade = await GatewayTradeCRUD(session).lock_by_order_id(order_id)
                trade.status = status

    async def test_overdue_trades_expired(self, db, service, make_user):
        user = await make_user()
        await self._seed(db, user.id, "old", expires_in=timedelta(minutes=-5))
        await self._seed(db, user.id, "fresh", expires_in=timedelta(minutes=5))
        await self._seed(db, user.id, "paid-old", expires_in=timedelta(minutes=-5), status="paid")

        assert await service.expire_overdue_trades() == 1
        assert await service.expire_overdue_trades() == 0

        statuses = {
            oid: (await service.find_trade(order_id=oid)).status for oid in ("old", "fresh", "paid-old")
        }
        assert statuses == {"old": "expired", "fresh": "pending", "paid-old": "paid"}

    async def test_mark_expired_leaves_terminal_trades(self, db, service, make_user):
        user = await make_user()
        await self._seed(db, user.id, "p1", expires_in=timedelta(minutes=5))
        await self._seed(db, user.id, "p2", expires_in=timedelta(minutes=5), status="paid")

        assert (await service.mark_trade_expired("T-p1")).status == "expired"
        assert (await service.mark_trade_expired("T-p2")).status == "paid"
        with pytest.raises(TradeNotFoundError):
            await service.mark_trade_expired("T-none")
