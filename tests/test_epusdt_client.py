"""
EpusdtClient.create_transaction: signature negotiation and transport failures.
"""

import httpx
import pytest

from backend.app.core.errors_core import (
    GatewayBusinessError,
    GatewayTimeoutError,
    GatewayUnavailableError,
)
from backend.app.integrations.epusdt_api import SIGN_STRATEGIES, EpusdtClient

PAYLOAD = {
    "order_id": "1700000000000-1-abcdef",
    "amount": 10,
    "notify_url": "https://shop.test/api/payments/epusdt/webhook",
    "redirect_url": "https://shop.test/payments/order",
}

SIGN_REJECTED = {"status_code": 401, "message": "签名认证错误", "data": None}


class TestCreateTransaction:
    """Happy path and fallback signing"""

    async def test_first_variant_accepted(self, gateway_client, fake_gateway):
        """One request, default signature, reply passed through"""
        result = await gateway_client.create_transaction(PAYLOAD)

        assert result.strategy == "concat"
        assert result.rejected == []
        assert len(fake_gateway.requests) == 1
        sent = fake_gateway.requests[0]
        assert sent["order_id"] == PAYLOAD["order_id"]
        assert sent["signature"] == SIGN_STRATEGIES[0].sign(PAYLOAD, gateway_client.token)
        assert result.reply["data"]["trade_id"] == "T0001"

    async def test_fallback_variant_after_signature_rejection(self, gateway_client, fake_gateway):
        """A sign rejection moves on to the next variant"""
        fake_gateway.queue(SIGN_REJECTED)

        result = await gateway_client.create_transaction(PAYLOAD)

        assert result.strategy == "amp_token"
        assert result.rejected == ["concat"]
        assert len(fake_gateway.requests) == 2
        first, second = fake_gateway.requests
        assert first["signature"] != second["signature"]
        assert second["signature"] == SIGN_STRATEGIES[1].sign(PAYLOAD, gateway_client.token)

    async def test_all_variants_rejected(self, gateway_client, fake_gateway):
        """Aggregated error names every variant and the sign source"""
        fake_gateway.queue(SIGN_REJECTED, SIGN_REJECTED, SIGN_REJECTED)

        with pytest.raises(GatewayBusinessError) as exc:
            await gateway_client.create_transaction(PAYLOAD)

        assert len(fake_gateway.requests) == 3
        assert exc.value.details["variants"] == ["concat", "amp_token", "amp_key"]
        assert "amount=10&notify_url=" in exc.value.details["sign_source"]
        assert "3 variants" in exc.value.message

    async def test_business_error_stops_negotiation(self, gateway_client, fake_gateway):
        """A non-signature error is not retried with other variants"""
        fake_gateway.queue({"status_code": 400, "message": "订单已存在", "data": None})

        with pytest.raises(GatewayBusinessError) as exc:
            await gateway_client.create_transaction(PAYLOAD)

        assert len(fake_gateway.requests) == 1
        assert exc.value.details["gateway_message"] == "订单已存在"
        assert exc.value.code == "gateway_error"

    async def test_empty_values_not_sent(self, gateway_client, fake_gateway):
        payload = dict(PAYLOAD, redirect_url=None)
        await gateway_client.create_transaction(payload)
        assert "redirect_url" not in fake_gateway.requests[0]


class TestTransportFailures:
    """Timeouts, network errors and HTTP errors map to distinct domain errors"""

    async def test_timeout(self, gateway_client, fake_gateway):
        fake_gateway.queue(httpx.ReadTimeout("read timed out"))
        with pytest.raises(GatewayTimeoutError) as exc:
            await gateway_client.create_transaction(PAYLOAD)
        assert exc.value.http_status == 504

    async def test_connection_error(self, gateway_client, fake_gateway):
        fake_gateway.queue(httpx.ConnectError("connection refused"))
        with pytest.raises(GatewayUnavailableError):
            await gateway_client.create_transaction(PAYLOAD)

    async def test_http_500(self, gateway_client, fake_gateway):
        fake_gateway.queue(httpx.Response(500, text="upstream exploded"))
        with pytest.raises(GatewayBusinessError) as exc:
            await gateway_client.create_transaction(PAYLOAD)
        assert exc.value.details["http_status"] == 500

    async def test_invalid_json(self, gateway_client, fake_gateway):
        fake_gateway.queue(httpx.Response(200, text="<html>not json</html>"))
        with pytest.raises(GatewayBusinessError):
            await gateway_client.create_transaction(PAYLOAD)

    async def test_missing_base_url(self):
        client = EpusdtClient(base_url="", token="t")
        with pytest.raises(GatewayBusinessError) as exc:
            await client.create_transaction(PAYLOAD)
        assert exc.value.details["missing"] == "EPUSDT_BASE_URL"
