"""
Epusdt request/callback signing: canonical string, MD5 variants, verification.
"""

import hashlib
from decimal import Decimal

import pytest

from backend.app.core.errors_core import GatewayBusinessError
from backend.app.integrations.epusdt_api import (
    SIGN_STRATEGIES,
    canonical_string,
    is_signature_rejection,
    json_amount,
    sign_params,
    verify_signature,
)

TOKEN = "secret-token"


def _md5(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()


class TestCanonicalString:
    """Sorted key=value pairs joined with '&'"""

    def test_keys_sorted_and_empty_values_skipped(self):
        params = {
            "redirect_url": "",
            "order_id": "1700000000000-7-a1b2c3",
            "notify_url": "https://shop.test/api/payments/epusdt/webhook",
            "amount": 10,
            "extra": None,
        }
        assert canonical_string(params) == (
            "amount=10&notify_url=https://shop.test/api/payments/epusdt/webhook"
            "&order_id=1700000000000-7-a1b2c3"
        )

    def test_signature_field_never_signed(self):
        assert canonical_string({"a": "1", "signature": "abc"}) == "a=1"

    def test_numbers_printed_like_js(self):
        params = {"a": Decimal("20.000000"), "b": Decimal("19.50"), "c": 3.25, "d": 0}
        assert canonical_string(params) == "a=20&b=19.5&c=3.25&d=0"

    def test_tiny_numbers_use_exponent(self):
        params = {"a": Decimal("0.0000001"), "b": Decimal("0.00000015"), "c": Decimal("0.000001"), "d": 1e-7}
        assert canonical_string(params) == "a=1e-7&b=1.5e-7&c=0.000001&d=1e-7"

    def test_booleans_lowercase(self):
        assert canonical_string({"flag": True, "other": False}) == "flag=true&other=false"


class TestSignVariants:
    """Three ways of appending the token, tried in order"""

    def test_variant_order(self):
        assert [s.name for s in SIGN_STRATEGIES] == ["concat", "amp_token", "amp_key"]

    def test_default_variant_is_plain_concatenation(self):
        params = {"order_id": "o-1", "amount": 10}
        assert sign_params(params, TOKEN) == _md5("amount=10&order_id=o-1" + TOKEN)

    def test_amp_variants(self):
        params = {"order_id": "o-1", "amount": 10}
        concat, amp_token, amp_key = SIGN_STRATEGIES
        assert amp_token.sign(params, TOKEN) == _md5("amount=10&order_id=o-1&token=" + TOKEN)
        assert amp_key.sign(params, TOKEN) == _md5("amount=10&order_id=o-1&key=" + TOKEN)
        assert len({concat.sign(params, TOKEN), amp_token.sign(params, TOKEN), amp_key.sign(params, TOKEN)}) == 3

    def test_missing_token_is_configuration_error(self):
        with pytest.raises(GatewayBusinessError) as exc:
            sign_params({"a": 1}, "")
        assert exc.value.details["missing"] == "EPUSDT_TOKEN"


class TestVerifySignature:
    """Callback verification"""

    def _fields(self):
        return {
            "trade_id": "T1",
            "order_id": "o-1",
            "amount": Decimal("10"),
            "actual_amount": Decimal("10.000000"),
            "token": "TWallet",
            "block_transaction_id": "0xabc",
            "status": 2,
        }

    def test_valid_signature_accepted_case_insensitively(self):
        fields = self._fields()
        signature = sign_params(fields, TOKEN)
        assert verify_signature(fields, signature, TOKEN)
        assert verify_signature(fields, signature.upper(), TOKEN)

    def test_tampered_field_rejected(self):
        fields = self._fields()
        signature = sign_params(fields, TOKEN)
        fields["actual_amount"] = Decimal("1000")
        assert not verify_signature(fields, signature, TOKEN)

    def test_empty_signature_or_token_rejected(self):
        fields = self._fields()
        assert not verify_signature(fields, "", TOKEN)
        assert not verify_signature(fields, sign_params(fields, TOKEN), "")


class TestRejectionDetection:
    """Which gateway replies mean 'wrong signature'"""

    @pytest.mark.parametrize(
        "reply",
        [
            {"status_code": 401, "message": "unauthorized"},
            {"status_code": 403, "message": "forbidden"},
            {"status_code": 400, "message": "签名认证错误"},
            {"status_code": 400, "message": "Sign verification failed"},
        ],
    )
    def test_signature_rejections(self, reply):
        assert is_signature_rejection(reply)

    def test_business_error_is_not_a_signature_rejection(self):
        assert not is_signature_rejection({"status_code": 400, "message": "订单已存在"})


class TestJsonAmount:
    def test_integral_amount_sent_as_int(self):
        assert json_amount(Decimal("10.00")) == 10
        assert isinstance(json_amount(Decimal("10.00")), int)

    def test_fractional_amount_sent_as_float(self):
        assert json_amount(Decimal("10.50")) == 10.5
