# -*- coding: utf-8 -*-
# backend/app/integrations/epusdt_api.py
# =============================================================================
# Keyshop - Интеграция с платёжным шлюзом Epusdt (подпись и HTTP-клиент)
# -----------------------------------------------------------------------------
# Назначение:
#   • Каноническая строка подписи: ключи по алфавиту, пустые значения и
#     поле signature отброшены, пары key=value через «&».
#   • Упорядоченный список стратегий подписи (MD5 hex):
#       concat     → source + token
#       amp_token  → source + "&token=" + token
#       amp_key    → source + "&key=" + token
#   • negotiate_signature(): перебор стратегий через внедрённый sender;
#     следующий вариант только если шлюз явно ответил ошибкой подписи.
#   • EpusdtClient: httpx.AsyncClient с жёстким таймаутом и маппингом
#     сетевых сбоев в доменные ошибки.
#
# Канон/инварианты:
#   • Любая иная ошибка шлюза (бизнес-валидация, HTTP не 2xx, битый JSON)
#     прерывает перебор немедленно (GatewayBusinessError).
#   • Все варианты отклонены → одна агрегированная ошибка с перечнем
#     испробованных вариантов и исходной строкой подписи.
#   • Таймаут → GatewayTimeoutError, прочие сетевые ошибки →
#     GatewayUnavailableError. Это не ошибки подписи.
#   • Числа в подписи печатаются как в JS (20.000000 → "20").
#
# Запреты:
#   • Модуль не пишет в БД и не меняет балансы.
#   • Токен шлюза не логируется и не попадает в детали ошибок.
# =============================================================================
from __future__ import annotations

import hmac
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import httpx

from backend.app.core.config_core import Settings
from backend.app.core.errors_core import (
    GatewayBusinessError,
    GatewayTimeoutError,
    GatewayUnavailableError,
)
from backend.app.core.logging_core import get_logger
from backend.app.core.utils_core import js_number_str, md5_hex

logger = get_logger(__name__)

CREATE_TRANSACTION_PATH = "/api/v1/order/create-transaction"
SUCCESS_CODE = 200

# Поля, которые шлюз подписывает в callback.
CALLBACK_SIGNED_FIELDS: Tuple[str, ...] = (
    "trade_id",
    "order_id",
    "amount",
    "actual_amount",
    "token",
    "block_transaction_id",
    "status",
)

_SIGN_ERROR_RE = re.compile(r"签名|sign", re.IGNORECASE)


# -----------------------------------------------------------------------------
# Каноникализация
# -----------------------------------------------------------------------------
def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, Decimal)):
        return js_number_str(value)
    return str(value)


def canonical_string(params: Mapping[str, Any]) -> str:
    """'a=1&b=x' по отсортированным ключам без signature и пустых значений."""
    keys = sorted(
        k for k, v in params.items() if k != "signature" and v is not None and v != ""
    )
    return "&".join(f"{k}={_stringify(params[k])}".strip() for k in keys)


# -----------------------------------------------------------------------------
# Стратегии подписи
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class SignStrategy:
    """Один вариант присоединения секрета к канонической строке."""

    name: str
    suffix: Callable[[str], str]

    def material(self, source: str, token: str) -> str:
        return source + self.suffix(token)

    def sign(self, params: Mapping[str, Any], token: str) -> str:
        if not token:
            raise GatewayBusinessError(
                "Payment gateway is not configured.", details={"missing": "EPUSDT_TOKEN"}
            )
        return md5_hex(self.material(canonical_string(params), token))


SIGN_STRATEGIES: Tuple[SignStrategy, ...] = (
    SignStrategy("concat", lambda token: token),
    SignStrategy("amp_token", lambda token: f"&token={token}"),
    SignStrategy("amp_key", lambda token: f"&key={token}"),
)
DEFAULT_STRATEGY = SIGN_STRATEGIES[0]


def sign_params(params: Mapping[str, Any], token: str, strategy: SignStrategy = DEFAULT_STRATEGY) -> str:
    return strategy.sign(params, token)


def verify_signature(params: Mapping[str, Any], signature: Optional[str], token: str) -> bool:
    """Проверка подписи callback (режим concat, сравнение без учёта регистра)."""
    if not signature or not token:
        return False
    expected = DEFAULT_STRATEGY.sign(params, token)
    return hmac.compare_digest(expected.lower(), str(signature).strip().lower())


def is_signature_rejection(reply: Mapping[str, Any]) -> bool:
    """Шлюз явно сообщил об ошибке аутентификации/подписи."""
    code = reply.get("status_code")
    if code in (401, 403):
        return True
    return bool(_SIGN_ERROR_RE.search(str(reply.get("message") or "")))


# -----------------------------------------------------------------------------
# Перебор стратегий
# -----------------------------------------------------------------------------
Sender = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


@dataclass
class NegotiationResult:
    reply: Dict[str, Any]
    body: Dict[str, Any]
    strategy: str
    rejected: List[str] = field(default_factory=list)


async def negotiate_signature(
    payload: Mapping[str, Any],
    token: str,
    send: Sender,
    *,
    strategies: Sequence[SignStrategy] = SIGN_STRATEGIES,
) -> NegotiationResult:
    """
    Отправить payload, подписывая по очереди каждой стратегией.

    send(body) возвращает JSON-ответ шлюза или бросает доменную ошибку
    (таймаут, сеть, HTTP), которая прерывает перебор.
    """
    source = canonical_string(payload)
    rejected: List[str] = []
    last_message = ""
    for strategy in strategies:
        body = {k: v for k, v in payload.items() if v is not None and v != ""}
        body["signature"] = strategy.sign(payload, token)
        reply = await send(body)
        if reply.get("status_code") == SUCCESS_CODE:
            if rejected:
                logger.info(
                    "Gateway accepted fallback signature variant",
                    extra={"variant": strategy.name, "rejected": rejected},
                )
            return NegotiationResult(reply=reply, body=body, strategy=strategy.name, rejected=rejected)

        last_message = str(reply.get("message") or reply.get("status_code") or "Unknown")
        if not is_signature_rejection(reply):
            raise GatewayBusinessError(
                f"Gateway business error: {last_message}",
                details={
                    "status_code": reply.get("status_code"),
                    "gateway_message": last_message,
                    "sign_source": source,
                },
            )
        rejected.append(strategy.name)
        logger.warning(
            "Gateway rejected signature variant",
            extra={"variant": strategy.name, "gateway_message": last_message},
        )

    raise GatewayBusinessError(
        f"Gateway rejected the signature (tried {len(rejected)} variants: "
        f"{', '.join(rejected)}): {last_message}\nsign source: {source}",
        details={"variants": rejected, "gateway_message": last_message, "sign_source": source},
    )


# -----------------------------------------------------------------------------
# HTTP-клиент
# -----------------------------------------------------------------------------
def json_amount(value: Decimal) -> int | float:
    """Сумма для JSON-тела: целое без дробной части, иначе float (как в подписи)."""
    return int(value) if value == value.to_integral_value() else float(js_number_str(value))


class EpusdtClient:
    """Клиент Epusdt. transport внедряется в тестах (httpx.MockTransport)."""

    def __init__(
        self,
        *,
        base_url: str,
        token: str,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.token = token or ""
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    @classmethod
    def from_settings(
        cls, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> "EpusdtClient":
        return cls(
            base_url=settings.EPUSDT_BASE_URL,
            token=settings.EPUSDT_TOKEN,
            timeout_seconds=settings.EPUSDT_TIMEOUT_SEC,
            transport=transport,
        )

    async def _post_json(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """POST JSON; сетевые/HTTP ошибки → доменные исключения."""
        url = f"{self.base_url}{path}"
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = await client.post(url, json=body, headers=headers)
        except httpx.TimeoutException as exc:
            logger.error("Gateway request timed out", extra={"url": url, "timeout_sec": self.timeout_seconds})
            raise GatewayTimeoutError(details={"timeout_sec": self.timeout_seconds}) from exc
        except httpx.HTTPError as exc:
            logger.error("Gateway request failed", extra={"url": url, "error": str(exc)})
            raise GatewayUnavailableError(details={"error": type(exc).__name__}) from exc

        raw = response.text
        preview = raw if len(raw) <= 500 else raw[:500] + "…"
        if not response.is_success:
            logger.error("Gateway HTTP error", extra={"http_status": response.status_code, "body": preview})
            raise GatewayBusinessError(
                f"Gateway HTTP {response.status_code}",
                details={"http_status": response.status_code, "body": preview},
            )
        try:
            data = response.json()
        except ValueError:
            logger.error("Gateway returned invalid JSON", extra={"body": preview})
            raise GatewayBusinessError("Invalid gateway response.", details={"body": preview}) from None
        if not isinstance(data, dict):
            raise GatewayBusinessError("Invalid gateway response.", details={"body": preview})
        return data

    async def create_transaction(self, payload: Mapping[str, Any]) -> NegotiationResult:
        if not self.base_url:
            raise GatewayBusinessError(
                "Payment gateway is not configured.", details={"missing": "EPUSDT_BASE_URL"}
            )
        logger.info(
            "Gateway create-transaction",
            extra={"order_id": payload.get("order_id"), "amount": str(payload.get("amount"))},
        )

        async def _send(body: Dict[str, Any]) -> Dict[str, Any]:
            return await self._post_json(CREATE_TRANSACTION_PATH, body)

        return await negotiate_signature(payload, self.token, _send)


__all__ = [
    "CALLBACK_SIGNED_FIELDS",
    "CREATE_TRANSACTION_PATH",
    "SIGN_STRATEGIES",
    "SignStrategy",
    "NegotiationResult",
    "EpusdtClient",
    "canonical_string",
    "sign_params",
    "verify_signature",
    "is_signature_rejection",
    "negotiate_signature",
    "json_amount",
]
