"""
Shared fixtures for the Keyshop backend tests.

Every test gets its own SQLite file database (sqlite+aiosqlite, BEGIN IMMEDIATE
serialization), a Settings object built in code, and an Epusdt client wired
to an in-process httpx.MockTransport. Nothing talks to the network.
"""

import json
import time
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio

from backend.app import create_app
from backend.app.core.config_core import Settings
from backend.app.core.database_core import Database
from backend.app.integrations.epusdt_api import EpusdtClient, sign_params
from backend.app.models import TxKind
from backend.app.services.shop_service import create_product, import_keys
from backend.app.services.transactions_service import adjust_balance_standalone
from backend.app.services.users_service import get_or_create_user

GATEWAY_TOKEN = "test-epusdt-token"
ADMIN_TG = "9001"


class FakeGateway:
    """
    Stand-in for the Epusdt create-transaction endpoint.

    Replies are consumed in FIFO order; each queued item is either a JSON dict,
    an httpx.Response, or an exception instance raised from the transport.
    With an empty queue the gateway accepts the request.
    """

    def __init__(self) -> None:
        self.requests: List[Dict[str, Any]] = []
        self.replies: List[Any] = []

    def queue(self, *replies: Any) -> None:
        self.replies.extend(replies)

    def success_reply(self, body: Dict[str, Any]) -> Dict[str, Any]:
        trade_id = f"T{len(self.requests):04d}"
        return {
            "status_code": 200,
            "message": "success",
            "data": {
                "trade_id": trade_id,
                "order_id": body["order_id"],
                "amount": body["amount"],
                "actual_amount": body["amount"],
                "token": "TWalletAddress0001",
                "expiration_time": int(time.time()) + 600,
                "payment_url": f"http://gateway.test:8000/pay/checkout-counter/{trade_id}",
            },
        }

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        reply = self.replies.pop(0) if self.replies else self.success_reply(body)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, httpx.Response):
            return reply
        return httpx.Response(200, json=reply)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        ENV="test",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'keyshop.db'}",
        DB_CHECK_SCHEMA_ON_STARTUP=False,
        DB_LOCK_TIMEOUT_SEC=30,
        EPUSDT_BASE_URL="http://gateway.test:8000",
        EPUSDT_TOKEN=GATEWAY_TOKEN,
        EPUSDT_TIMEOUT_SEC=2.0,
        BASE_URL="https://shop.test",
        ADMIN_TELEGRAM_IDS=ADMIN_TG,
        LOG_JSON=False,
        LOG_LEVEL="WARNING",
    )


@pytest_asyncio.fixture
async def db(settings):
    database = Database.from_settings(settings)
    await database.create_all()
    yield database
    await database.dispose()


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def gateway_client(settings, fake_gateway) -> EpusdtClient:
    return EpusdtClient.from_settings(settings, transport=httpx.MockTransport(fake_gateway))


@pytest.fixture
def app(settings, db, gateway_client):
    return create_app(settings, database=db, gateway_client=gateway_client)


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
        yield http


@pytest.fixture
def make_user(db) -> Callable:
    async def _make(telegram_id: str = "1001", *, balance: Any = 0, username: Optional[str] = "buyer"):
        user = await get_or_create_user(db, telegram_id, username)
        if Decimal(str(balance)) != 0:
            await adjust_balance_standalone(
                db, user_id=user.id, delta=balance, note="seed", kind=TxKind.RECHARGE
            )
        return user

    return _make


@pytest.fixture
def make_product(db) -> Callable:
    counter = {"n": 0}

    async def _make(
        *,
        name: Optional[str] = None,
        price: Any = "10.00",
        keys: Any = ("KEY-AAAA-0001",),
        active: bool = True,
        sub_category: str = "windows",
    ):
        counter["n"] += 1
        product = await create_product(
            db,
            name=name or f"Product {counter['n']}",
            price=price,
            sub_category=sub_category,
            is_active=active,
        )
        if keys:
            await import_keys(db, product.id, list(keys))
        return product

    return _make


@pytest.fixture
def signed_callback() -> Callable:
    """Builds a callback body signed the way the gateway signs it."""

    def _build(order_id: str, *, trade_id: str = "T0001", amount: Any = 10, actual_amount: Any = 10,
               status: int = 2, token: str = GATEWAY_TOKEN, **overrides: Any) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "trade_id": trade_id,
            "order_id": order_id,
            "amount": amount,
            "actual_amount": actual_amount,
            "token": "TWalletAddress0001",
            "block_transaction_id": "0xblockhash",
            "status": status,
        }
        body.update(overrides)
        body["signature"] = sign_params(body, token)
        return body

    return _build
