# -*- coding: utf-8 -*-
# backend/app/services/__init__.py
# =============================================================================
# Keyshop - сервисный слой (единая точка входа)
# -----------------------------------------------------------------------------
# Назначение файла:
#   • Стабильный вход для доменных сервисов: леджер, склад, покупка,
#     каталог, пользователи, шлюз Epusdt и его вебхук.
#   • Лёгкий health-snapshot для /health.
#
# Важные принципы:
#   • Никакой бизнес-логики здесь нет - только импорты и тонкие прокси.
#   • Никаких HTTP-запросов/блокирующих операций на уровне импорта.
# =============================================================================

from __future__ import annotations

from typing import Any, Dict

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from backend.app.core.database_core import Database
from backend.app.core.errors_core import ShopError
from backend.app.core.logging_core import get_logger
from backend.app.models import GatewayTrade, TradeStatus

from .transactions_service import (  # noqa: F401
    LedgerResult,
    adjust_balance,
    adjust_balance_standalone,
    admin_adjust_balance,
    list_user_transactions,
    reconcile_balance,
)
from .inventory_service import KeyHandle, reserve_key  # noqa: F401
from .orders_service import (  # noqa: F401
    PurchaseResult,
    list_user_orders,
    purchase,
    purchase_in_session,
)
from .shop_service import (  # noqa: F401
    count_available_keys,
    create_product,
    delete_key,
    delete_product,
    get_product,
    import_keys,
    list_active_products,
    list_all_products,
    product_to_dict,
    purge_unsold_keys,
    set_product_active,
    update_key_value,
    update_product,
)
from .users_service import (  # noqa: F401
    get_or_create_user,
    get_user_balance,
    get_user_by_telegram_id,
    user_to_dict,
)
from .epusdt_service import EpusdtTradeService, convert_amount, make_order_id  # noqa: F401
from .epusdt_webhook_service import (  # noqa: F401
    CallbackPayload,
    handle_callback,
    parse_callback,
)

logger = get_logger(__name__)


async def services_health_snapshot(db: Database) -> Dict[str, Any]:
    """
    Лёгкая сводка для /health: доступность БД и число pending-трейдов.
    Ошибка одного блока не валит весь ответ.
    """
    out: Dict[str, Any] = {"db": False, "pendingTrades": None, "errors": []}

    out["db"] = await db.ping()
    if not out["db"]:
        out["errors"].append({"component": "db", "error": "unreachable"})
        return out

    try:
        async with db.session() as session:
            out["pendingTrades"] = int(
                await session.scalar(
                    select(func.count(GatewayTrade.id)).where(
                        GatewayTrade.status == TradeStatus.PENDING.value
                    )
                )
                or 0
            )
    except (SQLAlchemyError, ShopError) as e:
        logger.warning("services_health_snapshot: trades query failed: %s", e)
        out["errors"].append({"component": "trades", "error": type(e).__name__})

    return out


__all__ = [
    # --- transactions_service ---
    "LedgerResult",
    "adjust_balance",
    "adjust_balance_standalone",
    "admin_adjust_balance",
    "list_user_transactions",
    "reconcile_balance",
    # --- inventory_service ---
    "KeyHandle",
    "reserve_key",
    # --- orders_service ---
    "PurchaseResult",
    "purchase",
    "purchase_in_session",
    "list_user_orders",
    # --- shop_service ---
    "create_product",
    "update_product",
    "set_product_active",
    "delete_product",
    "purge_unsold_keys",
    "import_keys",
    "update_key_value",
    "delete_key",
    "list_active_products",
    "list_all_products",
    "count_available_keys",
    "get_product",
    "product_to_dict",
    # --- users_service ---
    "get_or_create_user",
    "get_user_by_telegram_id",
    "get_user_balance",
    "user_to_dict",
    # --- epusdt ---
    "EpusdtTradeService",
    "convert_amount",
    "make_order_id",
    "CallbackPayload",
    "parse_callback",
    "handle_callback",
    # --- health ---
    "services_health_snapshot",
]
