# ============================================================================
# Keyshop - scheduler.expire_trades
# -----------------------------------------------------------------------------
# Назначение: фоновый тик, переводящий просроченные pending-трейды Epusdt
#             (expiration_time в прошлом) в статус expired.
#
# Канон/инварианты:
#   • Трогаем только pending-трейды; paid/expired не меняются.
#   • Баланс не меняется: истечение - это только статус.
#   • Поздний paid-callback по expired-трейду всё равно зачисляется
#     (это решает вебхук, а не планировщик).
#   • Интервал - TRADE_EXPIRY_SWEEP_INTERVAL_SEC с небольшим джиттером.
#
# Запреты:
#   • Никаких запросов к шлюзу; статус берём только из собственной БД.
# ============================================================================
from __future__ import annotations

import asyncio
from random import randint
from typing import Awaitable, Callable

from sqlalchemy.exc import SQLAlchemyError

from ..core.config_core import Settings, get_settings
from ..core.database_core import Database
from ..core.errors_core import ShopError
from ..core.logging_core import get_logger, setup_logging
from ..core.utils_core import utcnow
from ..integrations.epusdt_api import EpusdtClient
from ..services.epusdt_service import EpusdtTradeService

logger = get_logger(__name__)


async def _run_once_guarded(service: EpusdtTradeService) -> int:
    """Один тик; ошибки логируются, цикл продолжается."""

    try:
        return await service.expire_overdue_trades(utcnow())
    except (SQLAlchemyError, ShopError) as exc:
        logger.exception(
            "trade expiry tick failed",
            extra={"error": str(exc), "at": utcnow().isoformat()},
        )
        return 0


async def run_once(service: EpusdtTradeService) -> int:
    """Публичная точка для CLI/тестов: один тик, возвращает число истёкших трейдов."""

    return await _run_once_guarded(service)


async def _run_forever(
    settings: Settings,
    sleeper: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    db = Database.from_settings(settings)
    service = EpusdtTradeService(db, EpusdtClient.from_settings(settings), settings)
    base_sleep = max(5, int(settings.TRADE_EXPIRY_SWEEP_INTERVAL_SEC))
    logger.info("trade expiry loop started", extra={"interval": base_sleep})
    try:
        while True:
            await _run_once_guarded(service)
            jitter = randint(-3, 3)
            await sleeper(max(1, base_sleep + jitter))
    finally:
        await db.dispose()


def run_forever() -> None:
    """Запустить вечный цикл (CLI/entrypoint)."""

    settings = get_settings()
    setup_logging(settings)
    asyncio.run(_run_forever(settings))


if __name__ == "__main__":
    run_forever()

# ============================================================================
# Пояснения «для чайника»:
#   • Запуск: python -m backend.app.scheduler.expire_trades
#   • Тик идемпотентен: повторный прогон по уже истёкшим трейдам ничего не делает.
# ============================================================================
