# -*- coding: utf-8 -*-
# backend/app/routes/__init__.py
# =============================================================================
# Назначение кода:
#   Единая точка подключения всех HTTP-роутов Keyshop. Модуль агрегирует
#   подмодули роутов и предоставляет:
#     • общий APIRouter (api_router), в который «вмонтированы» все роуты;
#     • функцию register(app, prefix="") для подключения в FastAPI;
#     • список подключённых модулей для health-диагностики.
#
# Канон/инварианты:
#   • Этот модуль НЕ выполняет бизнес-логику и НЕ трогает деньги, только
#     проводка маршрутов.
#   • Каждый модуль обязан экспортировать `router: APIRouter`; сломанный или
#     отсутствующий модуль роутов = ошибка старта (неполная сборка API).
#
# Запреты:
#   • Нет прямых SQL, нет вызовов сервисов - только import и include_router.
#   • Префиксы разделов задают сами модули ("/users", "/shop", "/admin"...).
# =============================================================================

from __future__ import annotations

from importlib import import_module
from typing import List, Tuple

from fastapi import APIRouter, FastAPI

from backend.app.core.logging_core import get_logger

logger = get_logger(__name__)

# Порядок важен для читабельности OpenAPI и предсказуемости логов.
ROUTERS_EXPECTED: Tuple[str, ...] = (
    "user_routes",
    "shop_routes",
    "payments_routes",
    "admin.admin_routes",
)

api_router = APIRouter()

_ATTACHED: List[str] = []


def _include(module_basename: str) -> None:
    fqmn = f"backend.app.routes.{module_basename}"
    mod = import_module(fqmn)
    router = getattr(mod, "router", None)
    if not isinstance(router, APIRouter):
        raise RuntimeError(f"{fqmn} does not export router: APIRouter")
    api_router.include_router(router)
    _ATTACHED.append(module_basename)


for _name in ROUTERS_EXPECTED:
    _include(_name)


def register(app: FastAPI, prefix: str = "") -> None:
    """
    Регистрирует агрегированный роутер в приложении FastAPI.

    Args:
        app:   экземпляр FastAPI.
        prefix: базовый префикс для всех маршрутов (обычно "" или "/api").
    """
    app.include_router(api_router, prefix=prefix)
    logger.info(
        "Routes registered",
        extra={"prefix": prefix, "modules": ",".join(_ATTACHED)},
    )


def list_registered_routes() -> List[str]:
    """Короткие имена подключённых модулей роутов."""
    return list(_ATTACHED)


__all__ = [
    "api_router",
    "register",
    "list_registered_routes",
    "ROUTERS_EXPECTED",
]
