# -*- coding: utf-8 -*-
# backend/app/core/errors_core.py
# =============================================================================
# Назначение кода:
#   • Единый слой ошибок/исключений Keyshop.
#   • Канонические коды ошибок для бота/админки/шлюза.
#   • Унифицированные JSON-ответы для FastAPI: {"ok": false, "error": code, ...}.
#
# Канон / инварианты:
#   • Сервисы покупки, леджера и шлюза бросают ТОЛЬКО доменные исключения
#     из этого модуля. Вызывающий UI/бот различает причину по коду
#     (нет на складе / не хватает денег / товар неактивен).
#   • Клиенту никогда не утекают технические детали (stack trace, DSN, токены).
#   • StorageConflict временный (повтор всей операции безопасен);
#     SchemaInconsistency фатальный (500, всегда в лог).
#
# Запреты:
#   • Никакой бизнес-логики в этом модуле.
#   • Не логировать здесь секреты (см. logging_core).
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, cast

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.app.core.logging_core import get_logger

logger = get_logger(__name__)


# -----------------------------------------------------------------------------
# Базовая доменная ошибка
# -----------------------------------------------------------------------------
@dataclass(eq=False)
class ShopError(Exception):
    """
    Базовое доменное исключение Keyshop.

    Поля:
      • code         - стабильный машинный код ошибки (snake_case).
      • message      - короткое безопасное сообщение для клиента.
      • http_status  - HTTP код по умолчанию.
      • details      - безопасные детали (без секретов), опционально.
    """

    code: str
    message: str
    http_status: int = status.HTTP_400_BAD_REQUEST
    details: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        """Готовит JSON-ответ для клиента."""
        payload: Dict[str, Any] = {
            "ok": False,
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


def _error_class(code: str, default_message: str, http_status: int):
    """Фабрика __init__ для наследников с фиксированным кодом/статусом."""

    def __init__(
        self: ShopError,
        message: str = default_message,
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        ShopError.__init__(
            self,
            code=code,
            message=message,
            http_status=http_status,
            details=details or {},
        )

    return __init__


# -----------------------------------------------------------------------------
# Покупка / склад / баланс
# -----------------------------------------------------------------------------
class ProductUnavailableError(ShopError):
    """Товар не найден или выключен."""

    __init__ = _error_class(
        "product_unavailable", "Product is unavailable.", status.HTTP_409_CONFLICT
    )


class UserNotFoundError(ShopError):
    """Пользователь не найден."""

    __init__ = _error_class("user_not_found", "User not found.", status.HTTP_404_NOT_FOUND)


class InsufficientBalanceError(ShopError):
    """Баланс меньше цены (проверено по заблокированной строке)."""

    __init__ = _error_class(
        "insufficient_balance",
        "Insufficient balance.",
        status.HTTP_402_PAYMENT_REQUIRED,
    )


class OutOfStockError(ShopError):
    """Непроданных ключей для товара не осталось."""

    __init__ = _error_class("out_of_stock", "Product is out of stock.", status.HTTP_409_CONFLICT)


# -----------------------------------------------------------------------------
# Платёжный шлюз / вебхук
# -----------------------------------------------------------------------------
class InvalidSignatureError(ShopError):
    """Подпись вебхука не совпала."""

    __init__ = _error_class(
        "invalid_signature", "Invalid signature.", status.HTTP_401_UNAUTHORIZED
    )


class MalformedCallbackError(ShopError):
    """В теле вебхука не хватает обязательных полей или они некорректны."""

    __init__ = _error_class(
        "malformed_callback", "Malformed callback payload.", status.HTTP_400_BAD_REQUEST
    )


class TradeNotFoundError(ShopError):
    """Трейд по order_id/trade_id не найден."""

    __init__ = _error_class("trade_not_found", "Trade not found.", status.HTTP_404_NOT_FOUND)


class GatewayTimeoutError(ShopError):
    """Шлюз не ответил за отведённый таймаут."""

    __init__ = _error_class(
        "gateway_timeout",
        "Payment gateway did not respond in time. Please try again later.",
        status.HTTP_504_GATEWAY_TIMEOUT,
    )


class GatewayUnavailableError(ShopError):
    """Сетевой сбой при обращении к шлюзу (не таймаут)."""

    __init__ = _error_class(
        "gateway_unavailable", "Payment gateway is unreachable.", status.HTTP_502_BAD_GATEWAY
    )


class GatewayBusinessError(ShopError):
    """Шлюз отклонил запрос (бизнес-ошибка или исчерпаны все варианты подписи)."""

    __init__ = _error_class(
        "gateway_error", "Payment gateway rejected the request.", status.HTTP_502_BAD_GATEWAY
    )


# -----------------------------------------------------------------------------
# Хранилище
# -----------------------------------------------------------------------------
class StorageConflictError(ShopError):
    """Временный конфликт блокировок (lock wait timeout, deadlock, busy)."""

    __init__ = _error_class(
        "storage_conflict",
        "Storage is busy, retry the operation.",
        status.HTTP_503_SERVICE_UNAVAILABLE,
    )


class SchemaInconsistencyError(ShopError):
    """Схема БД не соответствует ожидаемой версии (нет таблицы/колонки)."""

    __init__ = _error_class(
        "schema_inconsistency",
        "Internal server error.",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


# -----------------------------------------------------------------------------
# Каталог / админка
# -----------------------------------------------------------------------------
class NotFoundError(ShopError):
    """Ресурс не найден (товар, ключ)."""

    __init__ = _error_class("not_found", "Resource not found.", status.HTTP_404_NOT_FOUND)


class ValidationFailedError(ShopError):
    """Некорректные входные данные."""

    __init__ = _error_class(
        "validation_error", "Invalid data.", status.HTTP_422_UNPROCESSABLE_ENTITY
    )


class DuplicateProductNameError(ShopError):
    """Товар с таким именем уже существует."""

    __init__ = _error_class(
        "product_name_taken", "Product name is already taken.", status.HTTP_409_CONFLICT
    )


class ProductStillActiveError(ShopError):
    """Удаление активного товара запрещено: сначала деактивировать."""

    __init__ = _error_class(
        "product_active",
        "Deactivate the product before deleting it.",
        status.HTTP_409_CONFLICT,
    )


class ProductHasKeysError(ShopError):
    """У товара остались ключи; непроданные удаляются явной операцией purge."""

    __init__ = _error_class(
        "has_keys",
        "Product still has keys.",
        status.HTTP_409_CONFLICT,
    )


class AdminAccessDeniedError(ShopError):
    """Вызов админской ручки без прав."""

    __init__ = _error_class("forbidden", "Admin access required.", status.HTTP_403_FORBIDDEN)


# -----------------------------------------------------------------------------
# Нормализация исключений → (status_code, payload)
# -----------------------------------------------------------------------------
def normalize_exception(exc: BaseException) -> Tuple[int, Dict[str, Any]]:
    """
    Приводит произвольное исключение к каноническому HTTP-ответу.

    Правила:
      • ShopError               → свой http_status + to_payload().
      • RequestValidationError  → 422 + validation_error с перечнем полей.
      • HTTPException           → status_code + http_error.
      • Любая другая            → 500 + internal_error (без деталей).
    """
    if isinstance(exc, ShopError):
        return exc.http_status, exc.to_payload()

    if isinstance(exc, RequestValidationError):
        fields = [".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()]
        return (
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            {
                "ok": False,
                "error": "validation_error",
                "message": "Invalid request.",
                "details": {"fields": fields},
            },
        )

    if isinstance(exc, StarletteHTTPException):
        details: Dict[str, Any] = {}
        if isinstance(exc.detail, dict):
            details = cast(Dict[str, Any], exc.detail)
            msg = details.get("message") or details.get("detail") or "HTTP error."
        else:
            msg = str(exc.detail) if exc.detail else "HTTP error."
        payload: Dict[str, Any] = {"ok": False, "error": "http_error", "message": msg}
        if details:
            payload["details"] = details
        return exc.status_code, payload

    logger.exception("Unhandled exception", extra={"error_type": type(exc).__name__})
    return (
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        {"ok": False, "error": "internal_error", "message": "Internal server error."},
    )


# -----------------------------------------------------------------------------
# FastAPI-хендлеры исключений
# -----------------------------------------------------------------------------
async def shop_error_handler(request: Request, exc: ShopError) -> JSONResponse:
    status_code, payload = normalize_exception(exc)
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "ShopError handled",
        extra={"path": request.url.path, "error": exc.code, "status": status_code},
    )
    return JSONResponse(status_code=status_code, content=payload)


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    status_code, payload = normalize_exception(exc)
    return JSONResponse(status_code=status_code, content=payload)


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    status_code, payload = normalize_exception(exc)
    return JSONResponse(status_code=status_code, content=payload, headers=exc.headers)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Логируем stack trace и тип исключения, клиенту отдаём только internal_error."""
    status_code, payload = normalize_exception(exc)
    logger.error(
        "Unhandled exception handled by generic handler",
        extra={"path": request.url.path, "status": status_code, "exc_type": type(exc).__name__},
    )
    return JSONResponse(status_code=status_code, content=payload)


def setup_exception_handlers(app: FastAPI) -> None:
    """Подключает обработчики исключений (один раз в create_app)."""
    app.add_exception_handler(ShopError, shop_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)


# =============================================================================
# Пояснения «для чайника»:
#   • В сервисе бросайте наследника ShopError, а не голый HTTPException:
#     бот и админка увидят стабильный error и сообщение.
#   • GatewayTimeoutError и InvalidSignatureError специально разные классы:
#     таймаут шлюза не путается с ошибкой подписи.
# =============================================================================

__all__ = [
    "ShopError",
    "ProductUnavailableError",
    "UserNotFoundError",
    "InsufficientBalanceError",
    "OutOfStockError",
    "InvalidSignatureError",
    "MalformedCallbackError",
    "TradeNotFoundError",
    "GatewayTimeoutError",
    "GatewayUnavailableError",
    "GatewayBusinessError",
    "StorageConflictError",
    "SchemaInconsistencyError",
    "NotFoundError",
    "ValidationFailedError",
    "DuplicateProductNameError",
    "ProductStillActiveError",
    "ProductHasKeysError",
    "AdminAccessDeniedError",
    "normalize_exception",
    "setup_exception_handlers",
]
