# -*- coding: utf-8 -*-
# backend/app/core/logging_core.py
# =============================================================================
# Назначение кода:
#   Централизованная настройка логирования Keyshop:
#   • формат и хэндлеры;
#   • контекст корреляции (request_id, user_id, order_id);
#   • защита от утечек секретов (токен шлюза, DSN, подписи);
#   • удобные утилиты для модулей.
#
# Канон / инварианты:
#   • prod: JSON (python-json-logger), dev/local/test: человекочитаемый формат.
#   • Денежные события (покупка, зачисление, повторный вебхук) логируются
#     с идентификаторами, но без значений ключей и секретов.
#   • Поля каждой записи: env, svc, rid, uid, oid.
#
# Запреты:
#   • Никакого логирования содержимого ключей (license strings) и EPUSDT_TOKEN.
#   • Никаких сетевых/блокирующих операций в форматерах/фильтрах.
# =============================================================================

from __future__ import annotations

import contextvars
import logging
import sys
import uuid
from typing import Any, Awaitable, Callable, Dict, Mapping, MutableMapping, Optional, Tuple

from pythonjsonlogger.json import JsonFormatter

from backend.app.core.config_core import Settings

ASGIApp = Callable[
    [Mapping[str, Any], Callable[..., Awaitable[Any]], Callable[..., Awaitable[Any]]],
    Awaitable[Any],
]


# -----------------------------------------------------------------------------
# Контекст корреляции (contextvars), безопасно для асинхронного кода
# -----------------------------------------------------------------------------
_rid_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("rid", default=None)
_uid_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("uid", default=None)
_oid_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("oid", default=None)


def set_request_context(
    *,
    request_id: Optional[str] = None,
    user_id: Optional[int | str] = None,
    order_id: Optional[str] = None,
) -> None:
    """
    Присвоить контекст корреляции текущему асинхронному потоку.

    Middleware ставит request_id; сервисы дописывают user_id/order_id,
    как только их узнают (покупка, создание трейда, вебхук).
    """
    if request_id is not None:
        _rid_var.set(str(request_id))
    if user_id is not None:
        _uid_var.set(str(user_id))
    if order_id is not None:
        _oid_var.set(str(order_id))


def clear_request_context() -> None:
    """Очистить контекст корреляции (после завершения запроса/таски)."""
    _rid_var.set(None)
    _uid_var.set(None)
    _oid_var.set(None)


# -----------------------------------------------------------------------------
# Фильтры логирования
# -----------------------------------------------------------------------------
class ContextFilter(logging.Filter):
    """Впрыскивает env/svc и поля корреляции (rid/uid/oid) в каждую запись."""

    def __init__(self, env: str, service: str) -> None:
        super().__init__()
        self._env = env
        self._svc = service

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "env"):
            record.env = self._env
        if not hasattr(record, "svc"):
            record.svc = self._svc
        if not hasattr(record, "rid"):
            record.rid = _rid_var.get() or "-"
        if not hasattr(record, "uid"):
            record.uid = _uid_var.get() or "-"
        if not hasattr(record, "oid"):
            record.oid = _oid_var.get() or "-"
        return True


class RedactingFilter(logging.Filter):
    """
    Маскирует секреты в тексте сообщения и в extra-полях записи.

    Значения секретов берутся из настроек (SECRET_SETTINGS), имена
    чувствительных extra-полей перечислены в SECRET_FIELDS.
    """

    MASK = "****"
    SECRET_SETTINGS: Tuple[str, ...] = ("EPUSDT_TOKEN", "DATABASE_URL")
    SECRET_FIELDS: Tuple[str, ...] = (
        "token",
        "signature",
        "api_token",
        "authorization",
        "key_value",
    )

    def __init__(self, settings: Settings) -> None:
        super().__init__()
        self._secrets: list[str] = []
        for name in self.SECRET_SETTINGS:
            value = getattr(settings, name, None)
            if value and isinstance(value, str):
                self._secrets.append(value)

    def _redact_text(self, text: str) -> str:
        redacted = text
        for secret in self._secrets:
            if secret in redacted:
                redacted = redacted.replace(secret, self.MASK)
        return redacted

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._redact_text(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(
                self._redact_text(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        for field in self.SECRET_FIELDS:
            if getattr(record, field, None):
                setattr(record, field, self.MASK)
        return True


# -----------------------------------------------------------------------------
# Форматеры
# -----------------------------------------------------------------------------
class DevFormatter(logging.Formatter):
    """
    Человекочитаемый формат для local/dev/test.

    2026-01-01 12:00:00 | INFO     | Keyshop | backend.app... | rid=... uid=... oid=... | msg
    """

    def __init__(self) -> None:
        super().__init__(
            fmt=(
                "%(asctime)s | %(levelname)-8s | %(svc)s | %(name)s | "
                "rid=%(rid)s uid=%(uid)s oid=%(oid)s | %(message)s"
            ),
            datefmt="%Y-%m-%d %H:%M:%S",
        )


class KeyshopJsonFormatter(JsonFormatter):
    """JSON-формат для prod: стабильные имена полей для агрегатора логов."""

    def process_log_record(self, log_record: Dict[str, Any]) -> Dict[str, Any]:
        base = super().process_log_record(log_record)
        out = {
            "time": base.pop("asctime", None),
            "level": base.pop("levelname", None),
            "service": base.pop("svc", None),
            "logger": base.pop("name", None),
            "env": base.pop("env", None),
            "rid": base.pop("rid", None),
            "uid": base.pop("uid", None),
            "oid": base.pop("oid", None),
            "msg": base.pop("message", None),
        }
        # остальные extra-поля (trade_id, strategy, ...) идут как есть
        out.update(base)
        return out


def _make_json_formatter() -> logging.Formatter:
    fmt = "%(asctime)s %(levelname)s %(svc)s %(name)s %(env)s %(rid)s %(uid)s %(oid)s %(message)s"
    return KeyshopJsonFormatter(fmt=fmt)


# -----------------------------------------------------------------------------
# Инициализация логирования
# -----------------------------------------------------------------------------
def setup_logging(settings: Settings) -> None:
    """
    Полностью настраивает root-логгер:

      • уровень из LOG_LEVEL (DEBUG принудительно при DEBUG=true);
      • консоль (stdout) с фильтрами контекста и редактирования;
      • uvicorn/fastapi-логгеры пробрасываются в root (единый формат);
      • SQLAlchemy-логгер слышен только в DEBUG.
    """
    env = settings.env_normalized
    level_name = "DEBUG" if settings.DEBUG else settings.LOG_LEVEL
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_make_json_formatter() if settings.log_as_json else DevFormatter())
    handler.addFilter(ContextFilter(env=env, service=settings.PROJECT_NAME))
    handler.addFilter(RedactingFilter(settings))
    root.addHandler(handler)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        lg = logging.getLogger(name)
        lg.handlers.clear()
        lg.setLevel(level)
        lg.propagate = True

    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.DEBUG else logging.WARNING
    )

    logging.getLogger(__name__).info(
        "Logging initialized",
        extra={"details": {"env": env, "level": logging.getLevelName(level)}},
    )


def get_logger(name: Optional[str] = None, **extra: Any) -> logging.Logger:
    """
    Получить логгер по имени и (опционально) привязать дополнительные поля
    через LoggerAdapter.

        log = get_logger(__name__, component="webhook")
    """
    base = logging.getLogger(name)
    if not extra:
        return base
    return logging.LoggerAdapter(base, extra)  # type: ignore[return-value]


# -----------------------------------------------------------------------------
# ASGI-middleware для корреляции
# -----------------------------------------------------------------------------
class CorrelationIdMiddleware:
    """
    Берёт X-Request-ID из заголовков (или генерирует UUID4 hex), кладёт его
    в contextvars и возвращает в ответе.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(
        self,
        scope: Mapping[str, Any],
        receive: Callable[..., Awaitable[Any]],
        send: Callable[..., Awaitable[Any]],
    ) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        raw_headers: MutableMapping[bytes, bytes] = dict(scope.get("headers") or [])
        headers: Dict[str, str] = {
            key.decode().lower(): value.decode() for key, value in raw_headers.items()
        }
        rid = headers.get("x-request-id") or uuid.uuid4().hex
        set_request_context(request_id=rid)

        async def send_wrapper(message: Mapping[str, Any]) -> None:
            if message.get("type") == "http.response.start":
                headers_list: list[Tuple[bytes, bytes]] = list(message.get("headers") or [])
                headers_list.append((b"x-request-id", rid.encode("utf-8")))
                new_message: Dict[str, Any] = dict(message)
                new_message["headers"] = headers_list
                await send(new_message)
                return
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            clear_request_context()


__all__ = [
    "setup_logging",
    "get_logger",
    "set_request_context",
    "clear_request_context",
    "ContextFilter",
    "RedactingFilter",
    "CorrelationIdMiddleware",
]
# =============================================================================
# Пояснения «для чайника»:
#   • В dev/local/test вы увидите читаемые строки; в prod структурированный JSON.
#   • Подключите CorrelationIdMiddleware в create_app(), чтобы каждая ручка
#     получала и возвращала X-Request-ID.
#   • EPUSDT_TOKEN и DSN маскируются как "****" даже если попали в текст.
# =============================================================================
