# -*- coding: utf-8 -*-
# backend/app/core/utils_core.py
# =============================================================================
# Назначение:
#   • Базовые утилиты уровня "core" без зависимостей от FastAPI/SQLAlchemy.
#   • Работа с Decimal: цены (2 знака), леджер (6 знаков, как actual_amount
#     шлюза), строковое представление чисел «как у JS Number».
#   • Время/таймстемпы, случайные идентификаторы, MD5.
#
# Канон:
#   • Деньги никогда не проходят через float: только Decimal.
#   • Цены и суммы заказа/трейда хранятся с 2 знаками (ROUND_HALF_UP),
#     баланс и записи леджера с 6 знаками, чтобы зачисление actual_amount
#     шлюза не теряло точность и сумма транзакций сходилась с балансом.
#   • Все функции чистые: без сетевых вызовов и без побочных эффектов.
# =============================================================================

from __future__ import annotations

import hashlib
import secrets
import time
from datetime import datetime, timezone
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

NumberLike = Union[str, int, float, Decimal]

PRICE_DECIMALS = 2
LEDGER_DECIMALS = 6

_Q_PRICE = Decimal(1).scaleb(-PRICE_DECIMALS)
_Q_LEDGER = Decimal(1).scaleb(-LEDGER_DECIMALS)

# Верхняя граница модуля суммы: целая часть помещается и в Numeric(18,2),
# и в Numeric(20,6).
MONEY_LIMIT = Decimal("1e12")

# JS Number печатает |x| < 1e-6 в экспоненциальной записи.
_JS_EXP_THRESHOLD = Decimal("1e-6")


# -----------------------------------------------------------------------------
# Decimal helpers
# -----------------------------------------------------------------------------
def _to_decimal(value: NumberLike) -> Decimal:
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    if isinstance(value, Decimal):
        d = value
    else:
        try:
            d = Decimal(str(value).strip())
        except (InvalidOperation, ValueError, TypeError):
            raise ValueError(f"invalid numeric value: {value!r}") from None
    if not d.is_finite():
        raise ValueError(f"non-finite numeric value: {value!r}")
    return d


def decimal_from(value: NumberLike) -> Decimal:
    """
    Приводит значение к Decimal. float идёт через str(), чтобы не тащить
    бинарные артефакты (0.1 → Decimal('0.1')). Мусор → ValueError.
    |value| >= MONEY_LIMIT → ValueError (дальше quantize не переполнится).
    """
    d = _to_decimal(value)
    if abs(d) >= MONEY_LIMIT:
        raise ValueError(f"numeric value out of range: {value!r}")
    return d


def _quantize(value: NumberLike, exp: Decimal, rounding: str) -> Decimal:
    try:
        return decimal_from(value).quantize(exp, rounding=rounding)
    except InvalidOperation:
        raise ValueError(f"numeric value out of range: {value!r}") from None


def q_price(value: NumberLike) -> Decimal:
    """Цена/сумма заказа: 2 знака, ROUND_HALF_UP (как toFixed(2))."""
    return _quantize(value, _Q_PRICE, ROUND_HALF_UP)


def q_ledger(value: NumberLike) -> Decimal:
    """Баланс/запись леджера: 6 знаков, ROUND_DOWN."""
    return _quantize(value, _Q_LEDGER, ROUND_DOWN)


def to_price_str(value: NumberLike) -> str:
    """'10' → '10.00'."""
    return f"{q_price(value):.{PRICE_DECIMALS}f}"


def to_ledger_str(value: NumberLike) -> str:
    """Баланс наружу: минимум 2 знака, лишние нули после них обрезаем ('5.00', '19.123456')."""
    s = f"{q_ledger(value):.{LEDGER_DECIMALS}f}"
    head, _, tail = s.partition(".")
    tail = tail.rstrip("0")
    if len(tail) < PRICE_DECIMALS:
        tail = tail.ljust(PRICE_DECIMALS, "0")
    return f"{head}.{tail}"


def js_number_str(value: NumberLike) -> str:
    """
    Число в строку так, как его печатает JS Number / Go %v:
    без хвостовых нулей. Decimal('20.000000') → '20', Decimal('19.50') → '19.5',
    Decimal('0.00000015') → '1.5e-7' (ниже 1e-6 JS переходит на экспоненту).
    """
    d = _to_decimal(value)
    if d == 0:
        return "0"
    if d == d.to_integral_value():
        return format(d.to_integral_value(), "f")
    n = d.normalize()
    if abs(n) < _JS_EXP_THRESHOLD:
        sign, digits, _ = n.as_tuple()
        mantissa = str(digits[0])
        if len(digits) > 1:
            mantissa += "." + "".join(str(x) for x in digits[1:])
        return f"{'-' if sign else ''}{mantissa}e{n.adjusted()}"
    return format(n, "f")


# -----------------------------------------------------------------------------
# Время
# -----------------------------------------------------------------------------
def utcnow() -> datetime:
    """Текущее время в UTC (timezone-aware)."""
    return datetime.now(timezone.utc)


def unix_ms() -> int:
    """Текущее время в миллисекундах с эпохи."""
    return int(time.time() * 1000)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite возвращает naive datetime: считаем его UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_epoch_or_iso(raw: object) -> Optional[datetime]:
    """
    expiration_time шлюза: unix-секунды, unix-миллисекунды или ISO-8601.
    Нераспознанное значение → None (трейд просто без срока).
    """
    if raw is None or raw == "":
        return None
    if isinstance(raw, (int, float)) or (isinstance(raw, str) and raw.strip().isdigit()):
        ts = float(raw)
        if ts > 1e12:
            ts /= 1000.0
        return datetime.fromtimestamp(ts, tz=timezone.utc)
    if isinstance(raw, str):
        try:
            return as_utc(datetime.fromisoformat(raw.strip().replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


# -----------------------------------------------------------------------------
# Хэши / случайные идентификаторы
# -----------------------------------------------------------------------------
def md5_hex(data: Union[str, bytes]) -> str:
    """MD5 в hex (нижний регистр)."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.md5(data).hexdigest()


def random_hex(nbytes: int) -> str:
    """Криптостойкий hex длиной 2*nbytes."""
    return secrets.token_hex(nbytes)


__all__ = [
    "NumberLike",
    "PRICE_DECIMALS",
    "LEDGER_DECIMALS",
    "MONEY_LIMIT",
    "decimal_from",
    "q_price",
    "q_ledger",
    "to_price_str",
    "to_ledger_str",
    "js_number_str",
    "utcnow",
    "unix_ms",
    "as_utc",
    "parse_epoch_or_iso",
    "md5_hex",
    "random_hex",
]
