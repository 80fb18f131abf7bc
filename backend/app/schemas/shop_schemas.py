# -*- coding: utf-8 -*-
# backend/app/schemas/shop_schemas.py
# =============================================================================
# Назначение кода:
# Pydantic-схемы каталога Keyshop: витрина товаров со остатком, админские
# формы создания/правки товара, импорт ключей.
#
# Канон / инварианты:
# • Цена > 0, sub_category обязательна (повторно проверяется в сервисе).
# • Цены наружу - строкой с 2 знаками.
# • Ключи в импорте: по строке на ключ; пустые строки пропускаются.
#
# Запреты:
# • Нет движений денег и ключей в схемах; только формы данных.
# =============================================================================

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from pydantic import Field, model_validator

from backend.app.core.utils_core import MONEY_LIMIT
from backend.app.schemas.common_schemas import CamelModel

# -----------------------------------------------------------------------------
# Витрина
# -----------------------------------------------------------------------------


class ProductOut(CamelModel):
    """Карточка товара."""

    id: int
    name: str
    price: str = Field(..., description="Цена, строка с 2 знаками")
    category: Optional[str] = None
    sub_category: str
    description: Optional[str] = None
    is_active: bool
    sort_order: int = 0
    stock: Optional[int] = Field(None, description="Сколько непроданных ключей осталось")


# -----------------------------------------------------------------------------
# Админские формы
# -----------------------------------------------------------------------------


class ProductCreateIn(CamelModel):
    name: str = Field(..., min_length=1, max_length=128)
    price: Decimal = Field(..., gt=Decimal(0), lt=MONEY_LIMIT)
    sub_category: str = Field(..., min_length=1, max_length=64)
    category: Optional[str] = Field(None, max_length=64)
    description: Optional[str] = None
    is_active: bool = True
    sort_order: int = 0


class ProductUpdateIn(CamelModel):
    """Частичное обновление: отсутствующее поле не меняется."""

    name: Optional[str] = Field(None, min_length=1, max_length=128)
    price: Optional[Decimal] = Field(None, gt=Decimal(0), lt=MONEY_LIMIT)
    sub_category: Optional[str] = Field(None, min_length=1, max_length=64)
    category: Optional[str] = Field(None, max_length=64)
    description: Optional[str] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


class KeysImportIn(CamelModel):
    """Либо список keys, либо текст text (по ключу на строку)."""

    keys: Optional[List[str]] = None
    text: Optional[str] = None

    @model_validator(mode="after")
    def _one_source(self) -> "KeysImportIn":
        if self.keys is None and self.text is None:
            raise ValueError("keys or text is required")
        return self

    def lines(self) -> List[str]:
        out: List[str] = list(self.keys or [])
        if self.text:
            out.extend(self.text.splitlines())
        return out


class KeysCountOut(CamelModel):
    product_id: int
    count: int


class KeyUpdateIn(CamelModel):
    key_value: str = Field(..., min_length=1)


__all__ = [
    "ProductOut",
    "ProductCreateIn",
    "ProductUpdateIn",
    "KeysImportIn",
    "KeysCountOut",
    "KeyUpdateIn",
]
