# -*- coding: utf-8 -*-
# backend/app/schemas/common_schemas.py
# =============================================================================
# Назначение кода:
# Базовые Pydantic-схемы Keyshop для всех API: camelCase-контракт,
# конверт ответа {ok, data}, форма ошибки, нормализация денежных строк.
#
# Канон / инварианты:
# • Снаружи поля в camelCase (бот/админка), внутри snake_case.
# • Деньги наружу - строкой: цены 2 знака, баланс/леджер до 6 знаков.
# • Ошибка всегда {ok: false, error, message, details?} (см. errors_core).
#
# Запреты:
# • Нет бизнес-логики и пересчётов - только декларативные DTO/валидаторы.
# =============================================================================

from __future__ import annotations

from typing import Any, Dict, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class CamelModel(BaseModel):
    """База DTO: camelCase-алиасы, приём и по имени поля, и по алиасу."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class OkResponse(BaseModel, Generic[T]):
    """Успешный ответ: {ok: true, data: ...}."""

    ok: bool = Field(True, description="Флаг успешной операции")
    data: T


class ErrorResponse(BaseModel):
    """Стандартная форма ошибки для бота/админки/шлюза."""

    ok: bool = Field(False)
    error: str = Field(..., description="Короткий код ошибки (snake-case)")
    message: Optional[str] = Field(None, description="Человеко-читаемое описание")
    details: Optional[Dict[str, Any]] = None


__all__ = ["CamelModel", "OkResponse", "ErrorResponse"]
