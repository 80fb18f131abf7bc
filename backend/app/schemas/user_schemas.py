"""User schemas: first-contact registration and the public profile."""

from __future__ import annotations

from typing import Optional

from pydantic import Field

from backend.app.schemas.common_schemas import CamelModel


class UserCreateIn(CamelModel):
    """Первый контакт бота с пользователем."""

    telegram_id: str = Field(..., min_length=1, max_length=64)
    username: Optional[str] = Field(None, max_length=128)


class UserOut(CamelModel):
    id: int
    telegram_id: str
    username: Optional[str] = None
    balance: str
    api_token: Optional[str] = None


__all__ = ["UserCreateIn", "UserOut"]
