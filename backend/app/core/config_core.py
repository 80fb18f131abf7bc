# -*- coding: utf-8 -*-
# backend/app/core/config_core.py
# =============================================================================
# Назначение:
#   • Единый конфигурационный модуль Keyshop (FastAPI + SQLAlchemy async).
#   • Канонический источник настроек: БД, платёжный шлюз Epusdt, админы,
#     логирование, фоновые задачи.
#
# Канон / инварианты:
#   1) Секреты (EPUSDT_TOKEN, DATABASE_URL) берём только из ENV, в код не шьём.
#   2) Единственная конвертация валют: EPUSDT_FORCED_RATE (по умолчанию 1:1).
#   3) Таймаут запроса к шлюзу ограничен (по умолчанию 10 секунд).
#   4) Настройки не создают глобальных соединений: модуль только читает ENV.
#      Хэндл БД строится явно (см. core/database_core.py).
#
# Запреты:
#   • Никаких сетевых вызовов при загрузке настроек.
#   • Никаких секретов в debug_dump()/gateway_env_status().
# =============================================================================

from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Set

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# Вспомогательные утилиты (локальные, без сетевых вызовов)
# =============================================================================


def _parse_csv(value: object) -> List[str]:
    """Преобразует CSV-строку 'a,b,c' в ['a', 'b', 'c'] (пробелы обрезаются)."""
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return [str(x).strip() for x in value if str(x).strip()]
    s = str(value).strip()
    if not s:
        return []
    return [item.strip() for item in s.split(",") if item.strip()]


def _unique(items: Iterable[str]) -> List[str]:
    """Возвращает элементы без повторов, сохраняя порядок первого появления."""
    out: List[str] = []
    for item in items:
        if item not in out:
            out.append(item)
    return out


# =============================================================================
# Док-описания полей (используются в Swagger и как подсказки «для чайника»)
# =============================================================================


class _Doc:
    # Приложение
    PROJECT_NAME = "Имя проекта (отображается в Swagger/health)."
    ENV = "Окружение: production/dev/local/test (нормализуется в prod/dev/local/test)."
    DEBUG = "Расширенные логи и трассировки (только для dev/local)."
    APP_VERSION = "Версия приложения (попадает в /health)."
    APP_HOST = "Адрес для uvicorn (обычно 0.0.0.0)."
    APP_PORT = "Порт для uvicorn (например, 8000)."
    API_PREFIX = "Префикс REST API, например /api."
    BASE_URL = "Публичный адрес приложения (для notify/redirect и локальной страницы заказа)."

    # БД
    DATABASE_URL = (
        "DSN базы. postgres:// и postgresql:// приводятся к postgresql+asyncpg://; "
        "для тестов допустим sqlite+aiosqlite:///path.db."
    )
    DB_POOL_SIZE = "Размер пула соединений SQLAlchemy."
    DB_MAX_OVERFLOW = "Дополнительные соединения в пике."
    DB_ECHO = "Эхо SQL-запросов в лог (только отладка)."
    DB_LOCK_TIMEOUT_SEC = "Сколько ждать блокировку строки/базы до StorageConflict (сек)."
    DB_CONFLICT_RETRIES = "Сколько раз повторять единицу работы при StorageConflict."
    DB_CHECK_SCHEMA_ON_STARTUP = "Сверять версию схемы (alembic) при старте."

    # Epusdt
    EPUSDT_BASE_URL = "Базовый URL шлюза Epusdt."
    EPUSDT_TOKEN = "Общий секрет подписи Epusdt (MD5)."
    EPUSDT_NOTIFY_URL = "Явный URL вебхука (иначе BASE_URL + /api/payments/epusdt/webhook)."
    EPUSDT_REDIRECT_URL = "Явный URL возврата (иначе BASE_URL + /payments/order)."
    EPUSDT_FORCED_RATE = "Принудительный курс USDT → валюта шлюза (по умолчанию 1)."
    EPUSDT_CHECKOUT_PORT = "Порт кассы шлюза, если в EPUSDT_BASE_URL порт не указан."
    EPUSDT_TIMEOUT_SEC = "Таймаут запроса к шлюзу (сек)."

    # Админы / фоновые задачи / веб
    ADMIN_TELEGRAM_IDS = "Telegram-ID администраторов (CSV)."
    TRADE_EXPIRY_SWEEP_INTERVAL_SEC = "Интервал фоновой проверки просроченных трейдов (сек)."
    CORS_ORIGINS = "Список разрешённых Origin (CSV)."

    # Logging
    LOG_LEVEL = "Уровень логирования (INFO/DEBUG/WARNING/ERROR)."
    LOG_JSON = "Лог в JSON (true/false). По умолчанию JSON только в prod."


# =============================================================================
# Настройки приложения (единственный источник истины)
# =============================================================================


class Settings(BaseSettings):
    """
    Контейнер переменных окружения Keyshop.

    Важное:
      • Секреты берём только из ENV.
      • Тесты создают Settings(...) напрямую и передают его в create_app().
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # --------------------------- БАЗОВЫЕ НАСТРОЙКИ ---------------------------
    PROJECT_NAME: str = Field("Keyshop", description=_Doc.PROJECT_NAME)
    ENV: str = Field("production", description=_Doc.ENV)
    DEBUG: bool = Field(False, description=_Doc.DEBUG)
    APP_VERSION: str = Field("1.0.0", description=_Doc.APP_VERSION)
    APP_HOST: str = Field("0.0.0.0", description=_Doc.APP_HOST)
    APP_PORT: int = Field(8000, description=_Doc.APP_PORT)
    API_PREFIX: str = Field("/api", description=_Doc.API_PREFIX)
    BASE_URL: str = Field("", description=_Doc.BASE_URL)

    # --------------------------------- БАЗА ----------------------------------
    DATABASE_URL: Optional[str] = Field(None, description=_Doc.DATABASE_URL)
    DB_POOL_SIZE: int = Field(10, description=_Doc.DB_POOL_SIZE)
    DB_MAX_OVERFLOW: int = Field(10, description=_Doc.DB_MAX_OVERFLOW)
    DB_ECHO: bool = Field(False, description=_Doc.DB_ECHO)
    DB_LOCK_TIMEOUT_SEC: int = Field(30, description=_Doc.DB_LOCK_TIMEOUT_SEC)
    DB_CONFLICT_RETRIES: int = Field(3, description=_Doc.DB_CONFLICT_RETRIES)
    DB_CHECK_SCHEMA_ON_STARTUP: bool = Field(
        True,
        description=_Doc.DB_CHECK_SCHEMA_ON_STARTUP,
    )

    # -------------------------------- EPUSDT ---------------------------------
    EPUSDT_BASE_URL: str = Field(
        "http://154.201.76.200:8000",
        description=_Doc.EPUSDT_BASE_URL,
    )
    EPUSDT_TOKEN: str = Field("", description=_Doc.EPUSDT_TOKEN)
    EPUSDT_NOTIFY_URL: Optional[str] = Field(None, description=_Doc.EPUSDT_NOTIFY_URL)
    EPUSDT_REDIRECT_URL: Optional[str] = Field(
        None,
        description=_Doc.EPUSDT_REDIRECT_URL,
    )
    EPUSDT_FORCED_RATE: Decimal = Field(
        Decimal("1"),
        description=_Doc.EPUSDT_FORCED_RATE,
    )
    EPUSDT_CHECKOUT_PORT: int = Field(8001, description=_Doc.EPUSDT_CHECKOUT_PORT)
    EPUSDT_TIMEOUT_SEC: float = Field(10.0, description=_Doc.EPUSDT_TIMEOUT_SEC)

    # ------------------------- АДМИНЫ / ФОН / ВЕБ ----------------------------
    ADMIN_TELEGRAM_IDS: str = Field("", description=_Doc.ADMIN_TELEGRAM_IDS)
    TRADE_EXPIRY_SWEEP_INTERVAL_SEC: int = Field(
        300,
        description=_Doc.TRADE_EXPIRY_SWEEP_INTERVAL_SEC,
    )
    CORS_ORIGINS: str = Field("", description=_Doc.CORS_ORIGINS)

    # --------------------------------- LOGGING -------------------------------
    LOG_LEVEL: str = Field("INFO", description=_Doc.LOG_LEVEL)
    LOG_JSON: Optional[bool] = Field(None, description=_Doc.LOG_JSON)

    # =============================== ВАЛИДАТОРЫ ==============================

    @field_validator("EPUSDT_FORCED_RATE", mode="before")
    @classmethod
    def _v_forced_rate(cls, value: object) -> Decimal:
        """Пустое значение в ENV означает курс 1; курс ≤ 0 запрещён."""
        if value is None or str(value).strip() == "":
            return Decimal("1")
        rate = Decimal(str(value).strip())
        if rate <= 0:
            raise ValueError("EPUSDT_FORCED_RATE должен быть > 0")
        return rate

    @field_validator("EPUSDT_TIMEOUT_SEC")
    @classmethod
    def _v_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("EPUSDT_TIMEOUT_SEC должен быть > 0")
        return value

    @field_validator("BASE_URL", "EPUSDT_BASE_URL")
    @classmethod
    def _v_strip_slash(cls, value: str) -> str:
        return (value or "").strip().rstrip("/")

    @field_validator("LOG_LEVEL")
    @classmethod
    def _v_log_level(cls, value: str) -> str:
        return (value or "INFO").strip().upper()

    # =========================== Удобные свойства/методы =====================

    # ---- ENV флаги ----
    @property
    def env_normalized(self) -> str:
        """Нормализует ENV к одному из: prod/dev/local/test."""
        value = (self.ENV or "").strip().lower()
        if value.startswith("prod"):
            return "prod"
        if value.startswith("dev"):
            return "dev"
        if value.startswith("loc"):
            return "local"
        if value.startswith("test"):
            return "test"
        return "prod"

    @property
    def is_prod(self) -> bool:
        return self.env_normalized == "prod"

    @property
    def log_as_json(self) -> bool:
        if self.LOG_JSON is not None:
            return bool(self.LOG_JSON)
        return self.is_prod

    # ---- База данных / DSN ----
    def database_url_async(self) -> str:
        """
        Возвращает DSN для SQLAlchemy async:
          postgres://   → postgresql+asyncpg://
          postgresql:// → postgresql+asyncpg:// при отсутствии '+asyncpg'.
        Остальные схемы (например, sqlite+aiosqlite) отдаются как есть.
        """
        if not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL не задан (нужен DSN Postgres).")
        url = self.DATABASE_URL.strip()
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgresql://") and "asyncpg" not in url:
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url

    # ---- Epusdt ----
    @property
    def epusdt_notify_url(self) -> str:
        if self.EPUSDT_NOTIFY_URL:
            return self.EPUSDT_NOTIFY_URL
        return f"{self.BASE_URL}/api/payments/epusdt/webhook" if self.BASE_URL else ""

    @property
    def epusdt_redirect_url(self) -> str:
        if self.EPUSDT_REDIRECT_URL:
            return self.EPUSDT_REDIRECT_URL
        return f"{self.BASE_URL}/payments/order" if self.BASE_URL else ""

    def gateway_env_status(self) -> Dict[str, bool]:
        """Какие переменные шлюза заданы (без значений секретов)."""
        return {
            "EPUSDT_BASE_URL": bool(self.EPUSDT_BASE_URL),
            "EPUSDT_TOKEN": bool(self.EPUSDT_TOKEN),
            "EPUSDT_NOTIFY_URL": bool(self.epusdt_notify_url),
            "EPUSDT_REDIRECT_URL": bool(self.epusdt_redirect_url),
            "BASE_URL": bool(self.BASE_URL),
        }

    # ---- Админы / CORS ----
    @property
    def admin_ids(self) -> Set[str]:
        return set(_parse_csv(self.ADMIN_TELEGRAM_IDS))

    def effective_cors_origins(self) -> List[str]:
        return _unique(_parse_csv(self.CORS_ORIGINS))

    # ---- Health/диагностика ----
    def assert_required_secrets(self) -> List[str]:
        """Мягкая самодиагностика: возвращает список предупреждений, не падает."""
        warnings: List[str] = []
        if not self.DATABASE_URL:
            warnings.append("DATABASE_URL is not set; storage is unavailable")
        if not self.EPUSDT_TOKEN:
            warnings.append("EPUSDT_TOKEN is not set; gateway trades cannot be signed")
        if not self.BASE_URL and not self.EPUSDT_NOTIFY_URL:
            warnings.append("BASE_URL is not set; gateway has no notify_url")
        return warnings

    def debug_dump(self) -> Dict[str, str]:
        """Безопасный дамп ключевых настроек (без секретов) для /health и логов."""
        return {
            "env": self.env_normalized,
            "projectName": self.PROJECT_NAME,
            "version": self.APP_VERSION,
            "apiPrefix": self.API_PREFIX,
            "dbUrlSet": "yes" if bool(self.DATABASE_URL) else "no",
            "epusdtBaseUrl": self.EPUSDT_BASE_URL,
            "epusdtTokenSet": "yes" if bool(self.EPUSDT_TOKEN) else "no",
            "forcedRate": str(self.EPUSDT_FORCED_RATE),
            "adminCount": str(len(self.admin_ids)),
        }


# =============================================================================
# Кэш настроек процесса
# =============================================================================


@lru_cache()
def get_settings() -> Settings:
    """Создаёт и кэширует объект Settings из окружения."""
    return Settings()


__all__ = ["Settings", "get_settings"]
