# -*- coding: utf-8 -*-
# backend/app/core/__init__.py
# =============================================================================
# Назначение кода:
# Единая точка входа ядра Keyshop: стартовая диагностика настроек и экспорт
# ключевых утилит ядра во внешние модули (сервисы, роуты, планировщик).
#
# Канон/инварианты:
# • Источник истины для настроек: переданный Settings (или get_settings()).
# • Денежные операции здесь НЕ выполняются (только конфиг/проверки/экспорты).
#
# Запреты:
# • Не импортируем тяжёлые слои (CRUD/Services) и не создаём соединений с БД.
# =============================================================================

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .config_core import Settings, get_settings
from .logging_core import get_logger

# Версия ядра (повышать при несовместимых изменениях ядра)
CORE_VERSION = "1.0.0"

logger = get_logger(__name__)

__all__ = [
    "CORE_VERSION",
    "get_settings",
    "boot_core",
    "core_health",
]


def core_health(settings: Optional[Settings] = None) -> Dict[str, Any]:
    """
    Быстрые sanity-checks настроек. Никаких падений: только отчёт
    { ok, errors, snapshot } для логов и /health.
    """
    settings = settings or get_settings()
    errors = settings.assert_required_secrets()
    return {"ok": not errors, "errors": errors, "snapshot": settings.debug_dump()}


def boot_core(settings: Optional[Settings] = None) -> Dict[str, Any]:
    """Стартовая сводка ядра; предупреждения пишет в лог, процесс не роняет."""
    settings = settings or get_settings()
    health = core_health(settings)
    logger.info(
        "Keyshop core boot: version=%s env=%s",
        CORE_VERSION,
        settings.env_normalized,
    )
    for warning in health["errors"]:
        logger.warning("Config warning: %s", warning)
    return {
        "timestamp_utc": datetime.now(timezone.utc).isoformat(),
        "core_version": CORE_VERSION,
        "health": health,
    }
