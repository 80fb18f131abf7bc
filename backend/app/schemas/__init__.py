# -*- coding: utf-8 -*-
# backend/app/schemas/__init__.py
# =============================================================================
# Назначение кода:
# Централизованный «фасад» для Pydantic-схем Keyshop. Даёт единый импорт:
#     from backend.app.schemas import PurchaseIn, TradeStatusOut, ...
# Подхватывает публичные символы из модулей-схем по их __all__.
#
# Канон / инварианты:
# • Здесь НЕТ бизнес-логики - только агрегация схем.
# • При конфликте имён между модулями - предупреждение в лог, уже
#   экспортированное имя НЕ перезаписывается.
# • Отсутствующий модуль схем - ошибка импорта (сборка неполная).
# =============================================================================

from __future__ import annotations

from importlib import import_module
from typing import Dict, List, Tuple

from backend.app.core.logging_core import get_logger

_logger = get_logger(__name__)

SCHEMAS_VERSION: str = "v1.0"

# Порядок важен: чем раньше модуль - тем выше приоритет его имён при конфликте.
_SCHEMA_MODULES_ORDERED: List[str] = [
    "backend.app.schemas.common_schemas",
    "backend.app.schemas.user_schemas",
    "backend.app.schemas.shop_schemas",
    "backend.app.schemas.orders_schemas",
    "backend.app.schemas.transactions_schemas",
    "backend.app.schemas.payments_schemas",
]

# name -> (module_name, object_ref)
_export_registry: Dict[str, Tuple[str, object]] = {}

__all__: List[str] = []


def _safe_register(name: str, module_name: str, value: object) -> None:
    if name in _export_registry:
        prev_module, _ = _export_registry[name]
        _logger.warning(
            "Schema name conflict: %s (from %s) already exported; duplicate from %s skipped",
            name, prev_module, module_name,
        )
        return
    globals()[name] = value
    _export_registry[name] = (module_name, value)
    __all__.append(name)


for _mod_path in _SCHEMA_MODULES_ORDERED:
    _mod = import_module(_mod_path)
    for _public_name in getattr(_mod, "__all__", ()):
        _safe_register(_public_name, _mod_path, getattr(_mod, _public_name))

__all__ = sorted(set(__all__))


def get_public_exports() -> Dict[str, object]:
    """Сводка экспортов фасада: версия, число модулей/символов, имена по модулям."""
    by_module: Dict[str, List[str]] = {}
    for name, (mod, _obj) in _export_registry.items():
        by_module.setdefault(mod, []).append(name)
    for names in by_module.values():
        names.sort()
    return {
        "version": SCHEMAS_VERSION,
        "modules": len(_SCHEMA_MODULES_ORDERED),
        "symbols": len(__all__),
        "by_module": {k: v for k, v in sorted(by_module.items())},
    }


# =============================================================================
# Пояснения «для чайника»:
# • Зачем этот файл?
#   Чтобы роутам не импортировать каждый модуль схем отдельно, а получать
#   схемы из одного места: `from backend.app.schemas import <SchemaName>`.
# • Что будет при одинаковых именах в разных модулях?
#   Побеждает модуль, стоящий выше в _SCHEMA_MODULES_ORDERED; повтор
#   пропускается с предупреждением.
# =============================================================================
