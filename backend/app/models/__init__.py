# -*- coding: utf-8 -*-
# backend/app/models/__init__.py
# =============================================================================
# Назначение кода:
# Единая точка входа слоя моделей Keyshop. Импортирует все модели, чтобы
# Base.metadata знала полный набор таблиц (alembic env.py, тесты), и ведёт
# реестр MODEL_REGISTRY с диагностикой полноты (models_health).
#
# Канон/инварианты:
#  • Модели описывают структуру данных, НЕ содержат бизнес-логики и денег.
#  • Денежные операции выполняются ТОЛЬКО в services/transactions_service.py.
#
# Запреты:
#  • Не размещать здесь DDL/DML и create_all().
# =============================================================================

from __future__ import annotations

from typing import Dict, List, Type

from ..core.database_core import Base
from .order_models import Order
from .shop_models import Product, ProductKey
from .transactions_models import GatewayTrade, TradeStatus, Transaction, TxKind
from .user_models import User

MODEL_REGISTRY: Dict[str, Type[Base]] = {
    cls.__name__: cls for cls in (User, Product, ProductKey, Order, Transaction, GatewayTrade)
}

# Таблицы, без которых ядро продаж и платежей не работает.
REQUIRED_TABLES: List[str] = [
    "users",
    "products",
    "product_keys",
    "orders",
    "transactions",
    "gateway_trades",
]


def get_model(name: str) -> Type[Base]:
    """Класс модели по имени (KeyError для неизвестного имени)."""
    return MODEL_REGISTRY[name]


def models_health() -> Dict[str, object]:
    """Отчёт о полноте метаданных: какие обязательные таблицы зарегистрированы."""
    tables = set(Base.metadata.tables)
    missing = [t for t in REQUIRED_TABLES if t not in tables]
    return {"ok": not missing, "missing": missing, "tables": sorted(tables)}


__all__ = [
    "Base",
    "User",
    "Product",
    "ProductKey",
    "Order",
    "Transaction",
    "TxKind",
    "GatewayTrade",
    "TradeStatus",
    "MODEL_REGISTRY",
    "get_model",
    "models_health",
]
