"""Keyshop CRUD facade.

======================================================================
Назначение модуля:
    • Экспортировать CRUD-классы для таблиц users, products, product_keys,
      orders, transactions, gateway_trades.
    • Не содержит бизнес-логики: деньги двигает только леджер
      (services/transactions_service), ключи резервирует inventory_service.

Запреты:
    • Не добавлять здесь бизнес-логику и побочные эффекты при импорте.
======================================================================
"""

from backend.app.crud.order_crud import OrderCRUD
from backend.app.crud.shop_crud import ProductCRUD, ProductKeyCRUD
from backend.app.crud.transactions_crud import GatewayTradeCRUD, TransactionCRUD
from backend.app.crud.user_crud import UserCRUD

__all__ = [
    "GatewayTradeCRUD",
    "OrderCRUD",
    "ProductCRUD",
    "ProductKeyCRUD",
    "TransactionCRUD",
    "UserCRUD",
]
