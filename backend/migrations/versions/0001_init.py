# -*- coding: utf-8 -*-
"""Initial migration for Keyshop.

Назначение:
    • Создать шесть таблиц ядра: users, products, product_keys, orders,
      transactions, gateway_trades, с ограничениями и индексами.

Канон/инварианты:
    • Имена ограничений совпадают с NAMING_CONVENTION из database_core,
      чтобы autogenerate не видел расхождений с моделями.
    • Денежные колонки: цены/суммы заказов Numeric(18,2), баланс и леджер
      Numeric(20,6).
    • FK везде RESTRICT: пользователи, проданные ключи и заказы не удаляются
      каскадом.

Запреты:
    • Нет данных/DML - только DDL.
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels = None
depends_on = None

_JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamps(with_updated: bool = True) -> list:
    cols = [sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)]
    if with_updated:
        cols.append(sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False))
    return cols


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("telegram_id", sa.String(length=64), nullable=False),
        sa.Column("username", sa.String(length=128), nullable=True),
        sa.Column("balance", sa.Numeric(20, 6), server_default="0", nullable=False),
        sa.Column("api_token", sa.String(length=64), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_users")),
        sa.UniqueConstraint("telegram_id", name=op.f("uq_users_telegram_id")),
        sa.UniqueConstraint("api_token", name=op.f("uq_users_api_token")),
    )

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("price", sa.Numeric(18, 2), nullable=False),
        sa.Column("category", sa.String(length=64), nullable=True),
        sa.Column("sub_category", sa.String(length=64), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("sort_order", sa.Integer(), server_default="0", nullable=False),
        *_timestamps(),
        sa.CheckConstraint("price > 0", name=op.f("ck_products_price_positive")),
        sa.CheckConstraint("length(sub_category) > 0", name=op.f("ck_products_sub_category_not_empty")),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_products")),
        sa.UniqueConstraint("name", name=op.f("uq_products_name")),
    )

    op.create_table(
        "product_keys",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("key_value", sa.Text(), nullable=False),
        sa.Column("is_sold", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("sold_to_user_id", sa.Integer(), nullable=True),
        sa.Column("sold_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(with_updated=False),
        sa.ForeignKeyConstraint(
            ["product_id"], ["products.id"],
            name=op.f("fk_product_keys_product_id_products"), ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["sold_to_user_id"], ["users.id"],
            name=op.f("fk_product_keys_sold_to_user_id_users"), ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_product_keys")),
    )
    op.create_index(
        "ix_product_keys_product_sold_id", "product_keys", ["product_id", "is_sold", "id"], unique=False
    )

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("product_key_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        *_timestamps(with_updated=False),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], name=op.f("fk_orders_user_id_users"), ondelete="RESTRICT"
        ),
        sa.ForeignKeyConstraint(
            ["product_id"], ["products.id"], name=op.f("fk_orders_product_id_products"), ondelete="RESTRICT"
        ),
        sa.ForeignKeyConstraint(
            ["product_key_id"], ["product_keys.id"],
            name=op.f("fk_orders_product_key_id_product_keys"), ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_orders")),
        sa.UniqueConstraint("product_key_id", name=op.f("uq_orders_product_key_id")),
    )
    op.create_index("ix_orders_user_id_id", "orders", ["user_id", "id"], unique=False)

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("amount", sa.Numeric(20, 6), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        *_timestamps(with_updated=False),
        sa.CheckConstraint(
            "kind IN ('recharge', 'purchase', 'admin_adjustment', 'gateway_deposit')",
            name=op.f("ck_transactions_kind_known"),
        ),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], name=op.f("fk_transactions_user_id_users"), ondelete="RESTRICT"
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_transactions")),
    )
    op.create_index("ix_transactions_user_id_id", "transactions", ["user_id", "id"], unique=False)

    op.create_table(
        "gateway_trades",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("order_id", sa.String(length=64), nullable=False),
        sa.Column("trade_id", sa.String(length=128), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), server_default="pending", nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("actual_amount", sa.Numeric(20, 6), nullable=True),
        sa.Column("token", sa.String(length=256), nullable=True),
        sa.Column("payment_url", sa.Text(), nullable=True),
        sa.Column("expiration_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("block_transaction_id", sa.String(length=256), nullable=True),
        sa.Column("raw_request", _JSON, nullable=True),
        sa.Column("raw_response", _JSON, nullable=True),
        sa.Column("raw_callback", _JSON, nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('pending', 'paid', 'expired', 'failed')",
            name=op.f("ck_gateway_trades_status_known"),
        ),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], name=op.f("fk_gateway_trades_user_id_users"), ondelete="RESTRICT"
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_gateway_trades")),
        sa.UniqueConstraint("order_id", name=op.f("uq_gateway_trades_order_id")),
    )
    op.create_index("ix_gateway_trades_trade_id", "gateway_trades", ["trade_id"], unique=False)
    op.create_index(
        "ix_gateway_trades_status_expiration", "gateway_trades", ["status", "expiration_time"], unique=False
    )


def downgrade() -> None:
    op.drop_index("ix_gateway_trades_status_expiration", table_name="gateway_trades")
    op.drop_index("ix_gateway_trades_trade_id", table_name="gateway_trades")
    op.drop_table("gateway_trades")
    op.drop_index("ix_transactions_user_id_id", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_orders_user_id_id", table_name="orders")
    op.drop_table("orders")
    op.drop_index("ix_product_keys_product_sold_id", table_name="product_keys")
    op.drop_table("product_keys")
    op.drop_table("products")
    op.drop_table("users")


# ============================================================================
# Пояснения «для чайника»:
#   • Применение: alembic upgrade head (DATABASE_URL берётся из окружения).
#   • Ревизия "0001" - та, что сверяет сервис при старте
#     (DB_CHECK_SCHEMA_ON_STARTUP).
# ============================================================================
