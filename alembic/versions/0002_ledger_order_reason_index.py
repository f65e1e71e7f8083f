from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0002_ledger_order_index"
down_revision = "0001_create_schema"
branch_labels = None
depends_on = None

INDEX_NAME = "ix_stock_ledger_order_reason"


def _index_names(table_name: str) -> set[str]:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    return {index["name"] for index in inspector.get_indexes(table_name)}


def upgrade() -> None:
    if INDEX_NAME not in _index_names("stock_ledger"):
        op.create_index(INDEX_NAME, "stock_ledger", ["square_order_id", "reason"])


def downgrade() -> None:
    if INDEX_NAME in _index_names("stock_ledger"):
        op.drop_index(INDEX_NAME, table_name="stock_ledger")
