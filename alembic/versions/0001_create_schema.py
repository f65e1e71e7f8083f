"""Base schema for the inventory ledger, recipes and Square webhook state."""

from __future__ import annotations

from alembic import op

from grill_backoffice.core.database import Base
import grill_backoffice.models  # noqa: F401

revision = "0001_create_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    Base.metadata.create_all(bind=op.get_bind())


def downgrade() -> None:
    Base.metadata.drop_all(bind=op.get_bind())
