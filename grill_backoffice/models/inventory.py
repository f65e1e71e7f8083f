from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from grill_backoffice.core.database import Base

ITEM_TYPES = {"INGREDIENT", "UTENSIL", "OTHER"}

REASON_SALE = "SALE"
REASON_REFUND = "REFUND"
REASON_MANUAL = "MANUAL"
REASON_PHYSICAL_COUNT = "PHYSICAL_COUNT"
REASON_RECON = "RECON"
LEDGER_REASONS = {REASON_SALE, REASON_REFUND, REASON_MANUAL, REASON_PHYSICAL_COUNT, REASON_RECON}
MANUAL_REASONS = {REASON_MANUAL, REASON_PHYSICAL_COUNT}

MAX_DECIMALS = 3


class InventoryItem(Base):
    __tablename__ = "inventory_item"

    id = Column(Integer, primary_key=True)
    name = Column(String(120), nullable=False)
    type = Column(String(16), nullable=False, default="INGREDIENT")
    uom = Column(String(32), nullable=False)
    decimals = Column(Integer, nullable=False, default=0)
    low_stock_threshold = Column(Numeric(14, 3), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    balance = relationship("InventoryBalance", uselist=False, back_populates="item")


class InventoryBalance(Base):
    __tablename__ = "inventory_balance"

    item_id = Column(Integer, ForeignKey("inventory_item.id"), primary_key=True)
    on_hand = Column(Numeric(14, 3), nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    item = relationship("InventoryItem", back_populates="balance")


class StockLedgerEntry(Base):
    __tablename__ = "stock_ledger"
    __table_args__ = (
        UniqueConstraint("square_event_id", "item_id", "reason", name="uq_stock_ledger_event_item_reason"),
        Index("ix_stock_ledger_order_reason", "square_order_id", "reason"),
    )

    id = Column(Integer, primary_key=True)
    item_id = Column(Integer, ForeignKey("inventory_item.id"), index=True, nullable=False)
    delta = Column(Numeric(14, 3), nullable=False)
    reason = Column(String(16), nullable=False)
    square_event_id = Column(String(64), nullable=True)
    square_payment_id = Column(String(64), nullable=True)
    square_refund_id = Column(String(64), nullable=True)
    square_order_id = Column(String(64), nullable=True)
    occurred_at = Column(DateTime(timezone=True), index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    note = Column(String(255), nullable=True)

    item = relationship("InventoryItem")


class RecipeComponent(Base):
    __tablename__ = "recipe_component"
    __table_args__ = (
        UniqueConstraint(
            "variation_id",
            "inventory_item_id",
            "modifier_catalog_object_id",
            name="uq_recipe_component_variation_item_modifier",
        ),
    )

    id = Column(Integer, primary_key=True)
    variation_id = Column(String(64), index=True, nullable=False)
    inventory_item_id = Column(Integer, ForeignKey("inventory_item.id"), index=True, nullable=False)
    qty_per_sale = Column(Numeric(14, 3), nullable=False)
    # Empty string marks the base component of a variation.
    modifier_catalog_object_id = Column(String(64), nullable=False, default="")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    inventory_item = relationship("InventoryItem")
