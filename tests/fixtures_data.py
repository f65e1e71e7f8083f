"""Reusable data and fakes for the backend test scenarios."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from grill_backoffice.core.database import Base
import grill_backoffice.models  # noqa: F401
from grill_backoffice.models.inventory import StockLedgerEntry
from grill_backoffice.services.inventory import create_inventory_item
from grill_backoffice.services.recipes import upsert_recipe_component
from grill_backoffice.square.base import (
    CatalogVariationInfo,
    OrderLineItem,
    SquareNotFoundError,
    SquareOrder,
    SquarePayment,
    SquareRefund,
)

CLOSED_AT = datetime(2024, 5, 1, 18, 30, tzinfo=timezone.utc)
WINDOW_START = datetime(2024, 5, 1, 0, 0, tzinfo=timezone.utc)
WINDOW_END = datetime(2024, 5, 1, 23, 59, 59, 999000, tzinfo=timezone.utc)


def build_session_factory():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def build_file_session_factory(path):
    engine = create_engine(f"sqlite:///{path}", connect_args={"check_same_thread": False, "timeout": 30})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def seed_item(session_factory, name: str, *, decimals: int = 3, on_hand=None, uom: str = "kg") -> int:
    db = session_factory()
    try:
        item = create_inventory_item(
            db,
            name=name,
            item_type="INGREDIENT",
            uom=uom,
            decimals=decimals,
            initial_on_hand=on_hand,
        )
        return item.id
    finally:
        db.close()


def seed_recipe(session_factory, variation_id: str, item_id: int, qty, modifier_id: str | None = None) -> None:
    db = session_factory()
    try:
        upsert_recipe_component(
            db,
            variation_id=variation_id,
            inventory_item_id=item_id,
            qty_per_sale=Decimal(str(qty)),
            modifier_id=modifier_id,
        )
        db.commit()
    finally:
        db.close()


def ledger_rows(session_factory, **filters) -> list[StockLedgerEntry]:
    db = session_factory()
    try:
        query = db.query(StockLedgerEntry)
        for name, value in filters.items():
            query = query.filter(getattr(StockLedgerEntry, name) == value)
        return query.order_by(StockLedgerEntry.id.asc()).all()
    finally:
        db.close()


def line(variation_id: str | None, quantity, *modifier_ids: str) -> OrderLineItem:
    return OrderLineItem(
        variation_id=variation_id,
        quantity=Decimal(str(quantity)),
        modifier_ids=tuple(modifier_ids),
        name=f"Line {variation_id}",
    )


def make_order(order_id: str, *lines: OrderLineItem, closed_at: datetime | None = CLOSED_AT) -> SquareOrder:
    return SquareOrder(
        id=order_id,
        state="COMPLETED",
        line_items=tuple(lines),
        closed_at=closed_at,
        updated_at=closed_at,
    )


def make_payment(payment_id: str = "PAY1", order_id: str = "O1", status: str = "COMPLETED") -> SquarePayment:
    return SquarePayment(
        id=payment_id,
        status=status,
        order_id=order_id,
        created_at=CLOSED_AT,
        updated_at=CLOSED_AT,
    )


class FakeOrderSource:
    """In-memory stand-in for the Square API."""

    def __init__(self, orders=(), payments=(), refunds=(), catalog=()):
        self.orders = {order.id: order for order in orders}
        self.payments = {payment.id: payment for payment in payments}
        self.refunds = {refund.id: refund for refund in refunds}
        self.catalog = list(catalog)
        self.search_error: Exception | None = None
        self.calls: list[tuple[str, str]] = []

    def get_order(self, order_id: str) -> SquareOrder:
        self.calls.append(("get_order", order_id))
        try:
            return self.orders[order_id]
        except KeyError:
            raise SquareNotFoundError(f"Order {order_id} not found", status_code=404) from None

    def get_payment(self, payment_id: str) -> SquarePayment:
        self.calls.append(("get_payment", payment_id))
        try:
            return self.payments[payment_id]
        except KeyError:
            raise SquareNotFoundError(f"Payment {payment_id} not found", status_code=404) from None

    def get_refund(self, refund_id: str) -> SquareRefund:
        self.calls.append(("get_refund", refund_id))
        try:
            return self.refunds[refund_id]
        except KeyError:
            raise SquareNotFoundError(f"Refund {refund_id} not found", status_code=404) from None

    def search_orders(self, start_at: datetime, end_at: datetime):
        if self.search_error is not None:
            raise self.search_error
        return [
            order
            for order in self.orders.values()
            if order.closed_at is not None and start_at <= order.closed_at <= end_at
        ]

    def list_catalog_variations(self) -> list[CatalogVariationInfo]:
        return list(self.catalog)


def payment_event(
    event_id: str,
    *,
    payment_id: str = "PAY1",
    order_id: str = "O1",
    status: str = "COMPLETED",
) -> dict:
    return {
        "merchant_id": "M1",
        "type": "payment.updated",
        "event_id": event_id,
        "created_at": "2024-05-01T18:31:00Z",
        "data": {
            "type": "payment",
            "id": payment_id,
            "object": {
                "payment": {
                    "id": payment_id,
                    "status": status,
                    "order_id": order_id,
                    "created_at": "2024-05-01T18:29:00Z",
                    "updated_at": "2024-05-01T18:31:00Z",
                }
            },
        },
    }


def refund_event(
    event_id: str,
    *,
    refund_id: str = "REF1",
    payment_id: str = "PAY1",
    order_id: str | None = "O1",
    status: str = "COMPLETED",
) -> dict:
    refund = {
        "id": refund_id,
        "status": status,
        "payment_id": payment_id,
        "created_at": "2024-05-02T10:00:00Z",
        "updated_at": "2024-05-02T10:05:00Z",
    }
    if order_id:
        refund["order_id"] = order_id
    return {
        "merchant_id": "M1",
        "type": "refund.updated",
        "event_id": event_id,
        "data": {"type": "refund", "id": refund_id, "object": {"refund": refund}},
    }


CATALOG_VARIATIONS = [
    CatalogVariationInfo(variation_id="V1", item_name="Burger", variation_name="Regular", sku="BRG-R"),
    CatalogVariationInfo(variation_id="V2", item_name="Fries", variation_name="Large", sku="FRI-L"),
]
