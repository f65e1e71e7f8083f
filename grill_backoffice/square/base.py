from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Protocol


class SquareAPIError(Exception):
    def __init__(self, message: str, *, status_code: int | None = None, errors: list[dict] | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []


class SquareNotFoundError(SquareAPIError):
    pass


def parse_quantity(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")
    if not parsed.is_finite():
        return Decimal("0")
    return parsed


def parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


@dataclass(frozen=True)
class OrderLineItem:
    variation_id: str | None
    quantity: Decimal
    modifier_ids: tuple[str, ...] = ()
    name: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "OrderLineItem":
        modifier_ids = tuple(
            modifier["catalog_object_id"]
            for modifier in data.get("modifiers") or []
            if modifier.get("catalog_object_id")
        )
        return cls(
            variation_id=data.get("catalog_object_id") or None,
            quantity=parse_quantity(data.get("quantity")),
            modifier_ids=modifier_ids,
            name=data.get("name"),
        )


@dataclass(frozen=True)
class SquareOrder:
    id: str
    state: str | None = None
    line_items: tuple[OrderLineItem, ...] = ()
    closed_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "SquareOrder":
        return cls(
            id=data["id"],
            state=data.get("state"),
            line_items=tuple(OrderLineItem.from_api(line) for line in data.get("line_items") or []),
            closed_at=parse_timestamp(data.get("closed_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
        )


@dataclass(frozen=True)
class SquarePayment:
    id: str
    status: str
    order_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == "COMPLETED"

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "SquarePayment":
        return cls(
            id=data["id"],
            status=(data.get("status") or "").upper(),
            order_id=data.get("order_id") or None,
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
        )


@dataclass(frozen=True)
class SquareRefund:
    id: str
    status: str
    payment_id: str | None = None
    order_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    processed_at: datetime | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == "COMPLETED"

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "SquareRefund":
        return cls(
            id=data["id"],
            status=(data.get("status") or "").upper(),
            payment_id=data.get("payment_id") or None,
            order_id=data.get("order_id") or None,
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
            processed_at=parse_timestamp(data.get("processed_at")),
        )


@dataclass(frozen=True)
class CatalogVariationInfo:
    variation_id: str
    item_name: str | None = None
    variation_name: str | None = None
    sku: str | None = None


@dataclass
class OrderSearchPage:
    orders: list[SquareOrder] = field(default_factory=list)
    cursor: str | None = None


class OrderSource(Protocol):
    def get_order(self, order_id: str) -> SquareOrder:
        ...

    def get_payment(self, payment_id: str) -> SquarePayment:
        ...

    def get_refund(self, refund_id: str) -> SquareRefund:
        ...

    def search_orders(self, start_at: datetime, end_at: datetime) -> Iterable[SquareOrder]:
        ...

    def list_catalog_variations(self) -> list[CatalogVariationInfo]:
        ...
