from __future__ import annotations

from dataclasses import dataclass, fields
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session, joinedload

from grill_backoffice.models.inventory import (
    ITEM_TYPES,
    MAX_DECIMALS,
    REASON_MANUAL,
    InventoryBalance,
    InventoryItem,
    StockLedgerEntry,
)
from grill_backoffice.services.ledger import (
    InventoryValidationError,
    get_item,
    utcnow,
)
from grill_backoffice.services.quantities import round_quantity, to_decimal


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass(frozen=True)
class InventoryItemUpdate:
    """Fields left as ``UNSET`` are not touched; ``None`` clears nullable fields."""

    name: Any = UNSET
    type: Any = UNSET
    uom: Any = UNSET
    decimals: Any = UNSET
    low_stock_threshold: Any = UNSET
    active: Any = UNSET

    def supplied(self) -> dict[str, Any]:
        return {
            field.name: getattr(self, field.name)
            for field in fields(self)
            if getattr(self, field.name) is not UNSET
        }


def _validate_name(name: str | None) -> str:
    cleaned = (name or "").strip()
    if not cleaned or len(cleaned) > 120:
        raise InventoryValidationError("Item name must have between 1 and 120 characters")
    return cleaned


def _validate_type(item_type: str | None) -> str:
    normalized = (item_type or "").strip().upper()
    if normalized not in ITEM_TYPES:
        raise InventoryValidationError(f"Item type must be one of {sorted(ITEM_TYPES)}")
    return normalized


def _validate_uom(uom: str | None) -> str:
    cleaned = (uom or "").strip()
    if not cleaned or len(cleaned) > 32:
        raise InventoryValidationError("Unit of measure must have between 1 and 32 characters")
    return cleaned


def _validate_active(active: Any) -> bool:
    if not isinstance(active, bool):
        raise InventoryValidationError("active must be true or false")
    return active


def _validate_decimals(decimals: Any) -> int:
    try:
        value = int(decimals)
    except (TypeError, ValueError) as exc:
        raise InventoryValidationError("decimals must be an integer between 0 and 3") from exc
    if value < 0 or value > MAX_DECIMALS:
        raise InventoryValidationError("decimals must be an integer between 0 and 3")
    return value


def _validate_threshold(value: Any) -> Decimal | None:
    if value is None:
        return None
    try:
        return round_quantity(value)
    except ValueError as exc:
        raise InventoryValidationError("low_stock_threshold must be a number") from exc


def create_inventory_item(
    db: Session,
    *,
    name: str,
    item_type: str,
    uom: str,
    decimals: int = 0,
    low_stock_threshold: Any = None,
    initial_on_hand: Any = None,
) -> InventoryItem:
    item = InventoryItem(
        name=_validate_name(name),
        type=_validate_type(item_type),
        uom=_validate_uom(uom),
        decimals=_validate_decimals(decimals),
        low_stock_threshold=_validate_threshold(low_stock_threshold),
        active=True,
    )

    opening = None
    if initial_on_hand is not None:
        try:
            opening = round_quantity(to_decimal(initial_on_hand), item.decimals)
        except ValueError as exc:
            raise InventoryValidationError("initial_on_hand must be a number") from exc

    try:
        db.add(item)
        db.flush()
        db.add(InventoryBalance(item_id=item.id, on_hand=opening or Decimal("0")))
        if opening:
            db.add(
                StockLedgerEntry(
                    item_id=item.id,
                    delta=opening,
                    reason=REASON_MANUAL,
                    occurred_at=utcnow(),
                    note="Initial balance",
                )
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(item)
    return item


def update_inventory_item(db: Session, item_id: int, update: InventoryItemUpdate) -> InventoryItem:
    item = get_item(db, item_id)
    supplied = update.supplied()
    if not supplied:
        return item

    changes: dict[str, Any] = {}
    if "name" in supplied:
        changes["name"] = _validate_name(supplied["name"])
    if "type" in supplied:
        changes["type"] = _validate_type(supplied["type"])
    if "uom" in supplied:
        changes["uom"] = _validate_uom(supplied["uom"])
    if "decimals" in supplied:
        changes["decimals"] = _validate_decimals(supplied["decimals"])
    if "low_stock_threshold" in supplied:
        changes["low_stock_threshold"] = _validate_threshold(supplied["low_stock_threshold"])
    if "active" in supplied:
        changes["active"] = _validate_active(supplied["active"])

    for name, value in changes.items():
        setattr(item, name, value)
    db.commit()
    db.refresh(item)
    return item


def list_inventory_items(db: Session) -> list[InventoryItem]:
    return (
        db.query(InventoryItem)
        .options(joinedload(InventoryItem.balance))
        .order_by(InventoryItem.name.asc())
        .all()
    )


def on_hand_for(item: InventoryItem) -> Decimal:
    if item.balance is None:
        return round_quantity(0)
    return round_quantity(item.balance.on_hand or 0)


def is_low_stock(item: InventoryItem) -> bool:
    if item.low_stock_threshold is None:
        return False
    return on_hand_for(item) <= round_quantity(item.low_stock_threshold)


def list_low_stock_items(db: Session) -> list[InventoryItem]:
    return [item for item in list_inventory_items(db) if is_low_stock(item)]
