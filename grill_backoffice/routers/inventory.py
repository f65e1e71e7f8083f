from __future__ import annotations

from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from grill_backoffice.core.database import get_db
from grill_backoffice.models.inventory import InventoryItem, StockLedgerEntry
from grill_backoffice.services.inventory import (
    UNSET,
    InventoryItemUpdate,
    create_inventory_item,
    is_low_stock,
    list_inventory_items,
    list_low_stock_items,
    on_hand_for,
    update_inventory_item,
)
from grill_backoffice.services.ledger import (
    DEFAULT_LEDGER_LIMIT,
    InventoryItemNotFound,
    InventoryValidationError,
    LedgerQuery,
    adjust_manual,
    get_item,
    get_on_hand,
    list_ledger_entries,
    recent_entries_for_item,
)

router = APIRouter(prefix="/api/admin", tags=["inventory"])


def _parse_datetime(value: str, is_end: bool) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        try:
            parsed_date = date.fromisoformat(value)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid date") from exc
        parsed = datetime.combine(parsed_date, time.max if is_end else time.min)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _quantity(value: Decimal | None) -> float | None:
    if value is None:
        return None
    return float(value)


class InventoryItemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    type: str = "INGREDIENT"
    uom: str = Field(..., min_length=1, max_length=32)
    decimals: int = Field(0, ge=0, le=3)
    low_stock_threshold: Optional[Decimal] = None
    initial_on_hand: Optional[Decimal] = None


class InventoryItemPatch(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    type: Optional[str] = None
    uom: Optional[str] = Field(None, min_length=1, max_length=32)
    decimals: Optional[int] = Field(None, ge=0, le=3)
    low_stock_threshold: Optional[Decimal] = None
    active: Optional[bool] = None


class InventoryItemRead(BaseModel):
    id: int
    name: str
    type: str
    uom: str
    decimals: int
    low_stock_threshold: Optional[float]
    active: bool
    on_hand: float
    low_stock: bool
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class AdjustmentCreate(BaseModel):
    delta: Decimal
    reason: str = "MANUAL"
    note: Optional[str] = Field(None, max_length=255)


class LedgerEntryRead(BaseModel):
    id: int
    item_id: int
    item_name: str
    delta: float
    reason: str
    square_event_id: Optional[str]
    square_payment_id: Optional[str]
    square_refund_id: Optional[str]
    square_order_id: Optional[str]
    occurred_at: Optional[str]
    created_at: Optional[str]
    note: Optional[str]


class AdjustmentRead(BaseModel):
    entry: LedgerEntryRead
    on_hand: float


def _item_to_dict(item: InventoryItem) -> dict:
    return {
        "id": item.id,
        "name": item.name,
        "type": item.type,
        "uom": item.uom,
        "decimals": item.decimals,
        "low_stock_threshold": _quantity(item.low_stock_threshold),
        "active": item.active,
        "on_hand": float(on_hand_for(item)),
        "low_stock": is_low_stock(item),
        "created_at": item.created_at.isoformat() if item.created_at else None,
        "updated_at": item.updated_at.isoformat() if item.updated_at else None,
    }


def _entry_to_dict(entry: StockLedgerEntry) -> dict:
    item = entry.item
    return {
        "id": entry.id,
        "item_id": entry.item_id,
        "item_name": item.name if item else "",
        "delta": float(entry.delta),
        "reason": entry.reason,
        "square_event_id": entry.square_event_id,
        "square_payment_id": entry.square_payment_id,
        "square_refund_id": entry.square_refund_id,
        "square_order_id": entry.square_order_id,
        "occurred_at": entry.occurred_at.isoformat() if entry.occurred_at else None,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
        "note": entry.note,
    }


@router.get("/items", response_model=List[InventoryItemRead])
def list_items(db: Session = Depends(get_db)):
    return [_item_to_dict(item) for item in list_inventory_items(db)]


@router.post("/items", response_model=InventoryItemRead, status_code=201)
def create_item(payload: InventoryItemCreate, db: Session = Depends(get_db)):
    try:
        item = create_inventory_item(
            db,
            name=payload.name,
            item_type=payload.type,
            uom=payload.uom,
            decimals=payload.decimals,
            low_stock_threshold=payload.low_stock_threshold,
            initial_on_hand=payload.initial_on_hand,
        )
    except InventoryValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _item_to_dict(item)


@router.patch("/items/{item_id}", response_model=InventoryItemRead)
def patch_item(item_id: int, payload: InventoryItemPatch, db: Session = Depends(get_db)):
    supplied = payload.model_dump(exclude_unset=True)
    update = InventoryItemUpdate(
        name=supplied.get("name", UNSET),
        type=supplied.get("type", UNSET),
        uom=supplied.get("uom", UNSET),
        decimals=supplied.get("decimals", UNSET),
        low_stock_threshold=supplied.get("low_stock_threshold", UNSET),
        active=supplied.get("active", UNSET),
    )
    try:
        item = update_inventory_item(db, item_id, update)
    except InventoryItemNotFound as exc:
        raise HTTPException(status_code=404, detail="Inventory item not found") from exc
    except InventoryValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _item_to_dict(item)


@router.post("/items/{item_id}/adjust", response_model=AdjustmentRead)
def adjust_item(item_id: int, payload: AdjustmentCreate, db: Session = Depends(get_db)):
    try:
        entry = adjust_manual(db, item_id, payload.delta, payload.reason, payload.note)
    except InventoryItemNotFound as exc:
        raise HTTPException(status_code=404, detail="Inventory item not found") from exc
    except InventoryValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"entry": _entry_to_dict(entry), "on_hand": float(get_on_hand(db, item_id))}


@router.get("/items/{item_id}/ledger", response_model=List[LedgerEntryRead])
def item_ledger(
    item_id: int,
    limit: int = Query(DEFAULT_LEDGER_LIMIT),
    db: Session = Depends(get_db),
):
    try:
        get_item(db, item_id)
    except InventoryItemNotFound as exc:
        raise HTTPException(status_code=404, detail="Inventory item not found") from exc
    return [_entry_to_dict(entry) for entry in recent_entries_for_item(db, item_id, limit)]


@router.get("/low-stock", response_model=List[InventoryItemRead])
def low_stock(db: Session = Depends(get_db)):
    return [_item_to_dict(item) for item in list_low_stock_items(db)]


@router.get("/ledger", response_model=List[LedgerEntryRead])
def ledger(
    item_id: Optional[int] = None,
    reason: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    limit: int = Query(DEFAULT_LEDGER_LIMIT),
    offset: int = Query(0),
    db: Session = Depends(get_db),
):
    query = LedgerQuery(
        item_id=item_id,
        reason=reason,
        start=_parse_datetime(start, is_end=False) if start else None,
        end=_parse_datetime(end, is_end=True) if end else None,
        limit=limit,
        offset=offset,
    )
    try:
        entries = list_ledger_entries(db, query)
    except InventoryValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [_entry_to_dict(entry) for entry in entries]
