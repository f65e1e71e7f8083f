from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Mapping

from sqlalchemy import func
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from grill_backoffice.models.inventory import (
    LEDGER_REASONS,
    MANUAL_REASONS,
    REASON_RECON,
    REASON_SALE,
    InventoryBalance,
    InventoryItem,
    StockLedgerEntry,
)
from grill_backoffice.services.quantities import round_quantity, to_decimal
from grill_backoffice.services.usage import ItemUsage

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_LIMIT = 50
MAX_LEDGER_LIMIT = 200


class InventoryValidationError(ValueError):
    pass


class InventoryItemNotFound(LookupError):
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LedgerEntryDraft:
    item_id: int
    delta: Decimal
    reason: str
    occurred_at: datetime
    square_event_id: str | None = None
    square_payment_id: str | None = None
    square_refund_id: str | None = None
    square_order_id: str | None = None
    note: str | None = None


@dataclass(frozen=True)
class LedgerContext:
    """Correlation data shared by every entry written for one event or order."""

    reason: str
    occurred_at: datetime
    square_event_id: str | None = None
    square_payment_id: str | None = None
    square_refund_id: str | None = None
    square_order_id: str | None = None
    note: str | None = None

    def entry_for(self, item_id: int, delta: Decimal) -> LedgerEntryDraft:
        return LedgerEntryDraft(
            item_id=item_id,
            delta=delta,
            reason=self.reason,
            occurred_at=self.occurred_at,
            square_event_id=self.square_event_id,
            square_payment_id=self.square_payment_id,
            square_refund_id=self.square_refund_id,
            square_order_id=self.square_order_id,
            note=self.note,
        )


@dataclass(frozen=True)
class LedgerQuery:
    item_id: int | None = None
    reason: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    limit: int = DEFAULT_LEDGER_LIMIT
    offset: int = 0

    def sanitized(self) -> "LedgerQuery":
        limit = self.limit or DEFAULT_LEDGER_LIMIT
        return replace(
            self,
            reason=self.reason.upper() if self.reason else None,
            limit=min(max(int(limit), 1), MAX_LEDGER_LIMIT),
            offset=max(int(self.offset or 0), 0),
        )


def _correlation_exists(db: Session, entry: LedgerEntryDraft) -> bool:
    if entry.square_event_id is None:
        return False
    return (
        db.query(StockLedgerEntry.id)
        .filter(
            StockLedgerEntry.square_event_id == entry.square_event_id,
            StockLedgerEntry.item_id == entry.item_id,
            StockLedgerEntry.reason == entry.reason,
        )
        .first()
        is not None
    )


def append_if_new(db: Session, entry: LedgerEntryDraft) -> int | None:
    """Inserts the entry and returns its id, or ``None`` when the correlation key exists.

    Must be the first write of its transaction: a duplicate rolls the session back.
    """
    if entry.reason not in LEDGER_REASONS:
        raise InventoryValidationError(f"Unknown ledger reason: {entry.reason}")

    row = StockLedgerEntry(
        item_id=entry.item_id,
        delta=entry.delta,
        reason=entry.reason,
        square_event_id=entry.square_event_id,
        square_payment_id=entry.square_payment_id,
        square_refund_id=entry.square_refund_id,
        square_order_id=entry.square_order_id,
        occurred_at=entry.occurred_at,
        note=entry.note,
    )
    db.add(row)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        if _correlation_exists(db, entry):
            logger.warning(
                "Skipping duplicate ledger entry for Square event reason=%s",
                entry.reason,
                extra={"event_id": entry.square_event_id, "item_id": entry.item_id},
            )
            return None
        raise
    return row.id


def _balance_upsert(dialect_name: str, item_id: int, delta: Decimal):
    values = {"item_id": item_id, "on_hand": delta}
    if dialect_name == "mysql":
        stmt = mysql_insert(InventoryBalance).values(**values)
        return stmt.on_duplicate_key_update(
            on_hand=InventoryBalance.on_hand + stmt.inserted.on_hand,
            updated_at=func.now(),
        )

    insert = pg_insert if dialect_name == "postgresql" else sqlite_insert
    stmt = insert(InventoryBalance).values(**values)
    return stmt.on_conflict_do_update(
        index_elements=[InventoryBalance.item_id],
        set_={"on_hand": InventoryBalance.on_hand + stmt.excluded.on_hand, "updated_at": func.now()},
    )


def apply_delta(db: Session, item_id: int, delta: Decimal) -> None:
    """Adds ``delta`` to the item balance, seeding the row at zero when absent."""
    dialect_name = db.get_bind().dialect.name
    if dialect_name in {"mysql", "postgresql", "sqlite"}:
        db.execute(_balance_upsert(dialect_name, item_id, delta))
        return

    balance = (
        db.query(InventoryBalance)
        .filter(InventoryBalance.item_id == item_id)
        .with_for_update()
        .first()
    )
    if balance is None:
        db.add(InventoryBalance(item_id=item_id, on_hand=delta))
    else:
        balance.on_hand = to_decimal(balance.on_hand) + delta
    db.flush()


def record_entry(db: Session, entry: LedgerEntryDraft) -> int | None:
    """Ledger append + balance update as one transaction; ``None`` for a duplicate."""
    try:
        entry_id = append_if_new(db, entry)
        if entry_id is None:
            return None
        apply_delta(db, entry.item_id, entry.delta)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return entry_id


def apply_usage(
    db: Session,
    usage: Mapping[int, ItemUsage],
    context: LedgerContext,
    sign: int,
) -> int:
    """Writes one signed entry per item; returns how many were new.

    Each item commits on its own, so a failure leaves earlier items applied.
    """
    written = 0
    for item_id, item_usage in usage.items():
        delta = round_quantity(item_usage.quantity, item_usage.decimals)
        if not delta:
            continue
        if sign < 0:
            delta = -delta
        if record_entry(db, context.entry_for(item_id, delta)) is not None:
            written += 1
    return written


def get_item(db: Session, item_id: int) -> InventoryItem:
    item = db.query(InventoryItem).filter(InventoryItem.id == item_id).first()
    if not item:
        raise InventoryItemNotFound(f"Inventory item {item_id} not found")
    return item


def adjust_manual(
    db: Session,
    item_id: int,
    delta,
    reason: str,
    note: str | None = None,
) -> StockLedgerEntry:
    normalized_reason = (reason or "").strip().upper()
    if normalized_reason not in MANUAL_REASONS:
        raise InventoryValidationError("Adjustments must use MANUAL or PHYSICAL_COUNT reason")

    try:
        numeric_delta = to_decimal(delta)
    except ValueError as exc:
        raise InventoryValidationError("Adjustment delta must be a non-zero number") from exc
    if not numeric_delta.is_finite() or numeric_delta == 0:
        raise InventoryValidationError("Adjustment delta must be a non-zero number")

    item = get_item(db, item_id)
    rounded = round_quantity(numeric_delta, item.decimals)
    if rounded == 0:
        raise InventoryValidationError(
            f"Adjustment delta rounds to zero at {item.decimals} decimal places"
        )

    entry_id = record_entry(
        db,
        LedgerEntryDraft(
            item_id=item.id,
            delta=rounded,
            reason=normalized_reason,
            occurred_at=utcnow(),
            note=note or None,
        ),
    )
    return db.query(StockLedgerEntry).filter(StockLedgerEntry.id == entry_id).one()


def get_on_hand(db: Session, item_id: int) -> Decimal:
    on_hand = (
        db.query(InventoryBalance.on_hand)
        .filter(InventoryBalance.item_id == item_id)
        .scalar()
    )
    return round_quantity(on_hand or 0)


def list_ledger_entries(db: Session, query: LedgerQuery) -> list[StockLedgerEntry]:
    query = query.sanitized()
    if query.reason and query.reason not in LEDGER_REASONS:
        raise InventoryValidationError(f"Unknown ledger reason: {query.reason}")

    stmt = db.query(StockLedgerEntry).options(joinedload(StockLedgerEntry.item))
    if query.item_id:
        stmt = stmt.filter(StockLedgerEntry.item_id == query.item_id)
    if query.reason:
        stmt = stmt.filter(StockLedgerEntry.reason == query.reason)
    if query.start:
        stmt = stmt.filter(StockLedgerEntry.occurred_at >= query.start)
    if query.end:
        stmt = stmt.filter(StockLedgerEntry.occurred_at <= query.end)

    return (
        stmt.order_by(StockLedgerEntry.occurred_at.desc(), StockLedgerEntry.id.desc())
        .limit(query.limit)
        .offset(query.offset)
        .all()
    )


def recent_entries_for_item(db: Session, item_id: int, limit: int = DEFAULT_LEDGER_LIMIT) -> list[StockLedgerEntry]:
    return (
        db.query(StockLedgerEntry)
        .filter(StockLedgerEntry.item_id == item_id)
        .order_by(StockLedgerEntry.occurred_at.desc(), StockLedgerEntry.id.desc())
        .limit(min(max(int(limit or DEFAULT_LEDGER_LIMIT), 1), MAX_LEDGER_LIMIT))
        .all()
    )


def usage_totals_for_order(db: Session, order_id: str) -> dict[int, Decimal]:
    """Net recorded SALE + RECON delta per item for one Square order."""
    rows = (
        db.query(StockLedgerEntry.item_id, func.sum(StockLedgerEntry.delta))
        .filter(
            StockLedgerEntry.square_order_id == order_id,
            StockLedgerEntry.reason.in_([REASON_SALE, REASON_RECON]),
        )
        .group_by(StockLedgerEntry.item_id)
        .all()
    )
    return {item_id: round_quantity(total or 0) for item_id, total in rows}
