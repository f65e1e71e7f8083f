from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Callable

from sqlalchemy.orm import Session

from grill_backoffice.models.inventory import REASON_RECON
from grill_backoffice.services.ledger import LedgerEntryDraft, record_entry, usage_totals_for_order, utcnow
from grill_backoffice.services.quantities import NOISE_THRESHOLD, round_quantity
from grill_backoffice.services.usage import calculate_usage_for_order
from grill_backoffice.square.base import OrderSource, SquareOrder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconciliationResult:
    processed_orders: int = 0
    adjustments: int = 0
    failed_orders: int = 0

    def to_dict(self) -> dict:
        return {
            "processed_orders": self.processed_orders,
            "adjustments": self.adjustments,
            "failed_orders": self.failed_orders,
        }


def previous_day_window(now: datetime | None = None) -> tuple[datetime, datetime]:
    """Yesterday in UTC, from 00:00:00.000 to 23:59:59.999."""
    current = now or utcnow()
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    target = current.astimezone(timezone.utc).date() - timedelta(days=1)
    start_at = datetime.combine(target, time.min, tzinfo=timezone.utc)
    end_at = datetime.combine(target, time(23, 59, 59, 999000), tzinfo=timezone.utc)
    return start_at, end_at


def _reconcile_order(db: Session, order: SquareOrder) -> int:
    usage = calculate_usage_for_order(db, order)
    if not usage:
        db.commit()
        return 0

    actual_totals = usage_totals_for_order(db, order.id)
    db.commit()

    occurred_at = order.closed_at or order.updated_at or utcnow()
    adjustments = 0
    for item_id, item_usage in usage.items():
        expected = round_quantity(-item_usage.quantity, item_usage.decimals)
        actual = actual_totals.get(item_id, Decimal("0"))
        difference = round_quantity(expected - actual, item_usage.decimals)
        if abs(difference) < NOISE_THRESHOLD:
            continue

        record_entry(
            db,
            LedgerEntryDraft(
                item_id=item_id,
                delta=difference,
                reason=REASON_RECON,
                occurred_at=occurred_at,
                square_order_id=order.id,
                note=f"Reconciliation adjustment for {order.id}",
            ),
        )
        logger.info(
            "Reconciliation adjustment delta=%s expected=%s actual=%s",
            difference,
            expected,
            actual,
            extra={"order_id": order.id, "item_id": item_id},
        )
        adjustments += 1
    return adjustments


def reconcile_orders_for_range(
    session_factory: Callable[[], Session],
    order_source: OrderSource,
    start_at: datetime,
    end_at: datetime,
) -> ReconciliationResult:
    """Brings each completed order in the window to its expected ledger usage.

    A failing order is logged and counted; a failing order search propagates.
    """
    processed_orders = 0
    adjustments = 0
    failed_orders = 0

    db = session_factory()
    try:
        for order in order_source.search_orders(start_at, end_at):
            processed_orders += 1
            try:
                adjustments += _reconcile_order(db, order)
            except Exception:
                db.rollback()
                failed_orders += 1
                logger.exception("Reconciliation failed for order", extra={"order_id": order.id})
    finally:
        db.close()

    result = ReconciliationResult(
        processed_orders=processed_orders,
        adjustments=adjustments,
        failed_orders=failed_orders,
    )
    logger.info(
        "Reconciliation run completed processed_orders=%s adjustments=%s failed_orders=%s start_at=%s end_at=%s",
        result.processed_orders,
        result.adjustments,
        result.failed_orders,
        start_at.isoformat(),
        end_at.isoformat(),
    )
    return result


def reconcile_previous_day(
    session_factory: Callable[[], Session],
    order_source: OrderSource,
    now: datetime | None = None,
) -> ReconciliationResult:
    start_at, end_at = previous_day_window(now)
    return reconcile_orders_for_range(session_factory, order_source, start_at, end_at)
