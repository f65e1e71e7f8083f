from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from grill_backoffice.deps import get_order_source, get_session_factory
from grill_backoffice.services.reconciliation import (
    previous_day_window,
    reconcile_orders_for_range,
)
from grill_backoffice.square.base import OrderSource, SquareAPIError

router = APIRouter(prefix="/api/admin/reconciliation", tags=["reconciliation"])
logger = logging.getLogger(__name__)


class ReconciliationRequest(BaseModel):
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@router.post("/run")
def run_reconciliation(
    payload: Optional[ReconciliationRequest] = None,
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    order_source: OrderSource = Depends(get_order_source),
):
    payload = payload or ReconciliationRequest()
    if (payload.start_at is None) != (payload.end_at is None):
        raise HTTPException(status_code=400, detail="start_at and end_at must be provided together")

    if payload.start_at and payload.end_at:
        start_at, end_at = _as_utc(payload.start_at), _as_utc(payload.end_at)
        if start_at > end_at:
            raise HTTPException(status_code=400, detail="start_at must not be after end_at")
    else:
        start_at, end_at = previous_day_window()

    try:
        result = reconcile_orders_for_range(session_factory, order_source, start_at, end_at)
    except SquareAPIError as exc:
        logger.exception("Reconciliation run failed")
        raise HTTPException(status_code=502, detail="Failed to load orders from Square") from exc

    return {
        "start_at": start_at.isoformat(),
        "end_at": end_at.isoformat(),
        **result.to_dict(),
    }
