from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from grill_backoffice.core.database import get_db
from grill_backoffice.deps import get_order_source
from grill_backoffice.models.catalog_variation import CatalogVariation
from grill_backoffice.services.catalog import list_catalog_entries, sync_catalog_variations
from grill_backoffice.square.base import OrderSource, SquareAPIError

router = APIRouter(prefix="/api/admin/catalog", tags=["catalog"])
logger = logging.getLogger(__name__)


class CatalogVariationRead(BaseModel):
    variation_id: str
    item_name: Optional[str]
    variation_name: Optional[str]
    sku: Optional[str]
    updated_at: Optional[str]


def _variation_to_dict(row: CatalogVariation) -> dict:
    return {
        "variation_id": row.variation_id,
        "item_name": row.item_name,
        "variation_name": row.variation_name,
        "sku": row.sku,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }


@router.get("", response_model=List[CatalogVariationRead])
def list_catalog(search: Optional[str] = None, db: Session = Depends(get_db)):
    return [_variation_to_dict(row) for row in list_catalog_entries(db, search)]


@router.post("/sync")
def sync_catalog(
    db: Session = Depends(get_db),
    order_source: OrderSource = Depends(get_order_source),
):
    try:
        synced = sync_catalog_variations(db, order_source)
    except SquareAPIError as exc:
        logger.exception("Catalog sync failed")
        raise HTTPException(status_code=502, detail="Failed to sync catalog from Square") from exc
    return {"ok": True, "variations": synced}
