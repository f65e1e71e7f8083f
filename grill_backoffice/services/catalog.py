from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from grill_backoffice.models.catalog_variation import CatalogVariation
from grill_backoffice.services.ledger import utcnow
from grill_backoffice.square.base import OrderSource

logger = logging.getLogger(__name__)


def sync_catalog_variations(db: Session, order_source: OrderSource) -> int:
    """Mirrors every Square item variation locally; returns how many were seen."""
    variations = order_source.list_catalog_variations()

    existing = {row.variation_id: row for row in db.query(CatalogVariation).all()}
    now = utcnow()
    try:
        for info in variations:
            row = existing.get(info.variation_id)
            if row is None:
                row = CatalogVariation(variation_id=info.variation_id)
                db.add(row)
                existing[info.variation_id] = row
            row.item_name = info.item_name
            row.variation_name = info.variation_name
            row.sku = info.sku
            row.updated_at = now
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Catalog sync completed variations=%s", len(variations))
    return len(variations)


def list_catalog_entries(db: Session, search: str | None = None) -> list[CatalogVariation]:
    query = db.query(CatalogVariation)
    term = (search or "").strip()
    if term:
        pattern = f"%{term}%"
        query = query.filter(
            CatalogVariation.item_name.ilike(pattern)
            | CatalogVariation.variation_name.ilike(pattern)
            | CatalogVariation.sku.ilike(pattern)
        )
    return query.order_by(CatalogVariation.item_name.asc(), CatalogVariation.variation_name.asc()).all()
