from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from grill_backoffice.core.database import get_db
from grill_backoffice.services.ledger import InventoryItemNotFound, get_item
from grill_backoffice.services.recipes import (
    ResolvedComponent,
    delete_recipe_component,
    get_recipe_for_variation,
    upsert_recipe_component,
)

router = APIRouter(prefix="/api/admin/recipes", tags=["recipes"])


class RecipeComponentWrite(BaseModel):
    variation_id: str = Field(..., min_length=1, max_length=64)
    inventory_item_id: int
    qty_per_sale: Optional[Decimal] = None
    modifier_catalog_object_id: Optional[str] = Field(None, max_length=64)
    remove: bool = False


class RecipeComponentRead(BaseModel):
    variation_id: str
    inventory_item_id: int
    inventory_item_name: str
    uom: Optional[str]
    qty_per_sale: float
    modifier_catalog_object_id: Optional[str]


def _component_to_dict(component: ResolvedComponent) -> dict:
    return {
        "variation_id": component.variation_id,
        "inventory_item_id": component.inventory_item_id,
        "inventory_item_name": component.inventory_item_name,
        "uom": component.uom,
        "qty_per_sale": float(component.qty_per_sale),
        "modifier_catalog_object_id": component.modifier_id or None,
    }


@router.get("/{variation_id}", response_model=List[RecipeComponentRead])
def get_recipe(variation_id: str, db: Session = Depends(get_db)):
    return [_component_to_dict(component) for component in get_recipe_for_variation(db, variation_id)]


@router.post("", response_model=List[RecipeComponentRead])
def write_recipe_component(payload: RecipeComponentWrite, db: Session = Depends(get_db)):
    if payload.remove:
        removed = delete_recipe_component(
            db,
            variation_id=payload.variation_id,
            inventory_item_id=payload.inventory_item_id,
            modifier_id=payload.modifier_catalog_object_id,
        )
        if not removed:
            raise HTTPException(status_code=404, detail="Recipe component not found")
        db.commit()
        return [_component_to_dict(component) for component in get_recipe_for_variation(db, payload.variation_id)]

    if payload.qty_per_sale is None:
        raise HTTPException(status_code=400, detail="qty_per_sale is required")

    try:
        get_item(db, payload.inventory_item_id)
        upsert_recipe_component(
            db,
            variation_id=payload.variation_id,
            inventory_item_id=payload.inventory_item_id,
            qty_per_sale=payload.qty_per_sale,
            modifier_id=payload.modifier_catalog_object_id,
        )
        db.commit()
    except InventoryItemNotFound as exc:
        raise HTTPException(status_code=404, detail="Inventory item not found") from exc
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return [_component_to_dict(component) for component in get_recipe_for_variation(db, payload.variation_id)]
