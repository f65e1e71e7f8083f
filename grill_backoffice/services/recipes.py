from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from sqlalchemy.orm import Session

from grill_backoffice.models.inventory import InventoryItem, MAX_DECIMALS, RecipeComponent
from grill_backoffice.services.quantities import round_quantity


@dataclass(frozen=True)
class ResolvedComponent:
    variation_id: str
    inventory_item_id: int
    inventory_item_name: str
    qty_per_sale: Decimal
    modifier_id: str
    item_decimals: int
    uom: str | None = None

    @property
    def is_modifier_component(self) -> bool:
        return bool(self.modifier_id)


def normalize_modifier(modifier_id: str | None) -> str:
    return (modifier_id or "").strip()


def _to_component(component: RecipeComponent, item: InventoryItem) -> ResolvedComponent:
    decimals = MAX_DECIMALS if item.decimals is None else min(int(item.decimals), MAX_DECIMALS)
    return ResolvedComponent(
        variation_id=component.variation_id,
        inventory_item_id=component.inventory_item_id,
        inventory_item_name=item.name,
        qty_per_sale=Decimal(str(component.qty_per_sale)),
        modifier_id=normalize_modifier(component.modifier_catalog_object_id),
        item_decimals=decimals,
        uom=item.uom,
    )


def get_components_by_variation_ids(
    db: Session,
    variation_ids: Iterable[str | None],
) -> dict[str, list[ResolvedComponent]]:
    unique_ids = sorted({variation_id for variation_id in variation_ids if variation_id})
    if not unique_ids:
        return {}

    rows = (
        db.query(RecipeComponent, InventoryItem)
        .join(InventoryItem, InventoryItem.id == RecipeComponent.inventory_item_id)
        .filter(RecipeComponent.variation_id.in_(unique_ids))
        .order_by(RecipeComponent.id.asc())
        .all()
    )

    recipe_map: dict[str, list[ResolvedComponent]] = {}
    for component, item in rows:
        recipe_map.setdefault(component.variation_id, []).append(_to_component(component, item))
    return recipe_map


def get_recipe_for_variation(db: Session, variation_id: str) -> list[ResolvedComponent]:
    rows = (
        db.query(RecipeComponent, InventoryItem)
        .join(InventoryItem, InventoryItem.id == RecipeComponent.inventory_item_id)
        .filter(RecipeComponent.variation_id == variation_id)
        .order_by(InventoryItem.name.asc(), RecipeComponent.modifier_catalog_object_id.asc())
        .all()
    )
    return [_to_component(component, item) for component, item in rows]


def upsert_recipe_component(
    db: Session,
    *,
    variation_id: str,
    inventory_item_id: int,
    qty_per_sale: Decimal,
    modifier_id: str | None = None,
) -> RecipeComponent:
    qty_per_sale = round_quantity(qty_per_sale)
    if qty_per_sale <= 0:
        raise ValueError("qty_per_sale must be greater than zero")
    modifier = normalize_modifier(modifier_id)

    component = (
        db.query(RecipeComponent)
        .filter(
            RecipeComponent.variation_id == variation_id,
            RecipeComponent.inventory_item_id == inventory_item_id,
            RecipeComponent.modifier_catalog_object_id == modifier,
        )
        .first()
    )
    if component:
        component.qty_per_sale = qty_per_sale
    else:
        component = RecipeComponent(
            variation_id=variation_id,
            inventory_item_id=inventory_item_id,
            qty_per_sale=qty_per_sale,
            modifier_catalog_object_id=modifier,
        )
        db.add(component)
    return component


def delete_recipe_component(
    db: Session,
    *,
    variation_id: str,
    inventory_item_id: int,
    modifier_id: str | None = None,
) -> bool:
    deleted = (
        db.query(RecipeComponent)
        .filter(
            RecipeComponent.variation_id == variation_id,
            RecipeComponent.inventory_item_id == inventory_item_id,
            RecipeComponent.modifier_catalog_object_id == normalize_modifier(modifier_id),
        )
        .delete(synchronize_session=False)
    )
    return deleted > 0
