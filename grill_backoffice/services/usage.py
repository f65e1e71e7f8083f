from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping, Sequence

from sqlalchemy.orm import Session

from grill_backoffice.services.quantities import round_quantity
from grill_backoffice.services.recipes import ResolvedComponent, get_components_by_variation_ids
from grill_backoffice.square.base import OrderLineItem, SquareOrder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ItemUsage:
    quantity: Decimal
    decimals: int
    item_name: str | None = None


def _selected_components(
    components: Sequence[ResolvedComponent],
    modifier_ids: set[str],
) -> list[ResolvedComponent]:
    overridden_items = {
        component.inventory_item_id
        for component in components
        if component.is_modifier_component and component.modifier_id in modifier_ids
    }

    selected: list[ResolvedComponent] = []
    for component in components:
        if component.is_modifier_component:
            if component.modifier_id in modifier_ids:
                selected.append(component)
        elif component.inventory_item_id not in overridden_items:
            selected.append(component)
    return selected


def compute_usage(
    order: SquareOrder,
    recipe_map: Mapping[str, Sequence[ResolvedComponent]],
) -> dict[int, ItemUsage]:
    """Net inventory usage of an order, keyed by inventory item id.

    A modifier-specific component replaces the base component for the same
    inventory item instead of adding to it. Totals are rounded to the item
    precision once, after accumulating every line.
    """
    totals: dict[int, Decimal] = {}
    decimals: dict[int, int] = {}
    names: dict[int, str] = {}

    for line in order.line_items:
        if not line.variation_id or line.quantity <= 0:
            continue

        components = recipe_map.get(line.variation_id) or []
        if not components:
            logger.warning(
                "Order line has no recipe mapping; skipping inventory usage",
                extra={"order_id": order.id, "variation_id": line.variation_id},
            )
            continue

        for component in _selected_components(components, set(line.modifier_ids)):
            item_id = component.inventory_item_id
            totals[item_id] = totals.get(item_id, Decimal("0")) + component.qty_per_sale * line.quantity
            decimals[item_id] = min(decimals.get(item_id, component.item_decimals), component.item_decimals)
            names.setdefault(item_id, component.inventory_item_name)

    return {
        item_id: ItemUsage(
            quantity=round_quantity(total, decimals[item_id]),
            decimals=decimals[item_id],
            item_name=names.get(item_id),
        )
        for item_id, total in totals.items()
    }


def variation_ids_for(line_items: Sequence[OrderLineItem]) -> list[str]:
    return [line.variation_id for line in line_items if line.variation_id]


def calculate_usage_for_order(db: Session, order: SquareOrder) -> dict[int, ItemUsage]:
    if not order.line_items:
        return {}
    recipe_map = get_components_by_variation_ids(db, variation_ids_for(order.line_items))
    return compute_usage(order, recipe_map)
