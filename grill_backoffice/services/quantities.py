from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from grill_backoffice.models.inventory import MAX_DECIMALS

# Differences below this are rounding residue, not drift.
NOISE_THRESHOLD = Decimal("0.0005")


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if value is None:
        return Decimal("0")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Invalid quantity: {value!r}") from exc


def clamp_decimals(decimals: int | None) -> int:
    if decimals is None:
        return MAX_DECIMALS
    return max(0, min(int(decimals), MAX_DECIMALS))


def round_quantity(value: Any, decimals: int | None = MAX_DECIMALS) -> Decimal:
    """Half-up rounding (ties away from zero) to at most three places."""
    places = clamp_decimals(decimals)
    return to_decimal(value).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
