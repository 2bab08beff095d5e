from __future__ import annotations

import math
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from inventory_app.inventory.errors import ValidationError
from inventory_app.inventory.identifiers import (
    INVENTORY_ITEM,
    LOCATION,
    PRODUCT_VARIANT,
    optional_gid,
    to_gid,
)

_LEADING_INTEGER_RE = re.compile(r"^\s*([+-]?\d+)")


def normalize_quantity(raw: Any) -> int:
    """Read a quantity the way a form field hands it over.

    Blank, "-", "-0." and non-numeric input become 0. Otherwise the leading
    signed integer is used ("12abc" -> 12, "3.7" -> 3). Negative results are
    rejected rather than clamped.
    """
    if raw is None or isinstance(raw, bool):
        return 0
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, float):
        if not math.isfinite(raw):
            return 0
        value = int(raw)
    elif isinstance(raw, str):
        match = _LEADING_INTEGER_RE.match(raw)
        if match is None:
            return 0
        value = int(match.group(1))
    else:
        return 0

    if value < 0:
        raise ValidationError("negative_quantity", f"Inventory quantity cannot be negative: {raw!r}")
    return value


def _normalize_sku(raw: Any) -> str | None:
    if raw is None:
        return None
    if not isinstance(raw, str):
        raw = str(raw)
    cleaned = raw.strip()
    return cleaned or None


@dataclass(frozen=True)
class VariantInventoryIntent:
    inventory_item_id: str
    quantity: int
    tracked: bool
    sku: str | None = None
    location_id: str | None = None
    variant_id: str | None = None

    @property
    def sets_quantity(self) -> bool:
        return self.tracked and self.location_id is not None


def validate_intent(
    *,
    inventory_item_id: Any,
    quantity: Any,
    tracked: bool = True,
    sku: Any = None,
    location_id: Any = None,
    variant_id: Any = None,
) -> VariantInventoryIntent:
    item_gid = to_gid(INVENTORY_ITEM, inventory_item_id)
    location_gid = optional_gid(LOCATION, location_id)
    variant_gid = optional_gid(PRODUCT_VARIANT, variant_id)
    normalized_quantity = normalize_quantity(quantity)
    normalized_sku = _normalize_sku(sku)
    is_tracked = bool(tracked)

    if is_tracked and normalized_quantity != 0 and not normalized_sku:
        raise ValidationError("sku_required", "SKU is required when inventory quantity is not 0")
    if is_tracked and location_gid is None:
        raise ValidationError("location_required", "An inventory location is required for tracked inventory")
    if not is_tracked and normalized_quantity != 0:
        raise ValidationError("tracking_required", "Inventory tracking must be enabled to set a quantity")

    return VariantInventoryIntent(
        inventory_item_id=item_gid,
        quantity=normalized_quantity,
        tracked=is_tracked,
        sku=normalized_sku,
        location_id=location_gid,
        variant_id=variant_gid,
    )


_MAPPING_KEYS = {
    "inventory_item_id": ("inventory_item_id", "inventoryItemId"),
    "quantity": ("quantity", "available"),
    "tracked": ("tracked",),
    "sku": ("sku",),
    "location_id": ("location_id", "locationId"),
    "variant_id": ("variant_id", "variantId"),
}


def _first_present(raw: Mapping[str, Any], keys: tuple[str, ...], default: Any = None) -> Any:
    for key in keys:
        if key in raw:
            return raw[key]
    return default


def intent_from_mapping(raw: Mapping[str, Any]) -> VariantInventoryIntent:
    """Validate a loosely shaped mapping, accepting snake_case or camelCase keys.

    Missing fields count as blank and unknown keys are ignored.
    """
    fields = {name: _first_present(raw, keys) for name, keys in _MAPPING_KEYS.items()}
    tracked = fields.pop("tracked")
    return validate_intent(tracked=True if tracked is None else tracked, **fields)
