from __future__ import annotations

import re
from typing import Any

from inventory_app.inventory.errors import ValidationError

_GID_RE = re.compile(r"^gid://shopify/(?P<resource>[A-Za-z]+)/(?P<legacy_id>\d+)(?:\?.*)?$")
_LEGACY_ID_RE = re.compile(r"^\d+$")

INVENTORY_ITEM = "InventoryItem"
LOCATION = "Location"
PRODUCT_VARIANT = "ProductVariant"


def to_gid(resource: str, value: Any) -> str:
    """Accept a numeric id or a full GID for `resource` and return the GID form."""
    if isinstance(value, bool):
        raise ValidationError("invalid_identifier", f"{resource} id must be a string or integer")
    if isinstance(value, int):
        if value <= 0:
            raise ValidationError("invalid_identifier", f"{resource} id must be positive")
        return f"gid://shopify/{resource}/{value}"
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("invalid_identifier", f"{resource} id is required")

    cleaned = value.strip()
    if _LEGACY_ID_RE.fullmatch(cleaned):
        return f"gid://shopify/{resource}/{int(cleaned)}"
    match = _GID_RE.fullmatch(cleaned)
    if match is None:
        raise ValidationError("invalid_identifier", f"Not a valid {resource} id: {value!r}")
    if match.group("resource") != resource:
        raise ValidationError(
            "invalid_identifier",
            f"Expected a {resource} GID but got {match.group('resource')}: {value!r}",
        )
    return f"gid://shopify/{resource}/{match.group('legacy_id')}"


def optional_gid(resource: str, value: Any) -> str | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return to_gid(resource, value)

