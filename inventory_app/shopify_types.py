from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Union


@dataclass(frozen=True)
class ShopSession:
    """Authenticated handle for one shop, passed explicitly into every remote call."""

    shop_domain: str
    access_token: str


@dataclass(frozen=True)
class UserError:
    message: str
    field: tuple[str, ...] = ()
    code: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "UserError":
        if not isinstance(payload, dict):
            return cls(message=str(payload))
        raw_field = payload.get("field")
        field: tuple[str, ...] = ()
        if isinstance(raw_field, list):
            field = tuple(str(part) for part in raw_field)
        elif isinstance(raw_field, str):
            field = (raw_field,)
        code = payload.get("code")
        return cls(
            message=str(payload.get("message") or "Unknown error"),
            field=field,
            code=code if isinstance(code, str) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "field": list(self.field), "code": self.code}


@dataclass(frozen=True)
class MutationApplied:
    mutation: str


@dataclass(frozen=True)
class MutationRejected:
    mutation: str
    user_errors: tuple[UserError, ...]

    @property
    def summary(self) -> str:
        return "; ".join(error.message for error in self.user_errors)


MutationResult = Union[MutationApplied, MutationRejected]


@dataclass(frozen=True)
class InventoryLevel:
    location_id: str
    available: int | None
    updated_at: datetime | None = None
    level_id: str | None = None
    inventory_item_id: str | None = None


@dataclass(frozen=True)
class InventoryItemState:
    inventory_item_id: str
    tracked: bool
    sku: str | None
    inventory_level: InventoryLevel | None


@dataclass(frozen=True)
class Location:
    location_id: str
    name: str
    city: str | None = None
    country: str | None = None
