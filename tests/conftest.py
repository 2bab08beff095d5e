import os
import sys
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("SHOPIFY_INTERNAL_API_TOKEN", "internal_token")
os.environ.setdefault("SHOPIFY_APP_DB_URL", "sqlite://")
os.environ.setdefault("INVENTORY_RETRY_BASE_DELAY_SECONDS", "0")

from inventory_app.shopify_api import ShopifyThrottledError  # noqa: E402
from inventory_app.shopify_types import (  # noqa: E402
    InventoryItemState,
    InventoryLevel,
    Location,
    MutationApplied,
    MutationRejected,
    ShopSession,
    UserError,
)


class FakeInventoryApi:
    """In-memory stand-in for the inventory half of ShopifyApiClient.

    Mutations change the stored item so a second reconciliation sees the
    result of the first one.
    """

    def __init__(self, *, exists: bool = True, tracked: bool = False, sku: str | None = None) -> None:
        self.exists = exists
        self.tracked = tracked
        self.sku = sku
        self.levels: dict[str, int] = {}
        self.calls: list[tuple] = []
        self.attempts: list[str] = []
        self.rejections: dict[str, tuple[UserError, ...]] = {}
        self.throttles: dict[str, int] = {}
        self.errors: dict[str, Exception] = {}
        self.observed_quantity: int | None = None
        self.known_locations: set[str] = {"gid://shopify/Location/1"}

    def _enter(self, name: str) -> None:
        self.attempts.append(name)
        if self.throttles.get(name, 0) > 0:
            self.throttles[name] -= 1
            raise ShopifyThrottledError(message=f"{name} throttled")
        if name in self.errors:
            raise self.errors[name]

    def _mutation(self, name: str):
        if name in self.rejections:
            return MutationRejected(mutation=name, user_errors=self.rejections[name])
        return None

    async def get_inventory_item(self, *, shop_domain, access_token, inventory_item_gid, location_gid=None):
        self._enter("get_inventory_item")
        if not self.exists:
            return None
        level = None
        if location_gid is not None and location_gid in self.levels:
            level = InventoryLevel(location_id=location_gid, available=self.levels[location_gid])
        return InventoryItemState(
            inventory_item_id=inventory_item_gid,
            tracked=self.tracked,
            sku=self.sku,
            inventory_level=level,
        )

    async def set_inventory_tracked(self, *, shop_domain, access_token, inventory_item_gid, tracked):
        self._enter("set_inventory_tracked")
        self.calls.append(("set_inventory_tracked", tracked))
        rejected = self._mutation("set_inventory_tracked")
        if rejected:
            return rejected
        self.tracked = tracked
        return MutationApplied(mutation="inventoryItemUpdate")

    async def set_inventory_sku(self, *, shop_domain, access_token, inventory_item_gid, sku):
        self._enter("set_inventory_sku")
        self.calls.append(("set_inventory_sku", sku))
        rejected = self._mutation("set_inventory_sku")
        if rejected:
            return rejected
        self.sku = sku
        return MutationApplied(mutation="inventoryItemUpdate")

    async def activate_inventory(self, *, shop_domain, access_token, inventory_item_gid, location_gid):
        self._enter("activate_inventory")
        self.calls.append(("activate_inventory", location_gid))
        rejected = self._mutation("activate_inventory")
        if rejected:
            return rejected
        self.levels.setdefault(location_gid, 0)
        return MutationApplied(mutation="inventoryActivate")

    async def set_on_hand_quantity(
        self, *, shop_domain, access_token, inventory_item_gid, location_gid, quantity, reason=None
    ):
        self._enter("set_on_hand_quantity")
        self.calls.append(("set_on_hand_quantity", quantity))
        rejected = self._mutation("set_on_hand_quantity")
        if rejected:
            return rejected
        self.levels[location_gid] = quantity
        return MutationApplied(mutation="inventorySetOnHandQuantities")

    async def get_inventory_level(self, *, shop_domain, access_token, inventory_item_gid, location_gid):
        self._enter("get_inventory_level")
        if location_gid not in self.levels:
            return None
        available = self.levels[location_gid] if self.observed_quantity is None else self.observed_quantity
        return InventoryLevel(location_id=location_gid, available=available)

    async def get_location(self, *, shop_domain, access_token, location_gid):
        self._enter("get_location")
        if location_gid not in self.known_locations:
            return None
        return Location(location_id=location_gid, name="Warehouse")

    @property
    def mutation_names(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest.fixture()
def fake_api() -> FakeInventoryApi:
    return FakeInventoryApi()


@pytest.fixture()
def shop_session() -> ShopSession:
    return ShopSession(shop_domain="example.myshopify.com", access_token="admin_token")


@pytest.fixture()
def recorded_sleeps():
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    fake_sleep.delays = delays  # type: ignore[attr-defined]
    return fake_sleep


