from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from inventory_app.config import settings
from inventory_app.shopify_types import (
    InventoryItemState,
    InventoryLevel,
    Location,
    MutationApplied,
    MutationRejected,
    MutationResult,
    UserError,
)

logger = logging.getLogger(__name__)

_INVENTORY_ITEM_GID_PREFIX = "gid://shopify/InventoryItem/"
_LOCATION_GID_PREFIX = "gid://shopify/Location/"

_INVENTORY_LEVEL_FIELDS = """
    id
    updatedAt
    location {
        id
    }
    item {
        id
    }
    quantities(names: ["available"]) {
        name
        quantity
    }
"""


class ShopifyApiError(RuntimeError):
    def __init__(self, *, message: str, status_code: int = 502) -> None:
        super().__init__(message)
        self.status_code = status_code


class ShopifyThrottledError(ShopifyApiError):
    def __init__(self, *, message: str, retry_after: float | None = None) -> None:
        super().__init__(message=message, status_code=429)
        self.retry_after = retry_after


def _parse_retry_after(raw_value: str | None) -> float | None:
    if not raw_value:
        return None
    try:
        retry_after = float(raw_value)
    except ValueError:
        return None
    return retry_after if retry_after >= 0 else None


def _parse_timestamp(raw_value: Any) -> datetime | None:
    if not isinstance(raw_value, str) or not raw_value:
        return None
    try:
        return datetime.fromisoformat(raw_value)
    except ValueError:
        return None


def _format_search_timestamp(value: datetime) -> str:
    # Naive values are taken as UTC.
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


class ShopifyApiClient:
    def __init__(self) -> None:
        self._timeout = settings.SHOPIFY_REQUEST_TIMEOUT_SECONDS

    @staticmethod
    def _require_gid(value: str, *, prefix: str, label: str) -> str:
        cleaned = value.strip()
        if not cleaned.startswith(prefix):
            raise ShopifyApiError(message=f"{label} must be a valid Shopify GID ({prefix}...).", status_code=400)
        return cleaned

    @staticmethod
    def _coerce_inventory_level(node: Any) -> InventoryLevel | None:
        if not isinstance(node, dict):
            return None
        location = node.get("location") or {}
        location_id = location.get("id")
        if not isinstance(location_id, str) or not location_id:
            raise ShopifyApiError(message="Inventory level response is missing location.id")

        available: int | None = None
        for quantity in node.get("quantities") or []:
            if not isinstance(quantity, dict) or quantity.get("name") != "available":
                continue
            raw_quantity = quantity.get("quantity")
            if isinstance(raw_quantity, int) and not isinstance(raw_quantity, bool):
                available = raw_quantity
            break

        item = node.get("item") or {}
        item_id = item.get("id")
        level_id = node.get("id")
        return InventoryLevel(
            location_id=location_id,
            available=available,
            updated_at=_parse_timestamp(node.get("updatedAt")),
            level_id=level_id if isinstance(level_id, str) else None,
            inventory_item_id=item_id if isinstance(item_id, str) else None,
        )

    @staticmethod
    def _coerce_mutation_result(*, response: dict[str, Any], mutation_name: str) -> tuple[dict[str, Any], MutationResult]:
        mutation_data = response.get(mutation_name)
        if not isinstance(mutation_data, dict):
            raise ShopifyApiError(message=f"{mutation_name} response is missing data")
        user_errors = mutation_data.get("userErrors") or []
        if user_errors:
            return mutation_data, MutationRejected(
                mutation=mutation_name,
                user_errors=tuple(UserError.from_payload(error) for error in user_errors),
            )
        return mutation_data, MutationApplied(mutation=mutation_name)

    async def get_inventory_item(
        self,
        *,
        shop_domain: str,
        access_token: str,
        inventory_item_gid: str,
        location_gid: str | None = None,
    ) -> InventoryItemState | None:
        cleaned_item_gid = self._require_gid(
            inventory_item_gid, prefix=_INVENTORY_ITEM_GID_PREFIX, label="inventoryItemId"
        )
        variables: dict[str, Any] = {"id": cleaned_item_gid}
        if location_gid is None:
            query = """
            query inventoryItemState($id: ID!) {
                inventoryItem(id: $id) {
                    id
                    tracked
                    sku
                }
            }
            """
        else:
            variables["locationId"] = self._require_gid(
                location_gid, prefix=_LOCATION_GID_PREFIX, label="locationId"
            )
            query = f"""
            query inventoryItemStateAtLocation($id: ID!, $locationId: ID!) {{
                inventoryItem(id: $id) {{
                    id
                    tracked
                    sku
                    inventoryLevel(locationId: $locationId) {{
                        {_INVENTORY_LEVEL_FIELDS}
                    }}
                }}
            }}
            """
        response = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload={"query": query, "variables": variables},
        )
        item = response.get("inventoryItem")
        if not isinstance(item, dict):
            return None

        tracked = item.get("tracked")
        if not isinstance(tracked, bool):
            raise ShopifyApiError(message="Inventory item response is missing tracked")
        raw_sku = item.get("sku")
        sku = raw_sku.strip() if isinstance(raw_sku, str) and raw_sku.strip() else None
        found_id = item.get("id")
        return InventoryItemState(
            inventory_item_id=found_id if isinstance(found_id, str) and found_id else cleaned_item_gid,
            tracked=tracked,
            sku=sku,
            inventory_level=self._coerce_inventory_level(item.get("inventoryLevel")),
        )

    async def _update_inventory_item(
        self,
        *,
        shop_domain: str,
        access_token: str,
        inventory_item_gid: str,
        item_input: dict[str, Any],
    ) -> MutationResult:
        mutation = """
        mutation inventoryItemUpdate($id: ID!, $input: InventoryItemInput!) {
            inventoryItemUpdate(id: $id, input: $input) {
                inventoryItem {
                    id
                    tracked
                    sku
                }
                userErrors {
                    field
                    message
                }
            }
        }
        """
        payload = {
            "query": mutation,
            "variables": {
                "id": self._require_gid(
                    inventory_item_gid, prefix=_INVENTORY_ITEM_GID_PREFIX, label="inventoryItemId"
                ),
                "input": item_input,
            },
        }
        response = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload=payload,
        )
        _, result = self._coerce_mutation_result(response=response, mutation_name="inventoryItemUpdate")
        return result

    async def set_inventory_tracked(
        self,
        *,
        shop_domain: str,
        access_token: str,
        inventory_item_gid: str,
        tracked: bool,
    ) -> MutationResult:
        return await self._update_inventory_item(
            shop_domain=shop_domain,
            access_token=access_token,
            inventory_item_gid=inventory_item_gid,
            item_input={"tracked": tracked},
        )

    async def set_inventory_sku(
        self,
        *,
        shop_domain: str,
        access_token: str,
        inventory_item_gid: str,
        sku: str,
    ) -> MutationResult:
        cleaned_sku = sku.strip()
        if not cleaned_sku:
            raise ShopifyApiError(message="sku must be a non-empty string.", status_code=400)
        return await self._update_inventory_item(
            shop_domain=shop_domain,
            access_token=access_token,
            inventory_item_gid=inventory_item_gid,
            item_input={"sku": cleaned_sku},
        )

    async def activate_inventory(
        self,
        *,
        shop_domain: str,
        access_token: str,
        inventory_item_gid: str,
        location_gid: str,
    ) -> MutationResult:
        mutation = """
        mutation inventoryActivate($inventoryItemId: ID!, $locationId: ID!) {
            inventoryActivate(inventoryItemId: $inventoryItemId, locationId: $locationId) {
                inventoryLevel {
                    id
                }
                userErrors {
                    field
                    message
                }
            }
        }
        """
        payload = {
            "query": mutation,
            "variables": {
                "inventoryItemId": self._require_gid(
                    inventory_item_gid, prefix=_INVENTORY_ITEM_GID_PREFIX, label="inventoryItemId"
                ),
                "locationId": self._require_gid(location_gid, prefix=_LOCATION_GID_PREFIX, label="locationId"),
            },
        }
        response = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload=payload,
        )
        activate_data, result = self._coerce_mutation_result(
            response=response, mutation_name="inventoryActivate"
        )
        if isinstance(result, MutationApplied) and not isinstance(activate_data.get("inventoryLevel"), dict):
            return MutationRejected(
                mutation="inventoryActivate",
                user_errors=(UserError(message="No inventory level returned from inventoryActivate"),),
            )
        return result

    async def set_on_hand_quantity(
        self,
        *,
        shop_domain: str,
        access_token: str,
        inventory_item_gid: str,
        location_gid: str,
        quantity: int,
        reason: str | None = None,
    ) -> MutationResult:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
            raise ShopifyApiError(message="quantity must be a non-negative integer.", status_code=400)
        mutation = """
        mutation inventorySetOnHandQuantities($input: InventorySetOnHandQuantitiesInput!) {
            inventorySetOnHandQuantities(input: $input) {
                inventoryAdjustmentGroup {
                    id
                }
                userErrors {
                    field
                    message
                    code
                }
            }
        }
        """
        payload = {
            "query": mutation,
            "variables": {
                "input": {
                    "reason": reason or settings.INVENTORY_ADJUSTMENT_REASON,
                    "setQuantities": [
                        {
                            "inventoryItemId": self._require_gid(
                                inventory_item_gid, prefix=_INVENTORY_ITEM_GID_PREFIX, label="inventoryItemId"
                            ),
                            "locationId": self._require_gid(
                                location_gid, prefix=_LOCATION_GID_PREFIX, label="locationId"
                            ),
                            "quantity": quantity,
                        }
                    ],
                }
            },
        }
        response = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload=payload,
        )
        _, result = self._coerce_mutation_result(response=response, mutation_name="inventorySetOnHandQuantities")
        return result

    async def get_inventory_level(
        self,
        *,
        shop_domain: str,
        access_token: str,
        inventory_item_gid: str,
        location_gid: str,
    ) -> InventoryLevel | None:
        item = await self.get_inventory_item(
            shop_domain=shop_domain,
            access_token=access_token,
            inventory_item_gid=inventory_item_gid,
            location_gid=location_gid,
        )
        if item is None:
            return None
        return item.inventory_level

    async def get_location(
        self,
        *,
        shop_domain: str,
        access_token: str,
        location_gid: str,
    ) -> Location | None:
        query = """
        query locationById($id: ID!) {
            location(id: $id) {
                id
                name
                address {
                    city
                    country
                }
            }
        }
        """
        payload = {
            "query": query,
            "variables": {"id": self._require_gid(location_gid, prefix=_LOCATION_GID_PREFIX, label="locationId")},
        }
        response = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload=payload,
        )
        return self._coerce_location(response.get("location"))

    @staticmethod
    def _coerce_location(node: Any) -> Location | None:
        if not isinstance(node, dict):
            return None
        location_id = node.get("id")
        name = node.get("name")
        if not isinstance(location_id, str) or not location_id:
            raise ShopifyApiError(message="Location response is missing location.id")
        address = node.get("address") or {}
        city = address.get("city")
        country = address.get("country")
        return Location(
            location_id=location_id,
            name=name if isinstance(name, str) else "",
            city=city if isinstance(city, str) else None,
            country=country if isinstance(country, str) else None,
        )

    async def list_locations(
        self,
        *,
        shop_domain: str,
        access_token: str,
        limit: int = 10,
    ) -> list[Location]:
        query = """
        query locations($first: Int!) {
            locations(first: $first) {
                edges {
                    node {
                        id
                        name
                        address {
                            city
                            country
                        }
                    }
                }
            }
        }
        """
        response = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload={"query": query, "variables": {"first": limit}},
        )
        locations: list[Location] = []
        for edge in (response.get("locations") or {}).get("edges") or []:
            location = self._coerce_location((edge or {}).get("node"))
            if location is not None:
                locations.append(location)
        return locations

    async def list_recent_inventory_levels(
        self,
        *,
        shop_domain: str,
        access_token: str,
        location_gid: str,
        updated_since: datetime,
        limit: int = 250,
    ) -> list[InventoryLevel]:
        query = f"""
        query recentInventoryLevels($id: ID!, $first: Int!, $query: String) {{
            location(id: $id) {{
                inventoryLevels(first: $first, query: $query) {{
                    edges {{
                        node {{
                            {_INVENTORY_LEVEL_FIELDS}
                        }}
                    }}
                }}
            }}
        }}
        """
        payload = {
            "query": query,
            "variables": {
                "id": self._require_gid(location_gid, prefix=_LOCATION_GID_PREFIX, label="locationId"),
                "first": limit,
                "query": f"updated_at:>{_format_search_timestamp(updated_since)}",
            },
        }
        response = await self._admin_graphql(
            shop_domain=shop_domain,
            access_token=access_token,
            payload=payload,
        )
        location = response.get("location")
        if not isinstance(location, dict):
            raise ShopifyApiError(message=f"Location not found for GID: {location_gid}", status_code=404)
        levels: list[InventoryLevel] = []
        for edge in (location.get("inventoryLevels") or {}).get("edges") or []:
            level = self._coerce_inventory_level((edge or {}).get("node"))
            if level is not None:
                levels.append(level)
        return levels

    @staticmethod
    def _is_throttled_graphql_error(errors: Any) -> bool:
        if not isinstance(errors, list):
            return False
        for error in errors:
            if not isinstance(error, dict):
                continue
            extensions = error.get("extensions") or {}
            if extensions.get("code") == "THROTTLED":
                return True
        return False

    async def _admin_graphql(
        self,
        *,
        shop_domain: str,
        access_token: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        url = f"https://{shop_domain}/admin/api/{settings.SHOPIFY_ADMIN_API_VERSION}/graphql.json"
        headers = {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": access_token,
        }
        response = await self._post_json(url=url, payload=payload, headers=headers)
        data = response.get("data")
        errors = response.get("errors")
        if errors:
            if self._is_throttled_graphql_error(errors):
                raise ShopifyThrottledError(message=f"Admin GraphQL request throttled: {errors}")
            raise ShopifyApiError(message=f"Admin GraphQL errors: {errors}")
        if not isinstance(data, dict):
            raise ShopifyApiError(message="Admin GraphQL response is missing data")
        return data

    async def _post_json(
        self,
        *,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.RequestError as exc:
            raise ShopifyApiError(message=f"Network error while calling Shopify: {exc}") from exc

        if response.status_code == 429:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            logger.info("shopify.throttled", extra={"url": url, "retry_after": retry_after})
            raise ShopifyThrottledError(
                message=f"Shopify API rate limit exceeded (429): {response.text}",
                retry_after=retry_after,
            )
        if response.status_code >= 400:
            raise ShopifyApiError(
                message=f"Shopify API call failed ({response.status_code}): {response.text}",
                status_code=502,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ShopifyApiError(message="Shopify API returned invalid JSON") from exc

        if not isinstance(body, dict):
            raise ShopifyApiError(message="Shopify API response must be a JSON object")
        return body
