from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from inventory_app.config import settings
from inventory_app.inventory.errors import RemoteRejected
from inventory_app.inventory.intent import VariantInventoryIntent
from inventory_app.inventory.retry import RetryPolicy
from inventory_app.shopify_api import ShopifyApiClient, ShopifyApiError
from inventory_app.shopify_types import MutationRejected, ShopSession

logger = logging.getLogger(__name__)

SET_QUANTITY_STEP = "set_on_hand_quantity"


@dataclass(frozen=True)
class QuantityVerification:
    requested_quantity: int
    observed_quantity: int | None
    updated_at: datetime | None

    @property
    def confirmed(self) -> bool:
        return self.observed_quantity is not None

    @property
    def mismatch(self) -> bool:
        return self.observed_quantity is not None and self.observed_quantity != self.requested_quantity


class QuantitySetter:
    def __init__(self, api: ShopifyApiClient, retry_policy: RetryPolicy, *, reason: str | None = None) -> None:
        self._api = api
        self._retry = retry_policy
        self._reason = reason or settings.INVENTORY_ADJUSTMENT_REASON

    async def set_quantity(self, session: ShopSession, intent: VariantInventoryIntent) -> None:
        # Absolute set: repeating it after a throttled attempt cannot double count.
        result = await self._retry.run(
            lambda: self._api.set_on_hand_quantity(
                shop_domain=session.shop_domain,
                access_token=session.access_token,
                inventory_item_gid=intent.inventory_item_id,
                location_gid=intent.location_id,
                quantity=intent.quantity,
                reason=self._reason,
            ),
            description=SET_QUANTITY_STEP,
        )
        if isinstance(result, MutationRejected):
            logger.error(
                "inventory.quantity.rejected",
                extra={
                    "inventory_item_id": intent.inventory_item_id,
                    "location_id": intent.location_id,
                    "user_errors": result.summary,
                },
            )
            raise RemoteRejected(step=SET_QUANTITY_STEP, user_errors=result.user_errors)
        logger.info(
            "inventory.quantity.set",
            extra={
                "inventory_item_id": intent.inventory_item_id,
                "location_id": intent.location_id,
                "quantity": intent.quantity,
            },
        )

    async def verify(self, session: ShopSession, intent: VariantInventoryIntent) -> QuantityVerification:
        try:
            level = await self._retry.run(
                lambda: self._api.get_inventory_level(
                    shop_domain=session.shop_domain,
                    access_token=session.access_token,
                    inventory_item_gid=intent.inventory_item_id,
                    location_gid=intent.location_id,
                ),
                description="get_inventory_level",
            )
        except ShopifyApiError as exc:
            logger.warning(
                "inventory.quantity.verification_read_failed",
                extra={"inventory_item_id": intent.inventory_item_id, "error": str(exc)},
            )
            return QuantityVerification(requested_quantity=intent.quantity, observed_quantity=None, updated_at=None)

        if level is None or level.available is None:
            logger.warning(
                "inventory.quantity.verification_level_missing",
                extra={"inventory_item_id": intent.inventory_item_id, "location_id": intent.location_id},
            )
            return QuantityVerification(
                requested_quantity=intent.quantity,
                observed_quantity=None,
                updated_at=level.updated_at if level else None,
            )

        verification = QuantityVerification(
            requested_quantity=intent.quantity,
            observed_quantity=level.available,
            updated_at=level.updated_at,
        )
        if verification.mismatch:
            logger.warning(
                "inventory.quantity.verification_mismatch",
                extra={
                    "inventory_item_id": intent.inventory_item_id,
                    "location_id": intent.location_id,
                    "requested": intent.quantity,
                    "observed": level.available,
                },
            )
        return verification
