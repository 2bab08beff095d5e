from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from inventory_app.inventory.errors import NotFound, RemoteRejected
from inventory_app.inventory.intent import VariantInventoryIntent
from inventory_app.inventory.retry import RetryPolicy
from inventory_app.shopify_api import ShopifyApiClient
from inventory_app.shopify_types import InventoryItemState, MutationRejected, MutationResult, ShopSession

logger = logging.getLogger(__name__)


class PreconditionStep(str, Enum):
    ENABLE_TRACKING = "enable_tracking"
    SET_SKU = "set_sku"
    ACTIVATE_AT_LOCATION = "activate_at_location"


@dataclass(frozen=True)
class ResolvedPreconditions:
    state: InventoryItemState
    applied_steps: tuple[PreconditionStep, ...]


class PreconditionResolver:
    """Brings tracking, SKU and location activation in line with an intent.

    Every step re-checks the state read at the start of the call and is skipped
    when already satisfied, so re-running the same intent issues no redundant
    mutations. A rejected step stops the run; steps already applied stay.
    """

    def __init__(self, api: ShopifyApiClient, retry_policy: RetryPolicy) -> None:
        self._api = api
        self._retry = retry_policy

    async def read_state(self, session: ShopSession, intent: VariantInventoryIntent) -> InventoryItemState:
        state = await self._retry.run(
            lambda: self._api.get_inventory_item(
                shop_domain=session.shop_domain,
                access_token=session.access_token,
                inventory_item_gid=intent.inventory_item_id,
                location_gid=intent.location_id,
            ),
            description="get_inventory_item",
        )
        if state is None:
            raise NotFound(resource="InventoryItem", identifier=intent.inventory_item_id)
        return state

    async def resolve(
        self,
        session: ShopSession,
        intent: VariantInventoryIntent,
        *,
        applied: list[PreconditionStep] | None = None,
    ) -> ResolvedPreconditions:
        # `applied` is filled as steps land, so callers still see them when a later step is rejected.
        if applied is None:
            applied = []
        state = await self.read_state(session, intent)

        if intent.tracked and not state.tracked:
            await self._apply(
                PreconditionStep.ENABLE_TRACKING,
                intent,
                lambda: self._api.set_inventory_tracked(
                    shop_domain=session.shop_domain,
                    access_token=session.access_token,
                    inventory_item_gid=intent.inventory_item_id,
                    tracked=True,
                ),
            )
            applied.append(PreconditionStep.ENABLE_TRACKING)

        if intent.sku is not None and intent.sku != state.sku:
            if state.sku:
                logger.warning(
                    "inventory.preconditions.sku_replaced",
                    extra={
                        "inventory_item_id": intent.inventory_item_id,
                        "previous_sku": state.sku,
                        "sku": intent.sku,
                    },
                )
            await self._apply(
                PreconditionStep.SET_SKU,
                intent,
                lambda: self._api.set_inventory_sku(
                    shop_domain=session.shop_domain,
                    access_token=session.access_token,
                    inventory_item_gid=intent.inventory_item_id,
                    sku=intent.sku,
                ),
            )
            applied.append(PreconditionStep.SET_SKU)

        if intent.tracked and intent.location_id is not None and state.inventory_level is None:
            await self._apply(
                PreconditionStep.ACTIVATE_AT_LOCATION,
                intent,
                lambda: self._api.activate_inventory(
                    shop_domain=session.shop_domain,
                    access_token=session.access_token,
                    inventory_item_gid=intent.inventory_item_id,
                    location_gid=intent.location_id,
                ),
            )
            applied.append(PreconditionStep.ACTIVATE_AT_LOCATION)

        return ResolvedPreconditions(state=state, applied_steps=tuple(applied))

    async def _apply(self, step: PreconditionStep, intent: VariantInventoryIntent, operation) -> None:
        result: MutationResult = await self._retry.run(operation, description=step.value)
        if isinstance(result, MutationRejected):
            logger.error(
                "inventory.preconditions.rejected",
                extra={
                    "inventory_item_id": intent.inventory_item_id,
                    "step": step.value,
                    "user_errors": result.summary,
                },
            )
            raise RemoteRejected(step=step.value, user_errors=result.user_errors)
        logger.info(
            "inventory.preconditions.applied",
            extra={"inventory_item_id": intent.inventory_item_id, "step": step.value},
        )
