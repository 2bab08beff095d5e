from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from inventory_app.inventory.errors import NotFound, RemoteRejected, ValidationError
from inventory_app.inventory.intent import VariantInventoryIntent, intent_from_mapping
from inventory_app.inventory.locks import KeyedLock
from inventory_app.inventory.preconditions import PreconditionResolver, PreconditionStep
from inventory_app.inventory.quantity import SET_QUANTITY_STEP, QuantitySetter
from inventory_app.inventory.results import (
    FailureReason,
    Outcome,
    ReconciliationResult,
    ReconciliationStage,
)
from inventory_app.inventory.retry import RetryPolicy
from inventory_app.shopify_api import ShopifyApiClient, ShopifyThrottledError
from inventory_app.shopify_types import ShopSession

logger = logging.getLogger(__name__)


class InventoryReconciler:
    """Drives one variant's inventory to a requested tracked/SKU/location/quantity state.

    Stages run in a fixed order and each is visited at most once:
    validating -> resolving_preconditions -> setting_quantity -> verifying,
    ending in succeeded or failed. Validation, missing items, Shopify user
    errors and exhausted throttling end in a FAILED result; any other
    ShopifyApiError propagates to the caller.
    """

    def __init__(
        self,
        api: ShopifyApiClient,
        *,
        retry_policy: RetryPolicy | None = None,
        item_locks: KeyedLock | None = None,
        adjustment_reason: str | None = None,
    ) -> None:
        policy = retry_policy or RetryPolicy.from_settings()
        self._resolver = PreconditionResolver(api, policy)
        self._quantity = QuantitySetter(api, policy, reason=adjustment_reason)
        self._item_locks = item_locks

    async def reconcile(
        self,
        session: ShopSession,
        intent: VariantInventoryIntent | Mapping[str, Any],
    ) -> ReconciliationResult:
        stages = [ReconciliationStage.VALIDATING]
        try:
            validated = intent if isinstance(intent, VariantInventoryIntent) else intent_from_mapping(intent)
        except ValidationError as exc:
            logger.info("inventory.reconcile.invalid", extra={"code": exc.code})
            return self._failed(stages, FailureReason.VALIDATION, code=exc.code, message=str(exc))

        if self._item_locks is None:
            return await self._run(session, validated, stages)
        async with self._item_locks.hold(validated.inventory_item_id):
            return await self._run(session, validated, stages)

    async def _run(
        self,
        session: ShopSession,
        intent: VariantInventoryIntent,
        stages: list[ReconciliationStage],
    ) -> ReconciliationResult:
        applied_steps: list[str] = []
        preconditions: list[PreconditionStep] = []
        log_context = {"shop_domain": session.shop_domain, "inventory_item_id": intent.inventory_item_id}
        try:
            stages.append(ReconciliationStage.RESOLVING_PRECONDITIONS)
            try:
                await self._resolver.resolve(session, intent, applied=preconditions)
            finally:
                applied_steps.extend(step.value for step in preconditions)

            if not intent.sets_quantity:
                stages.append(ReconciliationStage.SUCCEEDED)
                logger.info("inventory.reconcile.succeeded", extra={**log_context, "quantity_set": False})
                return ReconciliationResult(
                    outcome=Outcome.SUCCEEDED,
                    applied_steps=tuple(applied_steps),
                    stages=tuple(stages),
                )

            stages.append(ReconciliationStage.SETTING_QUANTITY)
            await self._quantity.set_quantity(session, intent)
            applied_steps.append(SET_QUANTITY_STEP)
        except NotFound as exc:
            logger.info("inventory.reconcile.not_found", extra=log_context)
            return self._failed(
                stages,
                FailureReason.NOT_FOUND,
                code=exc.resource,
                message=str(exc),
                applied_steps=applied_steps,
            )
        except RemoteRejected as exc:
            return self._failed(
                stages,
                FailureReason.REMOTE_REJECTED,
                code=exc.step,
                message=str(exc),
                applied_steps=applied_steps,
                details=tuple(error.to_dict() for error in exc.user_errors),
            )
        except ShopifyThrottledError as exc:
            logger.warning("inventory.reconcile.throttled", extra=log_context)
            return self._failed(
                stages,
                FailureReason.THROTTLED,
                message=str(exc),
                applied_steps=applied_steps,
            )

        stages.append(ReconciliationStage.VERIFYING)
        verification = await self._quantity.verify(session, intent)
        stages.append(ReconciliationStage.SUCCEEDED)
        logger.info(
            "inventory.reconcile.succeeded",
            extra={
                **log_context,
                "quantity": intent.quantity,
                "observed": verification.observed_quantity,
                "applied_steps": applied_steps,
            },
        )
        return ReconciliationResult(
            outcome=Outcome.SUCCEEDED,
            final_quantity=verification.observed_quantity,
            updated_at=verification.updated_at,
            verification_mismatch=verification.mismatch,
            applied_steps=tuple(applied_steps),
            stages=tuple(stages),
        )

    @staticmethod
    def _failed(
        stages: list[ReconciliationStage],
        reason: FailureReason,
        *,
        code: str | None = None,
        message: str | None = None,
        applied_steps: list[str] | None = None,
        details: tuple[dict[str, Any], ...] = (),
    ) -> ReconciliationResult:
        stages.append(ReconciliationStage.FAILED)
        return ReconciliationResult(
            outcome=Outcome.FAILED,
            reason=reason,
            code=code,
            message=message,
            applied_steps=tuple(applied_steps or ()),
            stages=tuple(stages),
            details=details,
        )
