from __future__ import annotations

import asyncio

import pytest

from inventory_app.inventory import (
    FailureReason,
    InventoryReconciler,
    KeyedLock,
    Outcome,
    ReconciliationStage,
    RetryPolicy,
    validate_intent,
)
from inventory_app.shopify_api import ShopifyApiError
from inventory_app.shopify_types import UserError

LOCATION_GID = "gid://shopify/Location/1"


def _reconciler(api, sleep, **kwargs) -> InventoryReconciler:
    return InventoryReconciler(
        api,
        retry_policy=RetryPolicy(max_attempts=3, base_delay_seconds=0.5, sleep=sleep),
        **kwargs,
    )


def _intent(**overrides):
    fields = {
        "inventory_item_id": "111",
        "quantity": 10,
        "tracked": True,
        "sku": "ABC",
        "location_id": "1",
    }
    fields.update(overrides)
    return validate_intent(**fields)


def test_reconcile_untracked_item_runs_every_precondition_in_order(fake_api, shop_session, recorded_sleeps):
    result = asyncio.run(_reconciler(fake_api, recorded_sleeps).reconcile(shop_session, _intent()))

    assert fake_api.calls == [
        ("set_inventory_tracked", True),
        ("set_inventory_sku", "ABC"),
        ("activate_inventory", LOCATION_GID),
        ("set_on_hand_quantity", 10),
    ]
    assert result.outcome is Outcome.SUCCEEDED
    assert result.final_quantity == 10
    assert result.verification_mismatch is False
    assert result.applied_steps == (
        "enable_tracking",
        "set_sku",
        "activate_at_location",
        "set_on_hand_quantity",
    )
    assert result.stages == (
        ReconciliationStage.VALIDATING,
        ReconciliationStage.RESOLVING_PRECONDITIONS,
        ReconciliationStage.SETTING_QUANTITY,
        ReconciliationStage.VERIFYING,
        ReconciliationStage.SUCCEEDED,
    )


def test_reconcile_matching_item_only_sets_quantity(fake_api, shop_session, recorded_sleeps):
    fake_api.tracked = True
    fake_api.sku = "ABC"
    fake_api.levels[LOCATION_GID] = 10

    result = asyncio.run(_reconciler(fake_api, recorded_sleeps).reconcile(shop_session, _intent()))

    assert fake_api.calls == [("set_on_hand_quantity", 10)]
    assert result.succeeded
    assert result.final_quantity == 10


def test_reconcile_twice_skips_satisfied_preconditions(fake_api, shop_session, recorded_sleeps):
    reconciler = _reconciler(fake_api, recorded_sleeps)

    first = asyncio.run(reconciler.reconcile(shop_session, _intent()))
    fake_api.calls.clear()
    second = asyncio.run(reconciler.reconcile(shop_session, _intent()))

    assert first.succeeded and second.succeeded
    assert fake_api.mutation_names == ["set_on_hand_quantity"]
    assert second.applied_steps == ("set_on_hand_quantity",)


def test_reconcile_sets_sku_only_when_it_differs(fake_api, shop_session, recorded_sleeps):
    fake_api.tracked = True
    fake_api.sku = "OLD"
    fake_api.levels[LOCATION_GID] = 4

    result = asyncio.run(_reconciler(fake_api, recorded_sleeps).reconcile(shop_session, _intent(quantity=4)))

    assert fake_api.calls == [("set_inventory_sku", "ABC"), ("set_on_hand_quantity", 4)]
    assert result.succeeded


def test_reconcile_retries_throttled_quantity_set(fake_api, shop_session, recorded_sleeps):
    fake_api.tracked = True
    fake_api.sku = "ABC"
    fake_api.levels[LOCATION_GID] = 0
    fake_api.throttles["set_on_hand_quantity"] = 2

    result = asyncio.run(_reconciler(fake_api, recorded_sleeps).reconcile(shop_session, _intent()))

    assert result.outcome is Outcome.SUCCEEDED
    assert result.final_quantity == 10
    assert fake_api.attempts.count("set_on_hand_quantity") == 3
    assert recorded_sleeps.delays == [0.5, 1.0]


def test_reconcile_fails_after_throttling_on_every_attempt(fake_api, shop_session, recorded_sleeps):
    fake_api.tracked = True
    fake_api.sku = "ABC"
    fake_api.levels[LOCATION_GID] = 0
    fake_api.throttles["set_on_hand_quantity"] = 3

    result = asyncio.run(_reconciler(fake_api, recorded_sleeps).reconcile(shop_session, _intent()))

    assert result.outcome is Outcome.FAILED
    assert result.reason is FailureReason.THROTTLED
    assert fake_api.attempts.count("set_on_hand_quantity") == 3
    assert fake_api.calls == []
    assert result.stages[-1] is ReconciliationStage.FAILED


def test_verification_mismatch_keeps_success_and_reports_observed_quantity(
    fake_api, shop_session, recorded_sleeps
):
    fake_api.observed_quantity = 7

    result = asyncio.run(_reconciler(fake_api, recorded_sleeps).reconcile(shop_session, _intent()))

    assert result.outcome is Outcome.SUCCEEDED
    assert result.verification_mismatch is True
    assert result.final_quantity == 7


def test_verification_read_failure_reports_unknown_quantity(fake_api, shop_session, recorded_sleeps):
    fake_api.errors["get_inventory_level"] = ShopifyApiError(message="boom")

    result = asyncio.run(_reconciler(fake_api, recorded_sleeps).reconcile(shop_session, _intent()))

    assert result.outcome is Outcome.SUCCEEDED
    assert result.final_quantity is None
    assert result.verification_mismatch is False


def test_rejected_precondition_stops_without_rollback(fake_api, shop_session, recorded_sleeps):
    fake_api.rejections["set_inventory_sku"] = (UserError(message="SKU is invalid", field=("input", "sku")),)

    result = asyncio.run(_reconciler(fake_api, recorded_sleeps).reconcile(shop_session, _intent()))

    assert result.outcome is Outcome.FAILED
    assert result.reason is FailureReason.REMOTE_REJECTED
    assert result.code == "set_sku"
    assert result.details == ({"message": "SKU is invalid", "field": ["input", "sku"], "code": None},)
    assert result.applied_steps == ("enable_tracking",)
    assert fake_api.mutation_names == ["set_inventory_tracked", "set_inventory_sku"]
    assert fake_api.tracked is True


def test_rejected_quantity_set_is_reported_as_remote_rejected(fake_api, shop_session, recorded_sleeps):
    fake_api.rejections["set_on_hand_quantity"] = (UserError(message="Quantity too large"),)

    result = asyncio.run(_reconciler(fake_api, recorded_sleeps).reconcile(shop_session, _intent()))

    assert result.reason is FailureReason.REMOTE_REJECTED
    assert result.code == "set_on_hand_quantity"
    assert result.final_quantity is None
    assert "get_inventory_level" not in fake_api.attempts


def test_missing_inventory_item_fails_with_not_found(fake_api, shop_session, recorded_sleeps):
    fake_api.exists = False

    result = asyncio.run(_reconciler(fake_api, recorded_sleeps).reconcile(shop_session, _intent()))

    assert result.reason is FailureReason.NOT_FOUND
    assert fake_api.calls == []


@pytest.mark.parametrize(
    ("raw", "code"),
    [
        ({"tracked": True, "quantity": 5, "sku": ""}, "sku_required"),
        ({"tracked": True, "quantity": 5, "sku": "", "location_id": None}, "sku_required"),
        ({"tracked": False, "quantity": 3, "sku": "ABC"}, "tracking_required"),
        ({"tracked": True, "quantity": 0, "location_id": None}, "location_required"),
        ({"quantity": "-4"}, "negative_quantity"),
    ],
)
def test_invalid_raw_intent_fails_without_remote_calls(fake_api, shop_session, recorded_sleeps, raw, code):
    payload = {"inventory_item_id": "111", "quantity": 1, "tracked": True, "sku": "ABC", "location_id": "1"}
    payload.update(raw)

    result = asyncio.run(_reconciler(fake_api, recorded_sleeps).reconcile(shop_session, payload))

    assert result.reason is FailureReason.VALIDATION
    assert result.code == code
    assert result.stages == (ReconciliationStage.VALIDATING, ReconciliationStage.FAILED)
    assert fake_api.attempts == []


def test_raw_intent_without_quantity_sets_zero(fake_api, shop_session, recorded_sleeps):
    fake_api.tracked = True
    fake_api.sku = "ABC"
    fake_api.levels["gid://shopify/Location/1"] = 4
    payload = {"inventory_item_id": "111", "tracked": True, "sku": "ABC", "location_id": "1"}

    result = asyncio.run(_reconciler(fake_api, recorded_sleeps).reconcile(shop_session, payload))

    assert result.succeeded
    assert fake_api.calls == [("set_on_hand_quantity", 0)]
    assert result.final_quantity == 0


def test_raw_intent_accepts_camel_case_keys(fake_api, shop_session, recorded_sleeps):
    payload = {
        "inventoryItemId": "111",
        "variantId": "42",
        "quantity": 5,
        "tracked": True,
        "sku": "ABC",
        "locationId": "1",
        "title": "ignored",
    }

    result = asyncio.run(_reconciler(fake_api, recorded_sleeps).reconcile(shop_session, payload))

    assert result.succeeded
    assert result.final_quantity == 5
    assert fake_api.levels == {"gid://shopify/Location/1": 5}


def test_raw_intent_without_item_id_fails_validation(fake_api, shop_session, recorded_sleeps):
    payload = {"quantity": 0, "tracked": True, "location_id": "1"}

    result = asyncio.run(_reconciler(fake_api, recorded_sleeps).reconcile(shop_session, payload))

    assert result.reason is FailureReason.VALIDATION
    assert result.code == "invalid_identifier"
    assert fake_api.attempts == []


def test_untracked_intent_without_quantity_skips_quantity_step(fake_api, shop_session, recorded_sleeps):
    intent = validate_intent(inventory_item_id="111", quantity="", tracked=False, sku="XYZ")

    result = asyncio.run(_reconciler(fake_api, recorded_sleeps).reconcile(shop_session, intent))

    assert result.succeeded
    assert fake_api.calls == [("set_inventory_sku", "XYZ")]
    assert result.final_quantity is None
    assert ReconciliationStage.SETTING_QUANTITY not in result.stages


def test_unrecoverable_remote_error_propagates(fake_api, shop_session, recorded_sleeps):
    fake_api.errors["get_inventory_item"] = ShopifyApiError(message="Shopify API call failed (500)")

    with pytest.raises(ShopifyApiError):
        asyncio.run(_reconciler(fake_api, recorded_sleeps).reconcile(shop_session, _intent()))

    assert fake_api.attempts == ["get_inventory_item"]


def test_same_item_reconciliations_are_serialized_with_item_locks(fake_api, shop_session, recorded_sleeps):
    locks = KeyedLock()
    reconciler = _reconciler(fake_api, recorded_sleeps, item_locks=locks)

    async def run_both():
        return await asyncio.gather(
            reconciler.reconcile(shop_session, _intent(quantity=3)),
            reconciler.reconcile(shop_session, _intent(quantity=8)),
        )

    first, second = asyncio.run(run_both())

    assert first.succeeded and second.succeeded
    # The second run sees tracking, SKU and activation already in place.
    assert fake_api.mutation_names == [
        "set_inventory_tracked",
        "set_inventory_sku",
        "activate_inventory",
        "set_on_hand_quantity",
        "set_on_hand_quantity",
    ]
    assert fake_api.levels[LOCATION_GID] == 8
    assert len(locks) == 0
