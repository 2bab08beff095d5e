from __future__ import annotations

from datetime import datetime, timedelta, timezone

from fastapi import Depends, FastAPI, HTTPException, Query, status
from fastapi.responses import ORJSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_app.config import settings
from inventory_app.db import get_session, init_db
from inventory_app.inventory import (
    FailureReason,
    InventoryReconciler,
    KeyedLock,
    ReconciliationResult,
    ValidationError,
    validate_intent,
)
from inventory_app.logging_config import configure_logging
from inventory_app.models import ShopInstallation
from inventory_app.schemas import (
    InstallationResponse,
    InventoryLevelSummary,
    ListInventoryLevelsResponse,
    ListLocationsResponse,
    LocationSummary,
    ReconcileInventoryRequest,
    ReconcileInventoryResponse,
    UpsertInstallationRequest,
)
from inventory_app.security import normalize_shop_domain, require_internal_api_token
from inventory_app.shopify_api import ShopifyApiClient, ShopifyApiError
from inventory_app.shopify_types import ShopSession

app = FastAPI(title="Shopify Inventory Reconciler", default_response_class=ORJSONResponse)
shopify_api = ShopifyApiClient()
inventory_locks = KeyedLock()

_FAILURE_STATUS_CODES = {
    FailureReason.VALIDATION: status.HTTP_400_BAD_REQUEST,
    FailureReason.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    FailureReason.REMOTE_REJECTED: status.HTTP_409_CONFLICT,
    FailureReason.THROTTLED: status.HTTP_429_TOO_MANY_REQUESTS,
}


@app.on_event("startup")
def startup() -> None:
    configure_logging()
    init_db()


@app.get("/health")
def health() -> dict[str, bool]:
    return {"ok": True}


def _serialize_installation(installation: ShopInstallation) -> InstallationResponse:
    scopes = [scope.strip() for scope in installation.scopes.split(",") if scope.strip()]
    return InstallationResponse(
        shopDomain=installation.shop_domain,
        scopes=scopes,
        installedAt=installation.installed_at,
        updatedAt=installation.updated_at,
        uninstalledAt=installation.uninstalled_at,
    )


def _find_installation(*, shop_domain: str, session: Session) -> ShopInstallation | None:
    return session.scalars(select(ShopInstallation).where(ShopInstallation.shop_domain == shop_domain)).first()


def _resolve_shop_session(*, shop_domain: str, session: Session) -> ShopSession:
    normalized_shop = normalize_shop_domain(shop_domain)
    installation = _find_installation(shop_domain=normalized_shop, session=session)
    if not installation or installation.uninstalled_at is not None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No active Shopify installation found for shopDomain={normalized_shop}",
        )
    return ShopSession(shop_domain=installation.shop_domain, access_token=installation.admin_access_token)


@app.get("/admin/installations", dependencies=[Depends(require_internal_api_token)])
def list_installations(session: Session = Depends(get_session)):
    installations = session.scalars(select(ShopInstallation).order_by(ShopInstallation.updated_at.desc())).all()
    return [_serialize_installation(installation) for installation in installations]


@app.put(
    "/admin/installations/{shop_domain}",
    response_model=InstallationResponse,
    dependencies=[Depends(require_internal_api_token)],
)
def upsert_installation(
    shop_domain: str,
    payload: UpsertInstallationRequest,
    session: Session = Depends(get_session),
):
    normalized_shop = normalize_shop_domain(shop_domain)
    token = payload.adminAccessToken.strip()
    if not token:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="adminAccessToken must not be blank")
    scopes = ",".join(scope.strip() for scope in payload.scopes if scope.strip())

    installation = _find_installation(shop_domain=normalized_shop, session=session)
    if installation is None:
        installation = ShopInstallation(shop_domain=normalized_shop, admin_access_token=token, scopes=scopes)
    else:
        installation.admin_access_token = token
        installation.scopes = scopes
        installation.uninstalled_at = None
        installation.updated_at = datetime.now(timezone.utc)
    session.add(installation)
    session.commit()
    session.refresh(installation)
    return _serialize_installation(installation)


@app.delete(
    "/admin/installations/{shop_domain}",
    response_model=InstallationResponse,
    dependencies=[Depends(require_internal_api_token)],
)
def uninstall_installation(shop_domain: str, session: Session = Depends(get_session)):
    normalized_shop = normalize_shop_domain(shop_domain)
    installation = _find_installation(shop_domain=normalized_shop, session=session)
    if not installation:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Shop installation not found")
    now = datetime.now(timezone.utc)
    installation.uninstalled_at = now
    installation.updated_at = now
    session.add(installation)
    session.commit()
    session.refresh(installation)
    return _serialize_installation(installation)


@app.get(
    "/api/locations",
    response_model=ListLocationsResponse,
    dependencies=[Depends(require_internal_api_token)],
)
async def list_locations(shopDomain: str, session: Session = Depends(get_session)):
    shop_session = _resolve_shop_session(shop_domain=shopDomain, session=session)
    try:
        locations = await shopify_api.list_locations(
            shop_domain=shop_session.shop_domain,
            access_token=shop_session.access_token,
        )
    except ShopifyApiError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc

    return ListLocationsResponse(
        shopDomain=shop_session.shop_domain,
        locations=[
            LocationSummary(
                locationId=location.location_id,
                name=location.name,
                city=location.city,
                country=location.country,
            )
            for location in locations
        ],
    )


@app.get(
    "/api/inventory-levels",
    response_model=ListInventoryLevelsResponse,
    dependencies=[Depends(require_internal_api_token)],
)
async def list_recent_inventory_levels(
    shopDomain: str,
    updatedSinceSeconds: int | None = Query(default=None, ge=1),
    session: Session = Depends(get_session),
):
    shop_session = _resolve_shop_session(shop_domain=shopDomain, session=session)
    window_seconds = updatedSinceSeconds or settings.INVENTORY_RECENT_LEVELS_WINDOW_SECONDS
    try:
        locations = await shopify_api.list_locations(
            shop_domain=shop_session.shop_domain,
            access_token=shop_session.access_token,
            limit=1,
        )
        if not locations:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No location ID found in shop.")
        location_id = locations[0].location_id
        levels = await shopify_api.list_recent_inventory_levels(
            shop_domain=shop_session.shop_domain,
            access_token=shop_session.access_token,
            location_gid=location_id,
            updated_since=datetime.now(timezone.utc) - timedelta(seconds=window_seconds),
        )
    except ShopifyApiError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc

    return ListInventoryLevelsResponse(
        shopDomain=shop_session.shop_domain,
        locationId=location_id,
        inventoryLevels=[
            InventoryLevelSummary(
                inventoryLevelId=level.level_id,
                inventoryItemId=level.inventory_item_id,
                locationId=level.location_id,
                available=level.available,
                updatedAt=level.updated_at,
            )
            for level in levels
        ],
    )


def _serialize_result(
    *,
    shop_domain: str,
    inventory_item_id: str,
    result: ReconciliationResult,
) -> ORJSONResponse:
    response = ReconcileInventoryResponse(
        shopDomain=shop_domain,
        inventoryItemId=inventory_item_id,
        **result.to_dict(),
    )
    status_code = status.HTTP_200_OK
    if result.reason is not None:
        status_code = _FAILURE_STATUS_CODES[result.reason]
    return ORJSONResponse(status_code=status_code, content=response.model_dump(mode="json"))


@app.put(
    "/api/inventory-levels/{inventory_item_id}",
    response_model=ReconcileInventoryResponse,
    dependencies=[Depends(require_internal_api_token)],
)
async def reconcile_inventory_level(
    inventory_item_id: str,
    payload: ReconcileInventoryRequest,
    session: Session = Depends(get_session),
):
    shop_session = _resolve_shop_session(shop_domain=payload.shopDomain, session=session)
    reconciler = InventoryReconciler(shopify_api, item_locks=inventory_locks)
    raw_intent = {
        "inventory_item_id": inventory_item_id,
        "quantity": payload.available,
        "tracked": payload.tracked,
        "sku": payload.sku,
        "location_id": payload.locationId,
        "variant_id": payload.variantId,
    }
    try:
        intent = validate_intent(**raw_intent)
    except ValidationError:
        # Let the reconciler produce the FAILED result so the response shape is the same.
        result = await reconciler.reconcile(shop_session, raw_intent)
        return _serialize_result(
            shop_domain=shop_session.shop_domain,
            inventory_item_id=inventory_item_id,
            result=result,
        )

    try:
        if intent.location_id is not None:
            location = await shopify_api.get_location(
                shop_domain=shop_session.shop_domain,
                access_token=shop_session.access_token,
                location_gid=intent.location_id,
            )
            if location is None:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Invalid location ID: {intent.location_id}",
                )
        result = await reconciler.reconcile(shop_session, intent)
    except ShopifyApiError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc

    return _serialize_result(
        shop_domain=shop_session.shop_domain,
        inventory_item_id=intent.inventory_item_id,
        result=result,
    )
