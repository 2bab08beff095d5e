from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class UpsertInstallationRequest(BaseModel):
    adminAccessToken: str = Field(min_length=1)
    scopes: list[str] = Field(default_factory=list)


class InstallationResponse(BaseModel):
    shopDomain: str
    scopes: list[str]
    installedAt: datetime
    updatedAt: datetime
    uninstalledAt: datetime | None


class LocationSummary(BaseModel):
    locationId: str
    name: str
    city: str | None = None
    country: str | None = None


class ListLocationsResponse(BaseModel):
    shopDomain: str
    locations: list[LocationSummary]


class InventoryLevelSummary(BaseModel):
    inventoryLevelId: str | None = None
    inventoryItemId: str | None = None
    locationId: str
    available: int | None = None
    updatedAt: datetime | None = None


class ListInventoryLevelsResponse(BaseModel):
    shopDomain: str
    locationId: str
    inventoryLevels: list[InventoryLevelSummary]


class ReconcileInventoryRequest(BaseModel):
    shopDomain: str = Field(min_length=1)
    variantId: str | None = None
    # Raw form value; blank and non-numeric input count as 0.
    available: int | float | str | None = None
    locationId: str | None = None
    sku: str | None = None
    tracked: bool = True


class ReconcileInventoryResponse(BaseModel):
    shopDomain: str
    inventoryItemId: str
    outcome: str
    reason: str | None = None
    code: str | None = None
    message: str | None = None
    finalQuantity: int | None = None
    updatedAt: datetime | None = None
    verificationMismatch: bool = False
    appliedSteps: list[str] = Field(default_factory=list)
    stages: list[str] = Field(default_factory=list)
    details: list[dict[str, Any]] = Field(default_factory=list)
