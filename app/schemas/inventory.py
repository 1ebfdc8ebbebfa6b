# app/schemas/inventory.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StringConstraints

from app.models.inventory import MappingStatus, ProviderType


class ProviderCreate(BaseModel):
    name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]
    provider_type: ProviderType
    api_endpoint: Annotated[str, StringConstraints(strip_whitespace=True, max_length=500)] | None = None
    api_key: Annotated[str, StringConstraints(strip_whitespace=True, max_length=255)] | None = None
    is_active: bool = True
    sync_frequency: int = Field(default=60, gt=0, description="Minutes between scheduled syncs")


class ProviderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    provider_type: str
    api_endpoint: str | None = None
    is_active: bool
    connection_status: str
    last_error: str | None = None
    sync_frequency: int
    last_sync_date: datetime | None = None
    sync_generation: int


class SyncAccepted(BaseModel):
    provider_id: int
    status: str = "queued"


class AutoMapResponse(BaseModel):
    provider_id: int
    total: int
    mapped: int
    mapping_ids: list[int]


class InventoryItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    provider_id: int
    external_id: str
    external_ndc: str | None = None
    name: str
    quantity: int
    unit: str | None = None
    price: Decimal | None = None
    wholesale_price: Decimal | None = None
    retail_price: Decimal | None = None
    in_stock: bool
    location: str | None = None
    reorder_point: int | None = None
    reorder_quantity: int | None = None
    last_updated: datetime


class MappingCreate(BaseModel):
    medication_id: int
    inventory_item_id: int
    is_primary: bool = Field(default=False, validation_alias=AliasChoices("is_primary", "isPrimary"))


class MappingUpdate(BaseModel):
    is_primary: bool | None = Field(default=None, validation_alias=AliasChoices("is_primary", "isPrimary"))
    mapping_status: MappingStatus | None = Field(
        default=None, validation_alias=AliasChoices("mapping_status", "mappingStatus")
    )


class MappingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    medication_id: int
    inventory_item_id: int
    is_primary: bool
    mapping_type: str
    mapping_status: str
    mapping_confidence: float | None = None
    created_at: datetime


class PrimaryResolution(BaseModel):
    medication_id: int
    mapping: MappingResponse
    item: InventoryItemResponse


class AvailabilitySourceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    mapping_id: int
    inventory_item_id: int
    provider_id: int
    provider_name: str
    quantity: int
    in_stock: bool
    location: str | None = None
    price: Decimal | None = None
    retail_price: Decimal | None = None
    is_primary: bool


class MedicationAvailabilityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    medication_id: int
    sources: list[AvailabilitySourceResponse]
    total_quantity: int
    in_stock: bool
    primary: AvailabilitySourceResponse | None = None
