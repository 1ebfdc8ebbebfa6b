# app/api/v1/endpoints/inventory.py
from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.orm import Session

from app.background.tasks import enqueue_task
from app.background.workers import sync_provider_job
from app.core.database import get_db
from app.dependencies.authz import get_current_user, require_staff
from app.models.user import User
from app.schemas.inventory import (
    AutoMapResponse,
    InventoryItemResponse,
    MappingCreate,
    MappingResponse,
    MappingUpdate,
    MedicationAvailabilityResponse,
    PrimaryResolution,
    ProviderCreate,
    ProviderResponse,
    SyncAccepted,
)
from app.services import inventory_matcher, inventory_service

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/providers", response_model=list[ProviderResponse])
def list_providers(
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
) -> list[ProviderResponse]:
    return [ProviderResponse.model_validate(p) for p in inventory_service.list_providers(db)]


@router.post("/providers", response_model=ProviderResponse, status_code=status.HTTP_201_CREATED)
def create_provider(
    payload: ProviderCreate,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
) -> ProviderResponse:
    provider = inventory_service.create_provider(
        db,
        name=payload.name,
        provider_type=payload.provider_type.value,
        api_endpoint=payload.api_endpoint,
        api_key=payload.api_key,
        is_active=payload.is_active,
        sync_frequency=payload.sync_frequency,
    )
    return ProviderResponse.model_validate(provider)


@router.get("/providers/{provider_id}/items", response_model=list[InventoryItemResponse])
def list_provider_items(
    provider_id: int,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
) -> list[InventoryItemResponse]:
    items = inventory_service.list_provider_items(db, provider_id)
    return [InventoryItemResponse.model_validate(i) for i in items]


@router.post(
    "/providers/{provider_id}/sync",
    response_model=SyncAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
def trigger_sync(
    provider_id: int,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
) -> SyncAccepted:
    """
    Queue an ingestion run. The provider's connection_status and
    last_sync_date show the outcome.
    """
    inventory_service.get_provider(db, provider_id)
    enqueue_task(background_tasks, sync_provider_job, provider_id)
    logger.info("User %s queued sync of provider %s", current_user.id, provider_id)
    return SyncAccepted(provider_id=provider_id)


@router.post("/providers/{provider_id}/check-connection", response_model=ProviderResponse)
def check_connection(
    provider_id: int,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
) -> ProviderResponse:
    provider = inventory_service.check_provider_connection(db, provider_id)
    return ProviderResponse.model_validate(provider)


@router.post("/providers/{provider_id}/auto-map", response_model=AutoMapResponse)
def auto_map(
    provider_id: int,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
) -> AutoMapResponse:
    result = inventory_matcher.auto_map_provider_items(db, provider_id)
    return AutoMapResponse(
        provider_id=result.provider_id,
        total=result.total,
        mapped=result.mapped,
        mapping_ids=result.mapping_ids,
    )


@router.post("/mappings", response_model=MappingResponse, status_code=status.HTTP_201_CREATED)
def create_mapping(
    payload: MappingCreate,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
) -> MappingResponse:
    mapping = inventory_service.map_item_manually(
        db,
        medication_id=payload.medication_id,
        inventory_item_id=payload.inventory_item_id,
        is_primary=payload.is_primary,
    )
    return MappingResponse.model_validate(mapping)


@router.put("/mappings/{mapping_id}", response_model=MappingResponse)
def update_mapping(
    mapping_id: int,
    payload: MappingUpdate,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
) -> MappingResponse:
    mapping = inventory_service.update_mapping(
        db,
        mapping_id,
        is_primary=payload.is_primary,
        mapping_status=payload.mapping_status.value if payload.mapping_status else None,
    )
    return MappingResponse.model_validate(mapping)


@router.get("/medications/{medication_id}/mappings", response_model=list[MappingResponse])
def list_mappings(
    medication_id: int,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
) -> list[MappingResponse]:
    mappings = inventory_service.list_mappings_for_medication(db, medication_id)
    return [MappingResponse.model_validate(m) for m in mappings]


@router.get("/medications/{medication_id}/primary", response_model=PrimaryResolution)
def resolve_primary(
    medication_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> PrimaryResolution:
    mapping, item = inventory_service.resolve_primary_mapping(db, medication_id)
    return PrimaryResolution(
        medication_id=medication_id,
        mapping=MappingResponse.model_validate(mapping),
        item=InventoryItemResponse.model_validate(item),
    )


@router.get("/medications/{medication_id}/availability", response_model=MedicationAvailabilityResponse)
def medication_availability(
    medication_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> MedicationAvailabilityResponse:
    availability = inventory_service.medication_availability(db, medication_id)
    return MedicationAvailabilityResponse.model_validate(availability)
