# app/api/v1/endpoints/prescriptions.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.dependencies.authz import ensure_owner_or_staff, get_current_user, require_staff
from app.models.user import User
from app.schemas.order import OrderResponse
from app.schemas.prescription import (
    CanShipResponse,
    PrescriptionCreate,
    PrescriptionResponse,
    PrescriptionRevoke,
    PrescriptionRevokeResponse,
)
from app.services import order_service, prescription_service

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("", response_model=PrescriptionResponse, status_code=status.HTTP_201_CREATED)
def create_prescription(
    payload: PrescriptionCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> PrescriptionResponse:
    user_id = payload.user_id or current_user.id
    ensure_owner_or_staff(current_user, user_id)

    prescription = prescription_service.create_prescription(
        db,
        user_id=user_id,
        doctor_name=payload.doctor_name,
        doctor_phone=payload.doctor_phone,
        file_url=payload.file_url,
        notes=payload.notes,
    )
    return PrescriptionResponse.model_validate(prescription)


@router.get("/user/{user_id}", response_model=list[PrescriptionResponse])
def list_user_prescriptions(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[PrescriptionResponse]:
    ensure_owner_or_staff(current_user, user_id)
    prescriptions = prescription_service.list_prescriptions_for_user(db, user_id)
    return [PrescriptionResponse.model_validate(p) for p in prescriptions]


@router.get("/{prescription_id}", response_model=PrescriptionResponse)
def get_prescription(
    prescription_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> PrescriptionResponse:
    prescription = prescription_service.get_prescription(db, prescription_id)
    ensure_owner_or_staff(current_user, prescription.user_id)
    return PrescriptionResponse.model_validate(prescription)


@router.get("/{prescription_id}/orders", response_model=list[OrderResponse])
def list_prescription_orders(
    prescription_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[OrderResponse]:
    prescription = prescription_service.get_prescription(db, prescription_id)
    ensure_owner_or_staff(current_user, prescription.user_id)
    orders = order_service.list_orders_for_prescription(db, prescription_id)
    return [OrderResponse.model_validate(o) for o in orders]


@router.get("/{prescription_id}/can-ship", response_model=CanShipResponse)
def can_ship(
    prescription_id: int,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
) -> CanShipResponse:
    reason = prescription_service.shipping_block_reason(db, prescription_id)
    return CanShipResponse(prescription_id=prescription_id, can_ship=reason is None, reason=reason)


@router.post("/{prescription_id}/verify", response_model=PrescriptionResponse)
def verify_prescription(
    prescription_id: int,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
) -> PrescriptionResponse:
    prescription = prescription_service.verify_prescription(
        db, prescription_id, reviewer_id=current_user.id
    )
    return PrescriptionResponse.model_validate(prescription)


@router.post("/{prescription_id}/revoke", response_model=PrescriptionRevokeResponse)
def revoke_prescription(
    prescription_id: int,
    payload: PrescriptionRevoke | None = None,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
) -> PrescriptionRevokeResponse:
    result = prescription_service.revoke_prescription(
        db, prescription_id, reason=payload.reason if payload else None
    )
    logger.info("User %s revoked prescription %s", current_user.id, prescription_id)
    return PrescriptionRevokeResponse(
        prescription=PrescriptionResponse.model_validate(result.prescription),
        cancelled_order_ids=result.cancelled_order_ids,
    )
