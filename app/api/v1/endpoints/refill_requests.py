# app/api/v1/endpoints/refill_requests.py
from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.dependencies.authz import ensure_owner_or_staff, get_current_user, require_staff
from app.models.user import User
from app.schemas.refill import (
    AutoRefillToggle,
    RefillDecline,
    RefillRequestCreate,
    RefillRequestResponse,
)
from app.services import refill_service

router = APIRouter()


@router.post("", response_model=RefillRequestResponse, status_code=status.HTTP_201_CREATED)
def create_refill_request(
    payload: RefillRequestCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> RefillRequestResponse:
    user_id = payload.user_id or current_user.id
    ensure_owner_or_staff(current_user, user_id)

    request = refill_service.create_refill_request(
        db,
        user_id=user_id,
        medication_id=payload.medication_id,
        prescription_id=payload.prescription_id,
        quantity=payload.quantity,
        refills_authorized=payload.refills_authorized,
        next_refill_date=payload.next_refill_date,
        auto_refill=payload.auto_refill,
        notes=payload.notes,
    )
    return RefillRequestResponse.model_validate(request)


@router.get("", response_model=list[RefillRequestResponse])
def list_my_refill_requests(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[RefillRequestResponse]:
    requests = refill_service.list_refill_requests_for_user(db, current_user.id)
    return [RefillRequestResponse.model_validate(r) for r in requests]


@router.get("/{request_id}", response_model=RefillRequestResponse)
def get_refill_request(
    request_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> RefillRequestResponse:
    request = refill_service.get_refill_request(db, request_id)
    ensure_owner_or_staff(current_user, request.user_id)
    return RefillRequestResponse.model_validate(request)


@router.post("/{request_id}/approve", response_model=RefillRequestResponse)
def approve_refill_request(
    request_id: int,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
) -> RefillRequestResponse:
    return RefillRequestResponse.model_validate(refill_service.approve_refill_request(db, request_id))


@router.post("/{request_id}/decline", response_model=RefillRequestResponse)
def decline_refill_request(
    request_id: int,
    payload: RefillDecline | None = None,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
) -> RefillRequestResponse:
    request = refill_service.decline_refill_request(
        db, request_id, reason=payload.reason if payload else None
    )
    return RefillRequestResponse.model_validate(request)


@router.post("/{request_id}/toggle-auto-refill", response_model=RefillRequestResponse)
def toggle_auto_refill(
    request_id: int,
    payload: AutoRefillToggle | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> RefillRequestResponse:
    ensure_owner_or_staff(current_user, refill_service.get_refill_request(db, request_id).user_id)
    request = refill_service.toggle_auto_refill(
        db, request_id, enabled=payload.enabled if payload else None
    )
    return RefillRequestResponse.model_validate(request)
