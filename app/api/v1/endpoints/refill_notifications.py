# app/api/v1/endpoints/refill_notifications.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.dependencies.authz import ensure_owner_or_staff, get_current_user
from app.models.user import User
from app.schemas.refill import RefillNotificationResponse
from app.services import refill_service

router = APIRouter()


@router.get("", response_model=list[RefillNotificationResponse])
def list_notifications(
    user_id: int | None = Query(None, description="Defaults to the caller"),
    unread_only: bool = Query(False),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[RefillNotificationResponse]:
    target = user_id or current_user.id
    ensure_owner_or_staff(current_user, target)
    notifications = refill_service.list_notifications_for_user(db, target, unread_only=unread_only)
    return [RefillNotificationResponse.model_validate(n) for n in notifications]


@router.post("/{notification_id}/read", response_model=RefillNotificationResponse)
def mark_read(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> RefillNotificationResponse:
    notification = refill_service.mark_notification_read(
        db,
        notification_id,
        user_id=None if current_user.is_staff else current_user.id,
    )
    return RefillNotificationResponse.model_validate(notification)
