# app/api/v1/endpoints/orders.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.dependencies.authz import ensure_owner_or_staff, get_current_user, require_staff
from app.models.user import User
from app.schemas.order import OrderCancel, OrderCreate, OrderListResponse, OrderResponse
from app.services import order_service
from app.services.order_service import OrderLine

router = APIRouter()


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
def create_order(
    payload: OrderCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> OrderResponse:
    user_id = payload.user_id or current_user.id
    ensure_owner_or_staff(current_user, user_id)

    order = order_service.create_order(
        db,
        user_id=user_id,
        items=[OrderLine(medication_id=i.medication_id, quantity=i.quantity) for i in payload.items],
        prescription_id=payload.prescription_id,
        shipping_method=payload.shipping_method,
        shipping_cost=payload.shipping_cost,
        shipping_address=payload.shipping_address,
    )
    return OrderResponse.model_validate(order)


# Declared before /{order_id} so "status" is not parsed as an id.
@router.get("/status/{order_status}", response_model=OrderListResponse)
def list_orders_by_status(
    order_status: str,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
) -> OrderListResponse:
    orders, total = order_service.list_orders_by_status(db, order_status, limit=limit, offset=offset)
    return OrderListResponse(
        items=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/user/{user_id}", response_model=list[OrderResponse])
def list_user_orders(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[OrderResponse]:
    ensure_owner_or_staff(current_user, user_id)
    return [OrderResponse.model_validate(o) for o in order_service.list_orders_for_user(db, user_id)]


@router.get("/{order_id}", response_model=OrderResponse)
def get_order(
    order_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> OrderResponse:
    order = order_service.get_order(db, order_id)
    ensure_owner_or_staff(current_user, order.user_id)
    return OrderResponse.model_validate(order)


@router.post("/{order_id}/approve", response_model=OrderResponse)
def approve_order(
    order_id: int,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
) -> OrderResponse:
    return OrderResponse.model_validate(order_service.approve_order(db, order_id))


@router.post("/{order_id}/deliver", response_model=OrderResponse)
def confirm_delivery(
    order_id: int,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
) -> OrderResponse:
    return OrderResponse.model_validate(order_service.confirm_delivery(db, order_id))


@router.post("/{order_id}/cancel", response_model=OrderResponse)
def cancel_order(
    order_id: int,
    payload: OrderCancel | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> OrderResponse:
    ensure_owner_or_staff(current_user, order_service.get_order(db, order_id).user_id)
    order = order_service.cancel_order(db, order_id, reason=payload.reason if payload else None)
    return OrderResponse.model_validate(order)
