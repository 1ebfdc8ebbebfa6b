# app/schemas/order.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, StringConstraints


class OrderItemCreate(BaseModel):
    medication_id: int
    # Non-positive quantities are rejected by the service with a domain error.
    quantity: int


class OrderCreate(BaseModel):
    user_id: int | None = None  # defaults to the caller; staff may order for a customer
    items: list[OrderItemCreate]
    prescription_id: int | None = None
    shipping_method: Annotated[str, StringConstraints(strip_whitespace=True, max_length=50)] | None = None
    shipping_cost: Decimal | None = Field(default=None, ge=0)
    shipping_address: str | None = None


class OrderCancel(BaseModel):
    reason: Annotated[str, StringConstraints(strip_whitespace=True, max_length=500)] | None = None


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    medication_id: int
    quantity: int
    unit_price: Decimal


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    prescription_id: int | None = None
    refill_request_id: int | None = None
    status: str
    order_date: datetime
    shipping_method: str
    shipping_cost: Decimal
    shipping_address: str | None = None
    total: Decimal
    tracking_number: str | None = None
    carrier: str | None = None
    processing_at: datetime | None = None
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancel_reason: str | None = None
    items: list[OrderItemResponse]


class OrderListResponse(BaseModel):
    items: list[OrderResponse]
    total: int
    limit: int
    offset: int
