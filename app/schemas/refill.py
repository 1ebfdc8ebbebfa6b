# app/schemas/refill.py
from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field


class RefillRequestCreate(BaseModel):
    user_id: int | None = None
    medication_id: int
    prescription_id: int | None = None
    quantity: int = 1
    refills_authorized: int = Field(default=0, ge=0)
    next_refill_date: date | None = None
    auto_refill: bool = False
    notes: str | None = None


class RefillDecline(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class AutoRefillToggle(BaseModel):
    enabled: bool | None = None


class RefillRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    prescription_id: int | None = None
    medication_id: int
    status: str
    request_date: datetime
    notes: str | None = None
    quantity: int
    refills_authorized: int
    refills_remaining: int
    times_refilled: int
    last_filled_date: date | None = None
    next_refill_date: date | None = None
    auto_refill: bool


class RefillNotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    refill_request_id: int | None = None
    notification_type: str
    message: str
    sent_date: datetime
    read: bool
