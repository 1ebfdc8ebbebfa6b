# app/schemas/prescription.py
from __future__ import annotations

from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, StringConstraints

OptStr255 = (
    Annotated[
        str,
        StringConstraints(strip_whitespace=True, max_length=255),
    ]
    | None
)


class PrescriptionCreate(BaseModel):
    user_id: int | None = None  # staff may upload on behalf of a customer
    doctor_name: OptStr255 = None
    doctor_phone: Annotated[str, StringConstraints(strip_whitespace=True, max_length=50)] | None = None
    file_url: Annotated[str, StringConstraints(strip_whitespace=True, max_length=500)] | None = None
    notes: str | None = None


class PrescriptionRevoke(BaseModel):
    reason: Annotated[str, StringConstraints(strip_whitespace=True, max_length=500)] | None = None


class PrescriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    doctor_name: str | None = None
    doctor_phone: str | None = None
    file_url: str | None = None
    notes: str | None = None
    upload_date: datetime
    verification_status: str
    verified_by_id: int | None = None
    verified_at: datetime | None = None
    revoked: bool
    revoked_at: datetime | None = None
    revoked_reason: str | None = None


class PrescriptionRevokeResponse(BaseModel):
    prescription: PrescriptionResponse
    cancelled_order_ids: list[int]


class CanShipResponse(BaseModel):
    prescription_id: int
    can_ship: bool
    reason: str | None = None
