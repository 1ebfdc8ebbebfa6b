from datetime import date, datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base


class RefillStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"
    FILLED = "filled"


class RefillNotificationType(str, PyEnum):
    REMINDER = "reminder"
    STATUS_UPDATE = "status_update"
    AUTO_REFILL_RESULT = "auto_refill_result"


class RefillRequest(Base):
    """
    Recurring refill authorization for one medication.

    refills_remaining only ever goes down and never exceeds refills_authorized.
    Reaching 0 marks the request filled and clears auto_refill; a new
    prescription (and a new request) is needed to refill again.
    """

    __tablename__ = "refill_requests"
    __table_args__ = (
        CheckConstraint("refills_remaining >= 0", name="ck_refill_requests_remaining_non_negative"),
        CheckConstraint(
            "refills_remaining <= refills_authorized",
            name="ck_refill_requests_remaining_le_authorized",
        ),
        CheckConstraint("quantity > 0", name="ck_refill_requests_quantity_positive"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )
    prescription_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("prescriptions.id"),
        nullable=True,
        index=True,
    )
    medication_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("medications.id"),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=RefillStatus.PENDING.value,
        server_default=text("'pending'"),
        index=True,
    )
    request_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    refills_authorized: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    refills_remaining: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    times_refilled: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    last_filled_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    next_refill_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)

    auto_refill: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )


class RefillNotification(Base):
    __tablename__ = "refill_notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )
    refill_request_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("refill_requests.id"),
        nullable=True,
        index=True,
    )

    notification_type: Mapped[str] = mapped_column(String(30), nullable=False)
    message: Mapped[str] = mapped_column(String(2000), nullable=False)

    sent_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    read: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
