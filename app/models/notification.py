from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Integer,
    String,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base


class NotificationChannel(str, PyEnum):
    EMAIL = "email"
    SMS = "sms"


class DeliveryStatus(str, PyEnum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class NotificationDelivery(Base):
    """
    Delivery log for outgoing email/SMS messages.

    One RefillNotification can produce several deliveries (one per channel).
    Failures are recorded here and never roll back the notification itself.
    """

    __tablename__ = "notification_deliveries"

    # Primary Key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Foreign Keys
    refill_notification_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("refill_notifications.id"),
        nullable=True,
        index=True,
    )

    # Notification Details
    channel: Mapped[str] = mapped_column(String(10), nullable=False)
    recipient: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        doc="Email address or phone number.",
    )
    subject: Mapped[str | None] = mapped_column(String(255), nullable=True)
    message: Mapped[str] = mapped_column(String(2000), nullable=False)

    # Status
    status: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=DeliveryStatus.PENDING.value,
        server_default=text("'pending'"),
    )
    error_message: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
