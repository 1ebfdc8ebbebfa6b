# app/services/notification_service.py
"""
Delivery of refill notifications over email and SMS.

The refill core only decides that a notification exists and what it says;
this module sends it after the core transaction has committed and logs each
attempt in notification_deliveries. Delivery problems never reach callers.
"""

import logging
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.notification import DeliveryStatus, NotificationChannel, NotificationDelivery
from app.models.refill import RefillNotification, RefillNotificationType
from app.models.user import User
from app.notifications.email.base import send_email
from app.notifications.sms.base import send_sms

logger = logging.getLogger(__name__)

SUBJECTS = {
    RefillNotificationType.REMINDER.value: "Your prescription refill",
    RefillNotificationType.STATUS_UPDATE.value: "Update on your refill request",
    RefillNotificationType.AUTO_REFILL_RESULT.value: "Your automatic refill",
}


def _log_delivery(
    db: Session,
    *,
    channel: NotificationChannel,
    recipient: str,
    subject: str | None,
    message: str,
    status: DeliveryStatus,
    error_message: str | None = None,
    refill_notification_id: Optional[int] = None,
) -> Optional[NotificationDelivery]:
    """
    Record a delivery attempt. Logging must never break main flow.
    """
    log_message = message or ""
    if len(log_message) > 2000:
        log_message = log_message[:1997] + "..."

    try:
        delivery = NotificationDelivery(
            refill_notification_id=refill_notification_id,
            channel=channel.value,
            recipient=recipient,
            subject=subject,
            message=log_message,
            status=status.value,
            error_message=error_message[:1000] if error_message else None,
        )
        db.add(delivery)
        db.commit()
        db.refresh(delivery)
        return delivery
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"[NOTIFICATION LOG ERROR] Failed to log notification: {e}", exc_info=True)
        return None


def send_notification_email(
    db: Session,
    *,
    to_email: str,
    subject: str,
    body: str,
    refill_notification_id: Optional[int] = None,
    reason: Optional[str] = None,
) -> None:
    """
    Send an email and log it.
    """
    try:
        send_email(to_email=to_email, subject=subject, body=body, reason=reason)
    except Exception as exc:
        logger.error(f"Failed to send email to {to_email}, Subject: {subject}, Error: {exc}", exc_info=True)
        _log_delivery(
            db,
            channel=NotificationChannel.EMAIL,
            recipient=to_email,
            subject=subject,
            message=body,
            status=DeliveryStatus.FAILED,
            error_message=str(exc),
            refill_notification_id=refill_notification_id,
        )
        return

    _log_delivery(
        db,
        channel=NotificationChannel.EMAIL,
        recipient=to_email,
        subject=subject,
        message=body,
        status=DeliveryStatus.SENT,
        refill_notification_id=refill_notification_id,
    )


def send_notification_sms(
    db: Session,
    *,
    phone: str,
    message: str,
    refill_notification_id: Optional[int] = None,
    reason: Optional[str] = None,
) -> None:
    """
    Send an SMS and log it.
    """
    try:
        send_sms(phone=phone, message=message, reason=reason)
    except Exception as exc:
        logger.error(f"Failed to send SMS to {phone}, Error: {exc}", exc_info=True)
        _log_delivery(
            db,
            channel=NotificationChannel.SMS,
            recipient=phone,
            subject=None,
            message=message,
            status=DeliveryStatus.FAILED,
            error_message=str(exc),
            refill_notification_id=refill_notification_id,
        )
        return

    _log_delivery(
        db,
        channel=NotificationChannel.SMS,
        recipient=phone,
        subject=None,
        message=message,
        status=DeliveryStatus.SENT,
        refill_notification_id=refill_notification_id,
    )


def dispatch_refill_notification(db: Session, notification_id: int) -> None:
    notification = db.get(RefillNotification, notification_id)
    if notification is None:
        logger.warning("Refill notification %s not found; nothing to deliver", notification_id)
        return

    user = db.get(User, notification.user_id)
    if user is None:
        logger.warning("User %s for refill notification %s not found", notification.user_id, notification_id)
        return

    reason = notification.notification_type.upper()
    subject = SUBJECTS.get(notification.notification_type, "Pharmacy notification")

    if user.email:
        send_notification_email(
            db,
            to_email=user.email,
            subject=subject,
            body=f"Hello {user.display_name},\n\n{notification.message}",
            refill_notification_id=notification.id,
            reason=reason,
        )
    if user.phone:
        send_notification_sms(
            db,
            phone=user.phone,
            message=notification.message,
            refill_notification_id=notification.id,
            reason=reason,
        )


def dispatch_refill_notifications(db: Session, notification_ids: Iterable[int]) -> None:
    for notification_id in notification_ids:
        try:
            dispatch_refill_notification(db, notification_id)
        except Exception:
            db.rollback()
            logger.exception("Delivery of refill notification %s failed", notification_id)
