# app/services/refill_service.py
"""
Refill scheduler and refill request actions.

run_refill_cycle() is the periodic job. For every approved request with
refills left whose next_refill_date has arrived it either:

- records a blocker (revoked prescription, no usable primary inventory) as a
  reminder notification and leaves the counters alone, or
- decrements refills_remaining, advances next_refill_date and, for
  auto-refill requests, creates an order and moves it to processing.

The decrement, the auto order and the notification rows commit together.
A crash before that commit leaves the request due for the next run; a crash
after it leaves last_filled_date at today, so the request is not filled
twice on the same day even when it was more than one interval overdue.
Notifications are delivered only after the commit; a delivery failure is
logged and does not change the outcome.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Iterable

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.database import SessionLocal
from app.core.exceptions import (
    InvalidTransition,
    NoMappingAvailable,
    NotFoundError,
    PharmacyError,
    ValidationError,
)
from app.core.redis import named_lock
from app.models.medication import Medication
from app.models.refill import (
    RefillNotification,
    RefillNotificationType,
    RefillRequest,
    RefillStatus,
)
from app.models.user import User
from app.services.inventory_service import resolve_primary
from app.services.notification_service import dispatch_refill_notifications
from app.services.order_service import OrderLine, create_order, start_processing_in_transaction
from app.services.prescription_service import get_prescription, read_verification_state
from app.utils.datetime_utils import add_days, utc_today

logger = logging.getLogger(__name__)

SCHEDULER_LOCK = "refill-scheduler"

Dispatcher = Callable[[Session, Iterable[int]], None]


def refill_request_lock_name(request_id: int) -> str:
    return f"refill-request:{request_id}"


@dataclass
class RefillOutcome:
    result: str  # filled | blocked | not_due
    order_id: int | None = None
    notification_ids: list[int] = field(default_factory=list)


@dataclass
class RefillCycleReport:
    run_date: date
    skipped: bool = False
    processed: int = 0
    filled: int = 0
    blocked: int = 0
    failed: int = 0
    orders_created: int = 0
    order_ids: list[int] = field(default_factory=list)


# ----------------------------------------------------------------------
# Request actions
# ----------------------------------------------------------------------


def get_refill_request(db: Session, request_id: int) -> RefillRequest:
    request = (
        db.query(RefillRequest)
        .filter(RefillRequest.id == request_id)
        .populate_existing()
        .first()
    )
    if not request:
        raise NotFoundError(f"Refill request {request_id} not found")
    return request


def list_refill_requests_for_user(db: Session, user_id: int) -> list[RefillRequest]:
    return (
        db.query(RefillRequest)
        .filter(RefillRequest.user_id == user_id)
        .order_by(RefillRequest.request_date.desc(), RefillRequest.id.desc())
        .all()
    )


def create_refill_request(
    db: Session,
    *,
    user_id: int,
    medication_id: int,
    prescription_id: int | None = None,
    quantity: int = 1,
    refills_authorized: int = 0,
    next_refill_date: date | None = None,
    auto_refill: bool = False,
    notes: str | None = None,
) -> RefillRequest:
    if db.get(User, user_id) is None:
        raise NotFoundError(f"User {user_id} not found")
    if db.get(Medication, medication_id) is None:
        raise NotFoundError(f"Medication {medication_id} not found")
    if quantity is None or quantity <= 0:
        raise ValidationError("Refill quantity must be greater than 0")
    if refills_authorized is None or refills_authorized < 0:
        raise ValidationError("refills_authorized cannot be negative")
    if auto_refill and refills_authorized == 0:
        raise ValidationError("Auto-refill needs at least one authorized refill")

    if prescription_id is not None:
        prescription = get_prescription(db, prescription_id)
        if prescription.user_id != user_id:
            raise ValidationError(f"Prescription {prescription_id} belongs to another user")
        if prescription.revoked:
            raise ValidationError(f"Prescription {prescription_id} is revoked")

    request = RefillRequest(
        user_id=user_id,
        medication_id=medication_id,
        prescription_id=prescription_id,
        status=RefillStatus.PENDING.value,
        quantity=quantity,
        refills_authorized=refills_authorized,
        refills_remaining=refills_authorized,
        times_refilled=0,
        next_refill_date=next_refill_date,
        auto_refill=auto_refill,
        notes=notes,
    )
    try:
        db.add(request)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info("Refill request %s created for user %s", request.id, user_id)
    return get_refill_request(db, request.id)


def _add_notification(
    db: Session, request: RefillRequest, notification_type: RefillNotificationType, message: str
) -> RefillNotification:
    notification = RefillNotification(
        user_id=request.user_id,
        refill_request_id=request.id,
        notification_type=notification_type.value,
        message=message[:2000],
        read=False,
    )
    db.add(notification)
    db.flush()
    return notification


def _medication_name(db: Session, medication_id: int) -> str:
    medication = db.get(Medication, medication_id)
    return medication.name if medication else f"medication {medication_id}"


def _change_status(
    db: Session,
    request_id: int,
    apply: Callable[[RefillRequest], str | None],
    dispatcher: Dispatcher | None,
) -> RefillRequest:
    """
    Run `apply` on the locked request. When it returns a message, a
    status_update notification is stored in the same commit and delivered
    afterwards; None means nothing changed.
    """
    notification_id = None
    with named_lock(refill_request_lock_name(request_id)):
        try:
            request = (
                db.query(RefillRequest)
                .filter(RefillRequest.id == request_id)
                .with_for_update()
                .populate_existing()
                .first()
            )
            if not request:
                raise NotFoundError(f"Refill request {request_id} not found")

            message = apply(request)
            if message is None:
                db.rollback()
                return get_refill_request(db, request_id)

            notification_id = _add_notification(
                db, request, RefillNotificationType.STATUS_UPDATE, message
            ).id
            db.commit()
        except Exception:
            db.rollback()
            raise

    (dispatcher or dispatch_refill_notifications)(db, [notification_id])
    return get_refill_request(db, request_id)


def approve_refill_request(
    db: Session, request_id: int, *, dispatcher: Dispatcher | None = None
) -> RefillRequest:
    """
    pending -> approved. A request without a next refill date becomes due
    immediately.
    """

    def apply(request: RefillRequest) -> str | None:
        if request.status == RefillStatus.APPROVED.value:
            return None
        if request.status != RefillStatus.PENDING.value:
            raise InvalidTransition(f"Refill request {request.id} is {request.status} and cannot be approved")
        if request.refills_remaining <= 0:
            raise InvalidTransition(f"Refill request {request.id} has no refills remaining")

        request.status = RefillStatus.APPROVED.value
        if request.next_refill_date is None:
            request.next_refill_date = utc_today()
        logger.info("Refill request %s approved", request.id)
        return (
            f"Your refill request for {_medication_name(db, request.medication_id)} was approved. "
            f"Next refill date: {request.next_refill_date.isoformat()}."
        )

    return _change_status(db, request_id, apply, dispatcher)


def decline_refill_request(
    db: Session,
    request_id: int,
    *,
    reason: str | None = None,
    dispatcher: Dispatcher | None = None,
) -> RefillRequest:
    def apply(request: RefillRequest) -> str | None:
        if request.status == RefillStatus.DECLINED.value:
            return None
        if request.status == RefillStatus.FILLED.value:
            raise InvalidTransition(f"Refill request {request.id} is already filled")

        request.status = RefillStatus.DECLINED.value
        request.auto_refill = False
        logger.info("Refill request %s declined", request.id)
        message = f"Your refill request for {_medication_name(db, request.medication_id)} was declined."
        if reason:
            message += f" Reason: {reason}"
        return message

    return _change_status(db, request_id, apply, dispatcher)


def toggle_auto_refill(db: Session, request_id: int, *, enabled: bool | None = None) -> RefillRequest:
    """
    Flip auto_refill, or set it when `enabled` is given. Enabling needs
    refills remaining on a request that is still pending or approved.
    """
    with named_lock(refill_request_lock_name(request_id)):
        try:
            request = (
                db.query(RefillRequest)
                .filter(RefillRequest.id == request_id)
                .with_for_update()
                .populate_existing()
                .first()
            )
            if not request:
                raise NotFoundError(f"Refill request {request_id} not found")

            target = (not request.auto_refill) if enabled is None else enabled
            if target and request.refills_remaining <= 0:
                raise InvalidTransition(
                    f"Refill request {request_id} has no refills remaining; a new prescription is required"
                )
            if target and request.status not in (RefillStatus.PENDING.value, RefillStatus.APPROVED.value):
                raise InvalidTransition(f"Refill request {request_id} is {request.status}")

            request.auto_refill = target
            db.commit()
        except Exception:
            db.rollback()
            raise

    logger.info("Refill request %s auto_refill=%s", request_id, target)
    return get_refill_request(db, request_id)


# ----------------------------------------------------------------------
# Notifications inbox
# ----------------------------------------------------------------------


def list_notifications_for_user(
    db: Session, user_id: int, *, unread_only: bool = False
) -> list[RefillNotification]:
    query = db.query(RefillNotification).filter(RefillNotification.user_id == user_id)
    if unread_only:
        query = query.filter(RefillNotification.read.is_(False))
    return query.order_by(RefillNotification.sent_date.desc(), RefillNotification.id.desc()).all()


def list_notifications_for_request(db: Session, request_id: int) -> list[RefillNotification]:
    return (
        db.query(RefillNotification)
        .filter(RefillNotification.refill_request_id == request_id)
        .order_by(RefillNotification.id.asc())
        .all()
    )


def mark_notification_read(
    db: Session, notification_id: int, *, user_id: int | None = None
) -> RefillNotification:
    notification = db.get(RefillNotification, notification_id)
    if notification is None or (user_id is not None and notification.user_id != user_id):
        raise NotFoundError(f"Refill notification {notification_id} not found")

    if not notification.read:
        notification.read = True
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        db.refresh(notification)
    return notification


# ----------------------------------------------------------------------
# Scheduler
# ----------------------------------------------------------------------


def compute_next_refill_date(request: RefillRequest, medication: Medication | None, today: date) -> date:
    """Previous next_refill_date plus the medication's supply interval."""
    interval = None
    if medication is not None:
        interval = medication.refill_interval_days
    if not interval:
        interval = get_settings().default_refill_interval_days
    return add_days(request.next_refill_date or today, interval)


def _is_due(request: RefillRequest, today: date) -> bool:
    return (
        request.status == RefillStatus.APPROVED.value
        and request.refills_remaining > 0
        and request.next_refill_date is not None
        and request.next_refill_date <= today
        and (request.last_filled_date is None or request.last_filled_date < today)
    )


def due_refill_request_ids(db: Session, today: date) -> list[int]:
    stmt = (
        select(RefillRequest.id)
        .where(
            RefillRequest.status == RefillStatus.APPROVED.value,
            RefillRequest.refills_remaining > 0,
            RefillRequest.next_refill_date.is_not(None),
            RefillRequest.next_refill_date <= today,
            or_(RefillRequest.last_filled_date.is_(None), RefillRequest.last_filled_date < today),
        )
        .order_by(RefillRequest.next_refill_date.asc(), RefillRequest.id.asc())
    )
    return [request_id for (request_id,) in db.execute(stmt)]


def refill_blocker(db: Session, request: RefillRequest, medication_name: str) -> str | None:
    """Why this refill cannot go ahead today, or None."""
    if request.prescription_id is not None:
        _, revoked = read_verification_state(db, request.prescription_id)
        if revoked:
            return "the prescription has been revoked; please upload a new prescription"

    try:
        item = resolve_primary(db, request.medication_id)
    except NoMappingAvailable:
        return f"{medication_name} is not currently available from any inventory source"
    if not item.in_stock or item.quantity < request.quantity:
        return f"{medication_name} is out of stock"
    return None


def _fill(db: Session, request: RefillRequest, medication: Medication | None, today: date) -> RefillOutcome:
    name = medication.name if medication else f"medication {request.medication_id}"
    auto = request.auto_refill

    request.refills_remaining -= 1
    request.times_refilled += 1
    request.last_filled_date = today
    request.next_refill_date = compute_next_refill_date(request, medication, today)
    if request.refills_remaining == 0:
        request.status = RefillStatus.FILLED.value
        request.auto_refill = False

    outcome = RefillOutcome(result="filled")
    remaining = f"Refills remaining: {request.refills_remaining}."

    if auto:
        try:
            order = create_order(
                db,
                user_id=request.user_id,
                items=[OrderLine(medication_id=request.medication_id, quantity=request.quantity)],
                prescription_id=request.prescription_id,
                refill_request_id=request.id,
                commit=False,
            )
            start_processing_in_transaction(db, order)
            outcome.order_id = order.id
            message = f"Your automatic refill of {name} was placed as order #{order.id} and is being processed. {remaining}"
        except PharmacyError as exc:
            logger.warning("Auto-refill order for request %s failed: %s", request.id, exc.detail)
            message = f"Your refill of {name} was recorded but the automatic order could not be placed: {exc.detail}. {remaining}"
        notification = _add_notification(db, request, RefillNotificationType.AUTO_REFILL_RESULT, message)
    else:
        message = f"Your refill of {name} is ready to order. {remaining}"
        notification = _add_notification(db, request, RefillNotificationType.REMINDER, message)

    outcome.notification_ids.append(notification.id)
    return outcome


def _process_locked(db: Session, request_id: int, today: date) -> RefillOutcome:
    try:
        request = (
            db.query(RefillRequest)
            .filter(RefillRequest.id == request_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        # Re-checked under the lock: another run may have handled it already.
        if request is None or not _is_due(request, today):
            db.rollback()
            return RefillOutcome(result="not_due")

        medication = db.get(Medication, request.medication_id)
        name = medication.name if medication else f"medication {request.medication_id}"

        blocker = refill_blocker(db, request, name)
        if blocker:
            notification = _add_notification(
                db,
                request,
                RefillNotificationType.REMINDER,
                f"Your refill of {name} could not be processed: {blocker}.",
            )
            outcome = RefillOutcome(result="blocked", notification_ids=[notification.id])
        else:
            outcome = _fill(db, request, medication, today)

        db.commit()
    except Exception:
        db.rollback()
        raise
    return outcome


def process_refill_request(
    request_id: int,
    today: date,
    *,
    session_factory: Callable[[], Session] = SessionLocal,
    dispatcher: Dispatcher | None = None,
) -> RefillOutcome:
    db = session_factory()
    try:
        with named_lock(refill_request_lock_name(request_id)):
            outcome = _process_locked(db, request_id, today)

        if outcome.result == "blocked":
            logger.warning("Refill request %s blocked", request_id)
        elif outcome.result == "filled":
            logger.info("Refill request %s filled (order %s)", request_id, outcome.order_id)

        if outcome.notification_ids:
            try:
                (dispatcher or dispatch_refill_notifications)(db, outcome.notification_ids)
            except Exception:
                # Already committed; the rows stay in the inbox.
                db.rollback()
                logger.exception(
                    "Delivering notifications %s for refill request %s failed",
                    outcome.notification_ids,
                    request_id,
                )
        return outcome
    finally:
        db.close()


def run_refill_cycle(
    today: date | None = None,
    *,
    session_factory: Callable[[], Session] = SessionLocal,
    dispatcher: Dispatcher | None = None,
) -> RefillCycleReport:
    """
    Process every due refill request once. Only one cycle runs at a time
    across processes; an overlapping call returns a report with skipped=True.
    One request failing does not stop the rest.
    """
    today = today or utc_today()
    report = RefillCycleReport(run_date=today)

    with named_lock(SCHEDULER_LOCK, blocking=False) as acquired:
        if not acquired:
            logger.info("Refill cycle for %s already running; skipping", today)
            report.skipped = True
            return report

        db = session_factory()
        try:
            due_ids = due_refill_request_ids(db, today)
        finally:
            db.close()

        for request_id in due_ids:
            try:
                outcome = process_refill_request(
                    request_id, today, session_factory=session_factory, dispatcher=dispatcher
                )
            except Exception:
                logger.exception("Refill request %s failed during cycle %s", request_id, today)
                report.failed += 1
                continue

            if outcome.result == "not_due":
                continue
            report.processed += 1
            if outcome.result == "blocked":
                report.blocked += 1
            elif outcome.result == "filled":
                report.filled += 1
                if outcome.order_id is not None:
                    report.orders_created += 1
                    report.order_ids.append(outcome.order_id)

    logger.info(
        "Refill cycle %s: processed=%s filled=%s blocked=%s failed=%s orders=%s",
        today,
        report.processed,
        report.filled,
        report.blocked,
        report.failed,
        report.orders_created,
    )
    return report
