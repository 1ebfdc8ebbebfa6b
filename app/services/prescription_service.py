# app/services/prescription_service.py
"""
Prescription gate: the authoritative verification state of a prescription
and the rule deciding whether an order that references it may ship.

Every check reads the row from the database at call time. Callers holding an
order lock pass for_update=True so the read is part of their transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import ConcurrencyConflict, InvalidTransition, NotFoundError
from app.core.redis import named_lock
from app.models.order import CANCELLABLE_STATUSES, Order
from app.models.prescription import Prescription, VerificationStatus
from app.models.user import User
from app.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


def prescription_lock_name(prescription_id: int) -> str:
    return f"prescription:{prescription_id}"


@dataclass
class RevocationResult:
    prescription: Prescription
    cancelled_order_ids: list[int] = field(default_factory=list)


def create_prescription(
    db: Session,
    *,
    user_id: int,
    doctor_name: str | None = None,
    doctor_phone: str | None = None,
    file_url: str | None = None,
    notes: str | None = None,
) -> Prescription:
    if db.get(User, user_id) is None:
        raise NotFoundError(f"User {user_id} not found")

    prescription = Prescription(
        user_id=user_id,
        doctor_name=doctor_name,
        doctor_phone=doctor_phone,
        file_url=file_url,
        notes=notes,
        verification_status=VerificationStatus.PENDING.value,
        revoked=False,
    )
    try:
        db.add(prescription)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    db.refresh(prescription)
    return prescription


def get_prescription(db: Session, prescription_id: int) -> Prescription:
    prescription = (
        db.query(Prescription)
        .filter(Prescription.id == prescription_id)
        .populate_existing()
        .first()
    )
    if not prescription:
        raise NotFoundError(f"Prescription {prescription_id} not found")
    return prescription


def list_prescriptions_for_user(db: Session, user_id: int) -> list[Prescription]:
    return (
        db.query(Prescription)
        .filter(Prescription.user_id == user_id)
        .order_by(Prescription.id.desc())
        .all()
    )


def read_verification_state(
    db: Session, prescription_id: int, *, for_update: bool = False
) -> tuple[str, bool]:
    """
    Return (verification_status, revoked) straight from the database.
    Column selects bypass the session identity map, so nothing cached is used.
    """
    stmt = select(Prescription.verification_status, Prescription.revoked).where(
        Prescription.id == prescription_id
    )
    if for_update:
        stmt = stmt.with_for_update(read=True)

    row = db.execute(stmt).first()
    if row is None:
        raise NotFoundError(f"Prescription {prescription_id} not found")
    return row.verification_status, bool(row.revoked)


def can_ship(db: Session, prescription_id: int, *, for_update: bool = False) -> bool:
    verification_status, revoked = read_verification_state(
        db, prescription_id, for_update=for_update
    )
    return verification_status == VerificationStatus.VERIFIED.value and not revoked


def shipping_block_reason(db: Session, prescription_id: int, *, for_update: bool = False) -> str | None:
    """Human readable reason an order on this prescription cannot ship, or None."""
    verification_status, revoked = read_verification_state(
        db, prescription_id, for_update=for_update
    )
    if revoked:
        return "cannot ship: prescription revoked"
    if verification_status != VerificationStatus.VERIFIED.value:
        return "cannot ship: prescription not verified"
    return None


def _load_for_update(db: Session, prescription_id: int) -> Prescription:
    prescription = (
        db.query(Prescription)
        .filter(Prescription.id == prescription_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not prescription:
        raise NotFoundError(f"Prescription {prescription_id} not found")
    return prescription


def verify_prescription(db: Session, prescription_id: int, *, reviewer_id: int) -> Prescription:
    """
    pending -> verified.

    Verifying again with the same reviewer returns the prescription unchanged.
    A revoked prescription, or one already verified by a different reviewer,
    raises InvalidTransition.
    """
    with named_lock(prescription_lock_name(prescription_id)):
        try:
            prescription = _load_for_update(db, prescription_id)

            if prescription.revoked:
                raise InvalidTransition(
                    f"Prescription {prescription_id} is revoked and cannot be verified; "
                    "a new prescription must be uploaded."
                )

            if prescription.verification_status == VerificationStatus.VERIFIED.value:
                if prescription.verified_by_id == reviewer_id:
                    db.rollback()
                    return get_prescription(db, prescription_id)
                raise InvalidTransition(
                    f"Prescription {prescription_id} was already verified by another reviewer."
                )

            if prescription.verification_status != VerificationStatus.PENDING.value:
                raise InvalidTransition(
                    f"Cannot verify prescription {prescription_id} from status "
                    f"{prescription.verification_status}."
                )

            prescription.verification_status = VerificationStatus.VERIFIED.value
            prescription.verified_by_id = reviewer_id
            prescription.verified_at = utc_now()
            db.commit()
        except Exception:
            db.rollback()
            raise

    logger.info("Prescription %s verified by user %s", prescription_id, reviewer_id)
    return get_prescription(db, prescription_id)


def revoke_prescription(
    db: Session, prescription_id: int, *, reason: str | None = None
) -> RevocationResult:
    """
    Revoke from any state. Irreversible.

    In the same transaction every pending/processing order that references the
    prescription is cancelled. Lock order is prescription, then order, the
    same order the shipping transition uses.
    """
    from app.services.order_service import cancel_locked_order, order_lock_name

    cancelled: list[int] = []
    with named_lock(prescription_lock_name(prescription_id)):
        try:
            prescription = _load_for_update(db, prescription_id)
            already_revoked = prescription.revoked

            if not already_revoked:
                prescription.revoked = True
                prescription.verification_status = VerificationStatus.REVOKED.value
                prescription.revoked_at = utc_now()
                prescription.revoked_reason = reason

            order_ids = [
                order_id
                for (order_id,) in db.execute(
                    select(Order.id)
                    .where(
                        Order.prescription_id == prescription_id,
                        Order.status.in_(CANCELLABLE_STATUSES),
                    )
                    .order_by(Order.id)
                )
            ]
            for order_id in order_ids:
                with named_lock(order_lock_name(order_id)):
                    if cancel_locked_order(db, order_id, reason="prescription revoked"):
                        cancelled.append(order_id)

            db.commit()
        except StaleDataError as exc:
            db.rollback()
            raise ConcurrencyConflict(
                f"An order on prescription {prescription_id} changed during revocation; please retry"
            ) from exc
        except Exception:
            db.rollback()
            raise

    if already_revoked:
        logger.info("Prescription %s already revoked; re-checked orders %s", prescription_id, cancelled)
    else:
        logger.info("Prescription %s revoked; cancelled orders %s", prescription_id, cancelled)
    return RevocationResult(prescription=get_prescription(db, prescription_id), cancelled_order_ids=cancelled)
