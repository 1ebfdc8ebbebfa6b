import pytest

from app.core.exceptions import InvalidTransition, NotFoundError
from app.models.order import OrderStatus
from app.models.prescription import VerificationStatus
from app.services import order_service, prescription_service
from app.services.order_service import OrderLine

from helpers import stock_medication, verified_prescription


def test_new_prescription_is_pending_and_cannot_ship(db, customer):
    prescription = prescription_service.create_prescription(db, user_id=customer.id)

    assert prescription.verification_status == VerificationStatus.PENDING.value
    assert prescription.revoked is False
    assert prescription_service.can_ship(db, prescription.id) is False
    assert prescription_service.shipping_block_reason(db, prescription.id) == "cannot ship: prescription not verified"


def test_create_prescription_for_unknown_user(db):
    with pytest.raises(NotFoundError):
        prescription_service.create_prescription(db, user_id=999)


def test_verify_allows_shipping(db, customer, pharmacist):
    prescription = verified_prescription(db, customer, pharmacist)

    assert prescription.verification_status == VerificationStatus.VERIFIED.value
    assert prescription.verified_by_id == pharmacist.id
    assert prescription.verified_at is not None
    assert prescription_service.can_ship(db, prescription.id) is True
    assert prescription_service.shipping_block_reason(db, prescription.id) is None


def test_verify_twice_by_same_reviewer_is_idempotent(db, customer, pharmacist):
    prescription = verified_prescription(db, customer, pharmacist)
    first_verified_at = prescription.verified_at

    again = prescription_service.verify_prescription(db, prescription.id, reviewer_id=pharmacist.id)

    assert again.verification_status == VerificationStatus.VERIFIED.value
    assert again.verified_at == first_verified_at


def test_verify_by_different_reviewer_conflicts(db, customer, pharmacist, second_pharmacist):
    prescription = verified_prescription(db, customer, pharmacist)

    with pytest.raises(InvalidTransition):
        prescription_service.verify_prescription(db, prescription.id, reviewer_id=second_pharmacist.id)


def test_revoked_prescription_cannot_be_verified_again(db, customer, pharmacist):
    prescription = verified_prescription(db, customer, pharmacist)
    prescription_service.revoke_prescription(db, prescription.id, reason="forged")

    with pytest.raises(InvalidTransition):
        prescription_service.verify_prescription(db, prescription.id, reviewer_id=pharmacist.id)

    current = prescription_service.get_prescription(db, prescription.id)
    assert current.revoked is True
    assert current.verification_status == VerificationStatus.REVOKED.value
    assert current.revoked_reason == "forged"
    assert prescription_service.can_ship(db, prescription.id) is False
    assert prescription_service.shipping_block_reason(db, prescription.id) == "cannot ship: prescription revoked"


def test_revoke_from_pending(db, customer):
    prescription = prescription_service.create_prescription(db, user_id=customer.id)

    result = prescription_service.revoke_prescription(db, prescription.id)

    assert result.prescription.revoked is True
    assert result.cancelled_order_ids == []


def test_can_ship_reads_committed_state_not_session_cache(db, customer, pharmacist):
    from app.core.database import SessionLocal

    prescription = verified_prescription(db, customer, pharmacist)
    # Load into this session's identity map, then revoke through another session.
    assert prescription.revoked is False

    other = SessionLocal()
    try:
        prescription_service.revoke_prescription(other, prescription.id)
    finally:
        other.close()

    assert prescription_service.can_ship(db, prescription.id) is False


def test_revoke_cancels_pending_and_processing_orders(db, customer, pharmacist, medication, provider):
    stock_medication(db, provider, medication, quantity=10)
    prescription = verified_prescription(db, customer, pharmacist)

    pending = order_service.create_order(
        db, user_id=customer.id, prescription_id=prescription.id, items=[OrderLine(medication.id, 1)]
    )
    processing = order_service.create_order(
        db, user_id=customer.id, prescription_id=prescription.id, items=[OrderLine(medication.id, 1)]
    )
    order_service.start_processing(db, processing.id)
    shipped = order_service.create_order(
        db, user_id=customer.id, prescription_id=prescription.id, items=[OrderLine(medication.id, 1)]
    )
    order_service.approve_order(db, shipped.id)

    result = prescription_service.revoke_prescription(db, prescription.id, reason="doctor withdrew")

    assert sorted(result.cancelled_order_ids) == sorted([pending.id, processing.id])
    assert order_service.get_order(db, pending.id).status == OrderStatus.CANCELLED.value
    cancelled = order_service.get_order(db, processing.id)
    assert cancelled.status == OrderStatus.CANCELLED.value
    assert cancelled.cancel_reason == "prescription revoked"
    assert order_service.get_order(db, shipped.id).status == OrderStatus.SHIPPED.value


def test_revoke_again_is_harmless(db, customer, pharmacist):
    prescription = verified_prescription(db, customer, pharmacist)
    first = prescription_service.revoke_prescription(db, prescription.id, reason="first")

    second = prescription_service.revoke_prescription(db, prescription.id, reason="second")

    assert second.prescription.revoked is True
    assert second.prescription.revoked_reason == "first"
    assert second.prescription.revoked_at == first.prescription.revoked_at
