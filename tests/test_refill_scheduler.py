from datetime import date, timedelta

import pytest

from app.core.exceptions import InvalidTransition, ValidationError
from app.core.redis import named_lock
from app.models.order import Order, OrderStatus
from app.models.refill import RefillNotification, RefillNotificationType, RefillStatus
from app.services import prescription_service, refill_service

from helpers import stock_medication, verified_prescription

TODAY = date(2026, 3, 2)


class Outbox:
    """Dispatcher stand-in that records which notifications were delivered."""

    def __init__(self):
        self.delivered = []

    def __call__(self, db, notification_ids):
        self.delivered.extend(notification_ids)


@pytest.fixture
def outbox():
    return Outbox()


@pytest.fixture
def prescription(db, customer, pharmacist):
    return verified_prescription(db, customer, pharmacist)


def _approved_request(db, customer, medication, prescription, outbox, *, refills=1, auto=True, due=TODAY, quantity=2):
    request = refill_service.create_refill_request(
        db,
        user_id=customer.id,
        medication_id=medication.id,
        prescription_id=prescription.id if prescription else None,
        quantity=quantity,
        refills_authorized=refills,
        next_refill_date=due,
        auto_refill=auto,
    )
    return refill_service.approve_refill_request(db, request.id, dispatcher=outbox)


def _notifications(db, request_id, notification_type):
    db.expire_all()
    return [
        n
        for n in refill_service.list_notifications_for_request(db, request_id)
        if n.notification_type == notification_type.value
    ]


def _orders_for(db, request_id):
    db.expire_all()
    return db.query(Order).filter(Order.refill_request_id == request_id).all()


# ----------------------------------------------------------------------
# Scheduler
# ----------------------------------------------------------------------


def test_due_auto_refill_creates_processing_order(db, customer, medication, provider, prescription, outbox):
    stock_medication(db, provider, medication, quantity=20)
    request = _approved_request(db, customer, medication, prescription, outbox)

    report = refill_service.run_refill_cycle(TODAY, dispatcher=outbox)

    assert (report.processed, report.filled, report.blocked, report.failed) == (1, 1, 0, 0)
    assert report.orders_created == 1

    request = refill_service.get_refill_request(db, request.id)
    assert request.refills_remaining == 0
    assert request.times_refilled == 1
    assert request.status == RefillStatus.FILLED.value
    assert request.auto_refill is False
    assert request.last_filled_date == TODAY
    assert request.next_refill_date == TODAY + timedelta(days=30)

    orders = _orders_for(db, request.id)
    assert len(orders) == 1
    assert orders[0].prescription_id == prescription.id
    assert orders[0].status == OrderStatus.PROCESSING.value
    assert orders[0].processing_at is not None
    assert orders[0].items[0].medication_id == medication.id
    assert orders[0].items[0].quantity == 2

    results = _notifications(db, request.id, RefillNotificationType.AUTO_REFILL_RESULT)
    assert len(results) == 1
    assert f"order #{orders[0].id}" in results[0].message
    assert results[0].id in outbox.delivered


def test_manual_refill_sends_reminder_without_order(db, customer, medication, provider, prescription, outbox):
    stock_medication(db, provider, medication)
    request = _approved_request(db, customer, medication, prescription, outbox, refills=3, auto=False)

    report = refill_service.run_refill_cycle(TODAY, dispatcher=outbox)

    assert report.filled == 1 and report.orders_created == 0
    request = refill_service.get_refill_request(db, request.id)
    assert request.refills_remaining == 2
    assert request.status == RefillStatus.APPROVED.value
    assert _orders_for(db, request.id) == []
    assert len(_notifications(db, request.id, RefillNotificationType.REMINDER)) == 1


def test_revoked_prescription_blocks_without_decrement(db, customer, medication, provider, prescription, outbox):
    stock_medication(db, provider, medication)
    request = _approved_request(db, customer, medication, prescription, outbox, refills=2)
    prescription_service.revoke_prescription(db, prescription.id)

    report = refill_service.run_refill_cycle(TODAY, dispatcher=outbox)

    assert report.blocked == 1 and report.filled == 0
    request = refill_service.get_refill_request(db, request.id)
    assert request.refills_remaining == 2
    assert request.next_refill_date == TODAY
    assert _orders_for(db, request.id) == []
    reminders = _notifications(db, request.id, RefillNotificationType.REMINDER)
    assert len(reminders) == 1
    assert "revoked" in reminders[0].message

    # Still due, so the next cycle reminds again.
    refill_service.run_refill_cycle(TODAY + timedelta(days=1), dispatcher=outbox)
    assert len(_notifications(db, request.id, RefillNotificationType.REMINDER)) == 2
    assert refill_service.get_refill_request(db, request.id).refills_remaining == 2


def test_missing_inventory_blocks(db, customer, medication, prescription, outbox):
    request = _approved_request(db, customer, medication, prescription, outbox)

    report = refill_service.run_refill_cycle(TODAY, dispatcher=outbox)

    assert report.blocked == 1
    reminders = _notifications(db, request.id, RefillNotificationType.REMINDER)
    assert "not currently available" in reminders[0].message
    assert refill_service.get_refill_request(db, request.id).refills_remaining == 1


def test_out_of_stock_primary_blocks(db, customer, medication, provider, prescription, outbox):
    stock_medication(db, provider, medication, quantity=1)
    request = _approved_request(db, customer, medication, prescription, outbox, quantity=2)

    report = refill_service.run_refill_cycle(TODAY, dispatcher=outbox)

    assert report.blocked == 1
    assert "out of stock" in _notifications(db, request.id, RefillNotificationType.REMINDER)[0].message


def test_requests_not_yet_due_are_left_alone(db, customer, medication, provider, prescription, outbox):
    stock_medication(db, provider, medication)
    request = _approved_request(db, customer, medication, prescription, outbox, due=TODAY + timedelta(days=1))

    report = refill_service.run_refill_cycle(TODAY, dispatcher=outbox)

    assert report.processed == 0
    assert refill_service.get_refill_request(db, request.id).refills_remaining == 1


def test_pending_requests_are_not_processed(db, customer, medication, provider, prescription, outbox):
    stock_medication(db, provider, medication)
    refill_service.create_refill_request(
        db,
        user_id=customer.id,
        medication_id=medication.id,
        prescription_id=prescription.id,
        refills_authorized=1,
        next_refill_date=TODAY,
    )

    assert refill_service.run_refill_cycle(TODAY, dispatcher=outbox).processed == 0


def test_counter_only_goes_down_and_stops_at_zero(db, customer, medication, provider, prescription, outbox):
    stock_medication(db, provider, medication)
    request = _approved_request(db, customer, medication, prescription, outbox, refills=2)

    seen = []
    for day in (TODAY, TODAY, TODAY + timedelta(days=30), TODAY + timedelta(days=60), TODAY + timedelta(days=90)):
        refill_service.run_refill_cycle(day, dispatcher=outbox)
        seen.append(refill_service.get_refill_request(db, request.id).refills_remaining)

    assert seen == [1, 1, 0, 0, 0]
    assert len(_orders_for(db, request.id)) == 2
    final = refill_service.get_refill_request(db, request.id)
    assert final.status == RefillStatus.FILLED.value
    assert final.times_refilled == 2


def test_crash_before_commit_reprocesses_cleanly(db, customer, medication, provider, prescription, outbox, monkeypatch):
    stock_medication(db, provider, medication)
    request = _approved_request(db, customer, medication, prescription, outbox)
    real_add = refill_service._add_notification

    def crash(*args, **kwargs):
        raise RuntimeError("worker killed")

    monkeypatch.setattr(refill_service, "_add_notification", crash)
    report = refill_service.run_refill_cycle(TODAY, dispatcher=outbox)
    assert report.failed == 1

    untouched = refill_service.get_refill_request(db, request.id)
    assert untouched.refills_remaining == 1
    assert untouched.next_refill_date == TODAY
    assert _orders_for(db, request.id) == []

    monkeypatch.setattr(refill_service, "_add_notification", real_add)
    report = refill_service.run_refill_cycle(TODAY, dispatcher=outbox)

    assert report.filled == 1
    assert len(_orders_for(db, request.id)) == 1


def test_delivery_failure_after_commit_keeps_fill(db, customer, medication, provider, prescription):
    stock_medication(db, provider, medication)
    request = _approved_request(db, customer, medication, prescription, Outbox(), refills=2)

    def crash(db, notification_ids):
        raise RuntimeError("mail relay unreachable")

    report = refill_service.run_refill_cycle(TODAY, dispatcher=crash)
    assert (report.filled, report.failed) == (1, 0)
    assert report.orders_created == 1

    results = _notifications(db, request.id, RefillNotificationType.AUTO_REFILL_RESULT)
    assert len(results) == 1

    rerun = refill_service.run_refill_cycle(TODAY, dispatcher=Outbox())

    assert rerun.processed == 0
    assert len(_orders_for(db, request.id)) == 1
    assert refill_service.get_refill_request(db, request.id).refills_remaining == 1


def test_overdue_request_is_filled_once_per_day(db, customer, medication, provider, prescription, outbox):
    stock_medication(db, provider, medication, quantity=50)
    request = _approved_request(
        db, customer, medication, prescription, outbox, refills=3, due=TODAY - timedelta(days=40)
    )

    first = refill_service.run_refill_cycle(TODAY, dispatcher=outbox)
    second = refill_service.run_refill_cycle(TODAY, dispatcher=outbox)

    assert first.filled == 1
    assert second.processed == 0
    assert len(_orders_for(db, request.id)) == 1

    request = refill_service.get_refill_request(db, request.id)
    assert request.refills_remaining == 2
    assert request.last_filled_date == TODAY
    # Still behind schedule, so it catches up on the next run date.
    assert request.next_refill_date == TODAY - timedelta(days=10)
    assert refill_service.due_refill_request_ids(db, TODAY) == []
    assert refill_service.due_refill_request_ids(db, TODAY + timedelta(days=1)) == [request.id]


def test_one_failing_request_does_not_stop_the_cycle(db, customer, medication, provider, prescription, outbox, monkeypatch):
    stock_medication(db, provider, medication)
    broken = _approved_request(db, customer, medication, prescription, outbox)
    healthy = _approved_request(db, customer, medication, prescription, outbox)
    real_blocker = refill_service.refill_blocker

    def blocker(db, request, name):
        if request.id == broken.id:
            raise RuntimeError("corrupt row")
        return real_blocker(db, request, name)

    monkeypatch.setattr(refill_service, "refill_blocker", blocker)
    report = refill_service.run_refill_cycle(TODAY, dispatcher=outbox)

    assert report.failed == 1
    assert report.filled == 1
    assert refill_service.get_refill_request(db, healthy.id).refills_remaining == 0
    assert refill_service.get_refill_request(db, broken.id).refills_remaining == 1


def test_auto_order_failure_is_reported(db, customer, medication, provider, outbox):
    # No prescription on the request, but the medication requires one.
    stock_medication(db, provider, medication)
    request = _approved_request(db, customer, medication, None, outbox)

    report = refill_service.run_refill_cycle(TODAY, dispatcher=outbox)

    assert report.filled == 1 and report.orders_created == 0
    results = _notifications(db, request.id, RefillNotificationType.AUTO_REFILL_RESULT)
    assert len(results) == 1
    assert "could not be placed" in results[0].message
    assert "requires a prescription" in results[0].message


def test_overlapping_cycle_is_skipped(outbox):
    with named_lock(refill_service.SCHEDULER_LOCK):
        report = refill_service.run_refill_cycle(TODAY, dispatcher=outbox)

    assert report.skipped is True
    assert report.processed == 0


def test_next_date_uses_default_interval(db, customer, otc_medication, outbox):
    request = refill_service.create_refill_request(
        db, user_id=customer.id, medication_id=otc_medication.id, refills_authorized=1, next_refill_date=TODAY
    )

    assert refill_service.compute_next_refill_date(request, otc_medication, TODAY) == TODAY + timedelta(days=30)
    otc_medication.refill_interval_days = 90
    assert refill_service.compute_next_refill_date(request, otc_medication, TODAY) == TODAY + timedelta(days=90)


# ----------------------------------------------------------------------
# Request actions
# ----------------------------------------------------------------------


def test_auto_refill_needs_authorized_refills(db, customer, medication):
    with pytest.raises(ValidationError):
        refill_service.create_refill_request(
            db, user_id=customer.id, medication_id=medication.id, refills_authorized=0, auto_refill=True
        )


def test_approve_without_date_is_due_immediately(db, customer, otc_medication, outbox):
    request = refill_service.create_refill_request(
        db, user_id=customer.id, medication_id=otc_medication.id, refills_authorized=2
    )

    approved = refill_service.approve_refill_request(db, request.id, dispatcher=outbox)

    assert approved.status == RefillStatus.APPROVED.value
    assert approved.next_refill_date is not None
    updates = _notifications(db, request.id, RefillNotificationType.STATUS_UPDATE)
    assert len(updates) == 1
    assert outbox.delivered == [updates[0].id]

    # Approving again changes nothing and sends nothing.
    refill_service.approve_refill_request(db, request.id, dispatcher=outbox)
    assert len(outbox.delivered) == 1


def test_decline_turns_off_auto_refill(db, customer, otc_medication, outbox):
    request = refill_service.create_refill_request(
        db, user_id=customer.id, medication_id=otc_medication.id, refills_authorized=2, auto_refill=True
    )

    declined = refill_service.decline_refill_request(db, request.id, reason="needs review", dispatcher=outbox)

    assert declined.status == RefillStatus.DECLINED.value
    assert declined.auto_refill is False
    message = _notifications(db, request.id, RefillNotificationType.STATUS_UPDATE)[0].message
    assert "needs review" in message
    with pytest.raises(InvalidTransition):
        refill_service.approve_refill_request(db, request.id, dispatcher=outbox)


def test_toggle_auto_refill(db, customer, otc_medication):
    request = refill_service.create_refill_request(
        db, user_id=customer.id, medication_id=otc_medication.id, refills_authorized=1
    )

    assert refill_service.toggle_auto_refill(db, request.id).auto_refill is True
    assert refill_service.toggle_auto_refill(db, request.id).auto_refill is False
    assert refill_service.toggle_auto_refill(db, request.id, enabled=True).auto_refill is True


def test_toggle_auto_refill_needs_refills_left(db, customer, otc_medication):
    request = refill_service.create_refill_request(
        db, user_id=customer.id, medication_id=otc_medication.id, refills_authorized=0
    )

    with pytest.raises(InvalidTransition):
        refill_service.toggle_auto_refill(db, request.id, enabled=True)


def test_mark_notification_read(db, customer, other_customer, otc_medication, outbox):
    request = refill_service.create_refill_request(
        db, user_id=customer.id, medication_id=otc_medication.id, refills_authorized=1
    )
    refill_service.approve_refill_request(db, request.id, dispatcher=outbox)
    notification_id = outbox.delivered[0]

    from app.core.exceptions import NotFoundError

    with pytest.raises(NotFoundError):
        refill_service.mark_notification_read(db, notification_id, user_id=other_customer.id)

    read = refill_service.mark_notification_read(db, notification_id, user_id=customer.id)
    assert read.read is True
    assert refill_service.list_notifications_for_user(db, customer.id, unread_only=True) == []


def test_default_dispatcher_logs_deliveries(db, customer, otc_medication):
    from app.models.notification import NotificationDelivery

    request = refill_service.create_refill_request(
        db, user_id=customer.id, medication_id=otc_medication.id, refills_authorized=1
    )
    refill_service.approve_refill_request(db, request.id)

    deliveries = db.query(NotificationDelivery).all()
    assert len(deliveries) == 1
    assert deliveries[0].channel == "email"
    assert deliveries[0].status == "sent"
    assert deliveries[0].refill_notification_id == db.query(RefillNotification.id).scalar()
