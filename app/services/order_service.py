# app/services/order_service.py
"""
Order fulfillment state machine.

    pending -> processing -> shipped -> delivered
    pending | processing -> cancelled

Every transition runs under the order's named lock with the row loaded
FOR UPDATE; the `version` column catches anything that slips past both.
Shipping additionally holds the prescription lock (taken first, same order
as revoke_prescription) so the prescription check and the status change
happen as one step.

Re-requesting a transition that already happened returns the order as-is.
A failed shipping check is never remembered: the next attempt re-evaluates.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from contextlib import ExitStack
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Iterable

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import get_settings
from app.core.exceptions import (
    ConcurrencyConflict,
    InsufficientInventory,
    InvalidTransition,
    NoMappingAvailable,
    NotFoundError,
    PrescriptionNotVerified,
    ValidationError,
)
from app.core.redis import named_lock
from app.models.medication import Medication
from app.models.order import CANCELLABLE_STATUSES, Order, OrderItem, OrderStatus
from app.models.user import User
from app.services.inventory_service import resolve_primary
from app.services.prescription_service import (
    get_prescription,
    prescription_lock_name,
    shipping_block_reason,
)
from app.services.shipping_service import ShippingService, get_shipping_service
from app.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    OrderStatus.PENDING.value: {OrderStatus.PROCESSING.value, OrderStatus.CANCELLED.value},
    OrderStatus.PROCESSING.value: {OrderStatus.SHIPPED.value, OrderStatus.CANCELLED.value},
    OrderStatus.SHIPPED.value: {OrderStatus.DELIVERED.value},
    OrderStatus.DELIVERED.value: set(),
    OrderStatus.CANCELLED.value: set(),
}


def order_lock_name(order_id: int) -> str:
    return f"order:{order_id}"


@dataclass(frozen=True)
class OrderLine:
    medication_id: int
    quantity: int


# ----------------------------------------------------------------------
# Reads
# ----------------------------------------------------------------------


def get_order(db: Session, order_id: int) -> Order:
    order = (
        db.query(Order)
        .options(selectinload(Order.items))
        .filter(Order.id == order_id)
        .populate_existing()
        .first()
    )
    if not order:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def list_orders_by_status(
    db: Session, status: str, *, limit: int = 20, offset: int = 0
) -> tuple[list[Order], int]:
    if status not in ALLOWED_TRANSITIONS:
        raise ValidationError(f"Unknown order status '{status}'")
    if limit <= 0 or offset < 0:
        raise ValidationError("limit must be positive and offset non-negative")

    total = db.execute(select(func.count(Order.id)).where(Order.status == status)).scalar_one()
    orders = (
        db.query(Order)
        .options(selectinload(Order.items))
        .filter(Order.status == status)
        .order_by(Order.order_date.desc(), Order.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return orders, total


def list_orders_for_prescription(db: Session, prescription_id: int) -> list[Order]:
    return (
        db.query(Order)
        .options(selectinload(Order.items))
        .filter(Order.prescription_id == prescription_id)
        .order_by(Order.id.asc())
        .all()
    )


def list_orders_for_user(db: Session, user_id: int) -> list[Order]:
    return (
        db.query(Order)
        .options(selectinload(Order.items))
        .filter(Order.user_id == user_id)
        .order_by(Order.order_date.desc(), Order.id.desc())
        .all()
    )


# ----------------------------------------------------------------------
# Creation
# ----------------------------------------------------------------------


def snapshot_unit_price(db: Session, medication: Medication) -> Decimal:
    """
    Price taken from the primary inventory item when one resolves,
    otherwise from the catalog.
    """
    price = None
    try:
        item = resolve_primary(db, medication.id)
        price = item.retail_price if item.retail_price is not None else item.price
    except NoMappingAvailable:
        pass

    if price is None:
        price = medication.retail_price if medication.retail_price is not None else medication.price
    return Decimal(price).quantize(CENT)


def create_order(
    db: Session,
    *,
    user_id: int,
    items: Iterable[OrderLine],
    prescription_id: int | None = None,
    shipping_method: str | None = None,
    shipping_cost: Decimal | float | None = None,
    shipping_address: str | None = None,
    refill_request_id: int | None = None,
    commit: bool = True,
) -> Order:
    """
    Create a pending order with unit prices frozen at creation time.

    Everything is validated before anything is added to the session, so a
    rejected order leaves the caller's transaction untouched (the refill
    scheduler creates orders inside its own transaction with commit=False).
    """
    settings = get_settings()
    lines = list(items)

    if db.get(User, user_id) is None:
        raise NotFoundError(f"User {user_id} not found")
    if not lines:
        raise ValidationError("An order needs at least one item")
    for line in lines:
        if line.quantity is None or line.quantity <= 0:
            raise ValidationError(
                f"Quantity for medication {line.medication_id} must be greater than 0"
            )

    prescription = None
    if prescription_id is not None:
        prescription = get_prescription(db, prescription_id)
        if prescription.user_id != user_id:
            raise ValidationError(f"Prescription {prescription_id} belongs to another user")
        if prescription.revoked:
            raise ValidationError(f"Prescription {prescription_id} is revoked")

    priced: list[tuple[OrderLine, Decimal]] = []
    subtotal = Decimal("0.00")
    for line in lines:
        medication = db.get(Medication, line.medication_id)
        if medication is None:
            raise NotFoundError(f"Medication {line.medication_id} not found")
        if medication.requires_prescription and prescription is None:
            raise ValidationError(f"{medication.name} requires a prescription")

        unit_price = snapshot_unit_price(db, medication)
        priced.append((line, unit_price))
        subtotal += unit_price * line.quantity

    cost = settings.default_shipping_cost if shipping_cost is None else shipping_cost
    cost = Decimal(str(cost)).quantize(CENT)
    if cost < 0:
        raise ValidationError("Shipping cost cannot be negative")

    order = Order(
        user_id=user_id,
        prescription_id=prescription_id,
        refill_request_id=refill_request_id,
        status=OrderStatus.PENDING.value,
        shipping_method=shipping_method or settings.default_shipping_method,
        shipping_cost=cost,
        shipping_address=shipping_address,
        total=(subtotal + cost).quantize(CENT),
    )
    for line, unit_price in priced:
        order.items.append(
            OrderItem(medication_id=line.medication_id, quantity=line.quantity, unit_price=unit_price)
        )

    db.add(order)
    if not commit:
        db.flush()
        return order

    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info("Order %s created for user %s (total %s)", order.id, user_id, order.total)
    return get_order(db, order.id)


# ----------------------------------------------------------------------
# Transitions
# ----------------------------------------------------------------------


def _load_for_update(db: Session, order_id: int) -> Order:
    order = (
        db.query(Order)
        .filter(Order.id == order_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not order:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def _require_transition(order: Order, target: str) -> None:
    if target not in ALLOWED_TRANSITIONS.get(order.status, set()):
        raise InvalidTransition(f"Order {order.id} cannot move from {order.status} to {target}")


def _transition_once(
    db: Session,
    order_id: int,
    apply: Callable[[Session, Order], bool],
    *,
    lock_prescription: bool,
) -> Order:
    row = db.execute(select(Order.prescription_id).where(Order.id == order_id)).first()
    if row is None:
        raise NotFoundError(f"Order {order_id} not found")

    with ExitStack() as stack:
        if lock_prescription and row.prescription_id is not None:
            stack.enter_context(named_lock(prescription_lock_name(row.prescription_id)))
        stack.enter_context(named_lock(order_lock_name(order_id)))

        try:
            order = _load_for_update(db, order_id)
            if apply(db, order):
                db.commit()
            else:
                db.rollback()
        except Exception:
            db.rollback()
            raise

    return get_order(db, order_id)


def _transition(
    db: Session,
    order_id: int,
    apply: Callable[[Session, Order], bool],
    *,
    lock_prescription: bool = False,
) -> Order:
    """
    Run `apply` on the locked order and commit when it reports a change.
    A lost optimistic-lock race (or a lock wait timeout) is retried with a
    fresh read before ConcurrencyConflict reaches the caller.
    """
    attempts = get_settings().order_conflict_retries + 1
    for attempt in range(1, attempts + 1):
        try:
            return _transition_once(db, order_id, apply, lock_prescription=lock_prescription)
        except (StaleDataError, ConcurrencyConflict) as exc:
            db.rollback()
            if attempt >= attempts:
                raise ConcurrencyConflict(
                    f"Order {order_id} was changed by another request; please retry"
                ) from exc
            logger.info("Retrying transition of order %s after conflict: %s", order_id, exc)
    raise ConcurrencyConflict(f"Order {order_id} was changed by another request; please retry")


def _mark_processing(order: Order) -> None:
    _require_transition(order, OrderStatus.PROCESSING.value)
    order.status = OrderStatus.PROCESSING.value
    order.processing_at = utc_now()
    logger.info("Order %s pending -> processing", order.id)


def start_processing(db: Session, order_id: int) -> Order:
    def apply(db: Session, order: Order) -> bool:
        if order.status in (
            OrderStatus.PROCESSING.value,
            OrderStatus.SHIPPED.value,
            OrderStatus.DELIVERED.value,
        ):
            return False
        _mark_processing(order)
        return True

    return _transition(db, order_id, apply)


def start_processing_in_transaction(db: Session, order: Order) -> Order:
    """
    pending -> processing inside the caller's transaction; the caller commits.
    Meant for orders the caller created in that same transaction, which no
    other session can see yet.
    """
    _mark_processing(order)
    db.flush()
    return order


def check_shippable(db: Session, order: Order) -> None:
    """
    Raise PrescriptionNotVerified or InsufficientInventory if the order
    cannot ship right now. Reads current committed state only.
    """
    if order.prescription_id is not None:
        reason = shipping_block_reason(db, order.prescription_id, for_update=True)
        if reason:
            raise PrescriptionNotVerified(reason)

    needed: dict[int, int] = defaultdict(int)
    for item in order.items:
        needed[item.medication_id] += item.quantity

    for medication_id, quantity in sorted(needed.items()):
        try:
            inventory_item = resolve_primary(db, medication_id)
        except NoMappingAvailable:
            raise InsufficientInventory(
                f"cannot ship: no inventory source for medication {medication_id}"
            )
        if not inventory_item.in_stock or inventory_item.quantity < quantity:
            raise InsufficientInventory(
                f"cannot ship: medication {medication_id} has {inventory_item.quantity} "
                f"available at its primary source, {quantity} ordered"
            )


def ship_order(db: Session, order_id: int, shipping_service: ShippingService | None = None) -> Order:
    shipping_service = shipping_service or get_shipping_service()

    def apply(db: Session, order: Order) -> bool:
        if order.status in (OrderStatus.SHIPPED.value, OrderStatus.DELIVERED.value):
            return False
        _require_transition(order, OrderStatus.SHIPPED.value)
        check_shippable(db, order)

        label = shipping_service.create_label(order)
        order.status = OrderStatus.SHIPPED.value
        order.tracking_number = label.tracking_number
        order.carrier = label.carrier
        order.shipped_at = utc_now()
        logger.info(
            "Order %s processing -> shipped (%s %s)", order.id, label.carrier, label.tracking_number
        )
        return True

    return _transition(db, order_id, apply, lock_prescription=True)


def confirm_delivery(db: Session, order_id: int) -> Order:
    def apply(db: Session, order: Order) -> bool:
        if order.status == OrderStatus.DELIVERED.value:
            return False
        _require_transition(order, OrderStatus.DELIVERED.value)
        order.status = OrderStatus.DELIVERED.value
        order.delivered_at = utc_now()
        logger.info("Order %s shipped -> delivered", order.id)
        return True

    return _transition(db, order_id, apply)


def _mark_cancelled(order: Order, reason: str | None) -> None:
    previous = order.status
    order.status = OrderStatus.CANCELLED.value
    order.cancelled_at = utc_now()
    order.cancel_reason = reason
    logger.info("Order %s %s -> cancelled (%s)", order.id, previous, reason or "no reason given")


def cancel_order(db: Session, order_id: int, *, reason: str | None = None) -> Order:
    def apply(db: Session, order: Order) -> bool:
        if order.status == OrderStatus.CANCELLED.value:
            return False
        if order.status not in CANCELLABLE_STATUSES:
            raise InvalidTransition(
                f"Order {order.id} is {order.status} and cannot be cancelled; handle it as a return"
            )
        _mark_cancelled(order, reason)
        return True

    return _transition(db, order_id, apply)


def cancel_locked_order(db: Session, order_id: int, *, reason: str) -> bool:
    """
    Cancel inside the caller's transaction. The caller holds the order lock
    and commits. Returns False when the order is no longer cancellable.
    """
    order = _load_for_update(db, order_id)
    if order.status not in CANCELLABLE_STATUSES:
        return False
    _mark_cancelled(order, reason)
    db.flush()
    return True


def approve_order(db: Session, order_id: int, shipping_service: ShippingService | None = None) -> Order:
    """
    Admin approval: pending -> processing (committed on its own), then an
    attempt to ship. A failed shipping check leaves the order processing
    and propagates the error.
    """
    order = get_order(db, order_id)
    if order.status == OrderStatus.CANCELLED.value:
        raise InvalidTransition(f"Order {order_id} is cancelled")
    if order.status in (OrderStatus.SHIPPED.value, OrderStatus.DELIVERED.value):
        return order

    if order.status == OrderStatus.PENDING.value:
        start_processing(db, order_id)
    return ship_order(db, order_id, shipping_service)
