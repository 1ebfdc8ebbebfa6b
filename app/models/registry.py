# app/models/registry.py
# Importing this module registers every table on Base.metadata
# (used by alembic/env.py, app startup and the test suite).
from app.models.base import Base
from app.models.user import User
from app.models.medication import Medication
from app.models.prescription import Prescription
from app.models.refill import RefillRequest, RefillNotification
from app.models.order import Order, OrderItem
from app.models.inventory import InventoryProvider, InventoryItem, InventoryMapping
from app.models.notification import NotificationDelivery

__all__ = [
    "Base",
    "User",
    "Medication",
    "Prescription",
    "RefillRequest",
    "RefillNotification",
    "Order",
    "OrderItem",
    "InventoryProvider",
    "InventoryItem",
    "InventoryMapping",
    "NotificationDelivery",
]
