from decimal import Decimal

from app.inventory.adapters import NormalizedInventoryItem
from app.services import inventory_service


def auth(user):
    return {"X-User-Id": str(user.id)}


def make_item(external_id, name, *, quantity=50, in_stock=None, price="10.00", retail_price=None):
    return NormalizedInventoryItem(
        external_id=external_id,
        name=name,
        quantity=quantity,
        in_stock=quantity > 0 if in_stock is None else in_stock,
        price=Decimal(price) if price is not None else None,
        retail_price=Decimal(retail_price) if retail_price is not None else None,
    )


def item_by_external_id(db, provider_id, external_id):
    return next(
        i for i in inventory_service.list_provider_items(db, provider_id) if i.external_id == external_id
    )


def stock_medication(db, provider, medication, *, quantity=50, in_stock=None, price="10.00", retail_price=None):
    """Ingest one item for the medication and map it manually as primary."""
    external_id = f"ITEM-{medication.id}"
    inventory_service.ingest_snapshot(
        db,
        provider.id,
        [make_item(external_id, medication.name, quantity=quantity, in_stock=in_stock, price=price, retail_price=retail_price)],
    )
    item = item_by_external_id(db, provider.id, external_id)
    return inventory_service.map_item_manually(
        db, medication_id=medication.id, inventory_item_id=item.id, is_primary=True
    )


def verified_prescription(db, user, reviewer):
    from app.services import prescription_service

    prescription = prescription_service.create_prescription(db, user_id=user.id, doctor_name="Dr. Reyes")
    return prescription_service.verify_prescription(db, prescription.id, reviewer_id=reviewer.id)
