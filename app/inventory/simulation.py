# app/inventory/simulation.py
"""
Simulated provider for development and demos.

Builds generic-format raw items from the medication catalog. Values are
seeded per (provider, medication) so repeated syncs are stable.
"""

import random
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from app.models.medication import Medication
from app.utils.datetime_utils import utc_now


def simulate_inventory(db: Session, provider_id: int, provider_type: str = "simulation") -> list[dict[str, Any]]:
    medications = db.query(Medication).order_by(Medication.id.asc()).all()
    prefix = provider_type[:3].upper()

    items: list[dict[str, Any]] = []
    for med in medications:
        rng = random.Random(f"{provider_id}:{med.id}")
        quantity = rng.randint(0, 100)
        price = Decimal(med.price)
        retail = Decimal(med.retail_price) if med.retail_price is not None else price * Decimal("1.2")

        items.append(
            {
                "id": f"SIM-{med.id}",
                "name": med.name,
                "description": med.description or f"{med.name} {med.dosage or ''}".strip(),
                "ndc": f"{rng.randint(10000, 99999)}-{rng.randint(100, 999)}-{rng.randint(10, 99)}",
                "quantity": quantity,
                "unit": "tablets",
                "price": str(price),
                "wholesalePrice": str((price * Decimal("0.7")).quantize(Decimal("0.01"))),
                "retailPrice": str(retail.quantize(Decimal("0.01"))),
                "location": f"Shelf {chr(65 + rng.randint(0, 25))}-{rng.randint(1, 20)}",
                "inStock": quantity > 0,
                "reorderPoint": 10,
                "reorderQuantity": 50,
                "supplierInfo": med.brand_name or "Generic Supplier",
                "drugId": f"{prefix}-{med.id}",
                "lastUpdated": utc_now().isoformat(),
            }
        )
    return items
