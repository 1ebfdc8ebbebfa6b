#!/usr/bin/env python3
# scripts/seed_demo_data.py
"""
Demo data seeder for local development.

- Staff and customer users (customer / pharmacist / admin)
- A small medication catalog with supply intervals
- One simulated inventory provider, synced and auto-mapped
- A verified prescription with an approved auto-refill request

Run:
  python -m scripts.seed_demo_data --seed
  python -m scripts.seed_demo_data --sync
"""
from __future__ import annotations

import argparse
import logging
import sys
from decimal import Decimal
from pathlib import Path

# Allow "python -m scripts.seed_demo_data" from repo root
REPO_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(REPO_ROOT))

from sqlalchemy.orm import Session  # noqa: E402

from app.core.database import SessionLocal, engine, session_scope  # noqa: E402
from app.core.logging_config import configure_logging  # noqa: E402
from app.models.inventory import InventoryProvider, ProviderType  # noqa: E402
from app.models.medication import Medication  # noqa: E402
from app.models.registry import Base  # noqa: E402
from app.models.user import RoleName, User  # noqa: E402
from app.services import inventory_matcher, inventory_service, prescription_service, refill_service  # noqa: E402
from app.utils.datetime_utils import utc_today  # noqa: E402

logger = logging.getLogger(__name__)

DEMO_PROVIDER_NAME = "Demo Simulation Feed"

DEMO_USERS = [
    ("admin@pharmacy.demo", "Avery", "Admin", RoleName.ADMIN),
    ("pharmacist@pharmacy.demo", "Parker", "Lee", RoleName.PHARMACIST),
    ("customer@pharmacy.demo", "Casey", "Morgan", RoleName.CUSTOMER),
]

DEMO_MEDICATIONS = [
    # name, generic, brand, dosage, price, retail, requires_rx, interval_days
    ("Lisinopril", "lisinopril", "Zestril", "10mg", "8.00", "12.99", True, 30),
    ("Metformin", "metformin hydrochloride", "Glucophage", "500mg", "6.50", "9.99", True, 30),
    ("Atorvastatin", "atorvastatin calcium", "Lipitor", "20mg", "11.00", "18.49", True, 90),
    ("Ibuprofen", "ibuprofen", "Advil", "200mg", "3.25", "5.99", False, None),
]


def _get_or_create_user(db: Session, email: str, first: str, last: str, role: RoleName) -> User:
    user = db.query(User).filter(User.email == email).first()
    if user:
        return user
    user = User(email=email, first_name=first, last_name=last, role=role.value, phone="+15555550100")
    db.add(user)
    db.flush()
    return user


def _get_or_create_medication(db: Session, row: tuple) -> Medication:
    name, generic, brand, dosage, price, retail, requires_rx, interval = row
    med = db.query(Medication).filter(Medication.name == name).first()
    if med:
        return med
    med = Medication(
        name=name,
        generic_name=generic,
        brand_name=brand,
        dosage=dosage,
        price=Decimal(price),
        retail_price=Decimal(retail),
        requires_prescription=requires_rx,
        refill_interval_days=interval,
    )
    db.add(med)
    db.flush()
    return med


def seed() -> None:
    Base.metadata.create_all(bind=engine)

    with session_scope() as db:
        users = {role: _get_or_create_user(db, email, first, last, role) for email, first, last, role in DEMO_USERS}
        meds = [_get_or_create_medication(db, row) for row in DEMO_MEDICATIONS]
        staff_id = users[RoleName.PHARMACIST].id
        customer_id = users[RoleName.CUSTOMER].id
        first_med_id = meds[0].id
        provider_exists = (
            db.query(InventoryProvider).filter(InventoryProvider.name == DEMO_PROVIDER_NAME).first() is not None
        )

    db = SessionLocal()
    try:
        if not provider_exists:
            provider = inventory_service.create_provider(
                db, name=DEMO_PROVIDER_NAME, provider_type=ProviderType.SIMULATION.value
            )
            result = inventory_service.sync_provider(db, provider.id)
            logger.info("Synced demo provider: %s", result)
            mapped = inventory_matcher.auto_map_provider_items(db, provider.id)
            logger.info("Auto-mapped %s items", mapped.mapped)

            prescription = prescription_service.create_prescription(
                db, user_id=customer_id, doctor_name="Dr. Jordan Rivera", notes="Demo prescription"
            )
            prescription_service.verify_prescription(db, prescription.id, reviewer_id=staff_id)

            request = refill_service.create_refill_request(
                db,
                user_id=customer_id,
                medication_id=first_med_id,
                prescription_id=prescription.id,
                quantity=30,
                refills_authorized=3,
                next_refill_date=utc_today(),
                auto_refill=True,
            )
            refill_service.approve_refill_request(db, request.id)
            logger.info("Seeded prescription %s and refill request %s", prescription.id, request.id)
    finally:
        db.close()


def sync_all() -> None:
    db = SessionLocal()
    try:
        for provider in inventory_service.list_providers(db):
            result = inventory_service.sync_provider(db, provider.id)
            logger.info("Provider %s: %s", provider.name, result)
    finally:
        db.close()


def main() -> None:
    configure_logging()
    parser = argparse.ArgumentParser(description="Seed pharmacy demo data")
    parser.add_argument("--seed", action="store_true", help="Create demo users, catalog, provider and refill")
    parser.add_argument("--sync", action="store_true", help="Sync every registered provider now")
    args = parser.parse_args()

    if not (args.seed or args.sync):
        parser.print_help()
        raise SystemExit(1)

    if args.seed:
        seed()
    if args.sync:
        sync_all()


if __name__ == "__main__":
    main()
