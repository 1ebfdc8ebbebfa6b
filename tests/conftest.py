import os
import tempfile
from decimal import Decimal

# Settings are read once at import time, so the test database has to be
# configured before anything under app/ is imported.
_DB_DIR = tempfile.mkdtemp(prefix="pharmacy-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["EMAIL_BACKEND"] = "console"
os.environ.pop("REDIS_URL", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.core.database import SessionLocal, engine  # noqa: E402
from app.models.medication import Medication  # noqa: E402
from app.models.registry import Base  # noqa: E402
from app.models.user import RoleName, User  # noqa: E402
from app.services import inventory_service  # noqa: E402


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def _add_user(db, email, role, first_name=None):
    user = User(email=email, first_name=first_name, role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def customer(db):
    return _add_user(db, "customer@example.com", RoleName.CUSTOMER.value, "Casey")


@pytest.fixture
def other_customer(db):
    return _add_user(db, "other@example.com", RoleName.CUSTOMER.value)


@pytest.fixture
def pharmacist(db):
    return _add_user(db, "pharmacist@example.com", RoleName.PHARMACIST.value, "Pat")


@pytest.fixture
def second_pharmacist(db):
    return _add_user(db, "pharmacist2@example.com", RoleName.PHARMACIST.value)


@pytest.fixture
def medication(db):
    med = Medication(
        name="Lisinopril",
        generic_name="Lisinopril",
        dosage="10mg",
        price=Decimal("12.00"),
        retail_price=Decimal("15.00"),
        requires_prescription=True,
        refill_interval_days=30,
    )
    db.add(med)
    db.commit()
    db.refresh(med)
    return med


@pytest.fixture
def otc_medication(db):
    med = Medication(
        name="Ibuprofen",
        generic_name="Ibuprofen",
        brand_name="Advil",
        dosage="200mg",
        price=Decimal("6.50"),
        requires_prescription=False,
    )
    db.add(med)
    db.commit()
    db.refresh(med)
    return med


@pytest.fixture
def provider(db):
    return inventory_service.create_provider(db, name="Main Warehouse", provider_type="simulation")


@pytest.fixture
def second_provider(db):
    return inventory_service.create_provider(db, name="Backup Warehouse", provider_type="simulation")


@pytest.fixture
def client():
    from app.main import app

    with TestClient(app) as test_client:
        yield test_client
