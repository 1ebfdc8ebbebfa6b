from datetime import datetime, timezone
from decimal import Decimal

import pytest

from app.core.exceptions import ExternalProviderError
from app.inventory.adapters import extract_items, normalize_item, normalize_items


def test_rxware_item():
    raw = {
        "inventoryId": "RX-100",
        "productName": "Amoxicillin 500mg",
        "ndcNumber": "12345-678-90",
        "quantityOnHand": "42",
        "dosageForm": "capsule",
        "awp": 20,
        "acquisitionCost": "11.257",
        "retailPrice": "24.99",
        "shelfLocation": "A-3",
        "expirationDate": "2027-01-31T00:00:00Z",
        "reorderPoint": 10,
    }

    item = normalize_item("rxware", raw)

    assert item.external_id == "RX-100"
    assert item.name == "Amoxicillin 500mg"
    assert item.ndc == "12345-678-90"
    assert item.quantity == 42
    assert item.in_stock is True
    assert item.price == Decimal("20.00")
    assert item.wholesale_price == Decimal("11.26")
    assert item.retail_price == Decimal("24.99")
    assert item.location == "A-3"
    assert item.expiration_date == datetime(2027, 1, 31, tzinfo=timezone.utc)
    assert item.reorder_point == 10
    assert item.raw_data == raw


def test_mckesson_in_stock_flag_without_quantity():
    item = normalize_item("mckesson", {"sku": "MK-1", "productName": "Metformin", "inStock": True})

    assert item.quantity == 0
    assert item.in_stock is True


def test_pioneerrx_and_cardinal_field_names():
    pioneer = normalize_item("pioneerrx", {"itemId": "P-1", "drugName": "Atorvastatin", "stockQuantity": 7, "sellingPrice": "9.5"})
    cardinal = normalize_item("cardinal", {"productId": "C-1", "name": "Omeprazole", "inventoryLevel": 0, "available": False})

    assert (pioneer.external_id, pioneer.quantity, pioneer.retail_price) == ("P-1", 7, Decimal("9.50"))
    assert (cardinal.external_id, cardinal.quantity, cardinal.in_stock) == ("C-1", 0, False)


def test_unparseable_values_fall_back():
    item = normalize_item(
        "generic",
        {"id": 5, "name": "  Aspirin ", "quantity": "lots", "price": "n/a", "expirationDate": "soon"},
    )

    assert item.external_id == "5"
    assert item.name == "Aspirin"
    assert item.quantity == 0
    assert item.in_stock is False
    assert item.price is None
    assert item.expiration_date is None


def test_negative_quantity_is_clamped():
    assert normalize_item("generic", {"id": "N", "name": "Drug", "quantity": -4}).quantity == 0


def test_items_without_id_or_name_are_dropped():
    items = normalize_items(
        "generic",
        [{"id": "1", "name": "Kept"}, {"name": "No id"}, {"id": "3"}, {"id": "4", "name": ""}],
    )

    assert [i.external_id for i in items] == ["1"]


def test_unknown_provider_type_uses_generic_format():
    assert normalize_item("acme", {"id": "A", "name": "Drug"}).external_id == "A"


def test_extract_items_reads_collection_and_total():
    items, total = extract_items("mckesson", {"inventory": [{"sku": "1"}, "junk"], "totalResults": "12"})

    assert items == [{"sku": "1"}]
    assert total == 12


def test_generic_provider_accepts_bare_list():
    items, total = extract_items("generic", [{"id": "1"}, {"id": "2"}])

    assert len(items) == 2
    assert total is None


@pytest.mark.parametrize(
    "provider_type, payload",
    [
        ("rxware", [{"inventoryId": "1"}]),
        ("rxware", {"items": []}),
        ("cardinal", "not a dict"),
    ],
)
def test_unrecognized_payloads_raise(provider_type, payload):
    with pytest.raises(ExternalProviderError):
        extract_items(provider_type, payload)
