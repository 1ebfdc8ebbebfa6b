from app.services import inventory_service, order_service
from app.services.order_service import OrderLine

from helpers import auth, item_by_external_id, make_item, stock_medication, verified_prescription

API = "/api/v1"


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_requests_need_a_known_user(client, customer):
    assert client.get(f"{API}/refill-requests").status_code == 401
    assert client.get(f"{API}/refill-requests", headers={"X-User-Id": "9999"}).status_code == 401
    assert client.get(f"{API}/refill-requests", headers=auth(customer)).status_code == 200


def test_verify_and_revoke_flow(client, db, customer, pharmacist, medication, provider):
    stock_medication(db, provider, medication)

    created = client.post(f"{API}/prescriptions", json={"doctor_name": "Dr. Reyes"}, headers=auth(customer))
    assert created.status_code == 201
    prescription_id = created.json()["id"]

    assert client.post(f"{API}/prescriptions/{prescription_id}/verify", headers=auth(customer)).status_code == 403

    verified = client.post(f"{API}/prescriptions/{prescription_id}/verify", headers=auth(pharmacist))
    assert verified.status_code == 200
    assert verified.json()["verification_status"] == "verified"

    order = client.post(
        f"{API}/orders",
        json={"prescription_id": prescription_id, "items": [{"medication_id": medication.id, "quantity": 1}]},
        headers=auth(customer),
    ).json()
    order_service.start_processing(db, order["id"])

    revoked = client.post(
        f"{API}/prescriptions/{prescription_id}/revoke",
        json={"reason": "reported lost"},
        headers=auth(pharmacist),
    )
    assert revoked.status_code == 200
    body = revoked.json()
    assert body["prescription"]["revoked"] is True
    assert body["cancelled_order_ids"] == [order["id"]]

    can_ship = client.get(f"{API}/prescriptions/{prescription_id}/can-ship", headers=auth(pharmacist)).json()
    assert can_ship == {
        "prescription_id": prescription_id,
        "can_ship": False,
        "reason": "cannot ship: prescription revoked",
    }

    again = client.post(f"{API}/prescriptions/{prescription_id}/verify", headers=auth(pharmacist))
    assert again.status_code == 409
    assert again.json()["error"] == "InvalidTransition"


def test_order_errors_map_to_status_codes(client, db, customer, pharmacist, medication, provider):
    prescription = verified_prescription(db, customer, pharmacist)
    stock_medication(db, provider, medication, quantity=0, in_stock=False)

    bad = client.post(
        f"{API}/orders",
        json={"prescription_id": prescription.id, "items": [{"medication_id": medication.id, "quantity": 0}]},
        headers=auth(customer),
    )
    assert bad.status_code == 400
    assert bad.json()["error"] == "ValidationError"

    order = client.post(
        f"{API}/orders",
        json={"prescription_id": prescription.id, "items": [{"medication_id": medication.id, "quantity": 2}]},
        headers=auth(customer),
    )
    assert order.status_code == 201
    order_id = order.json()["id"]

    approve = client.post(f"{API}/orders/{order_id}/approve", headers=auth(pharmacist))
    assert approve.status_code == 409
    assert approve.json()["error"] == "InsufficientInventory"
    assert client.get(f"{API}/orders/{order_id}", headers=auth(customer)).json()["status"] == "processing"

    assert client.get(f"{API}/orders/424242", headers=auth(pharmacist)).status_code == 404


def test_approve_then_deliver(client, db, customer, pharmacist, otc_medication, provider):
    stock_medication(db, provider, otc_medication)
    order_id = client.post(
        f"{API}/orders",
        json={"items": [{"medication_id": otc_medication.id, "quantity": 1}], "shipping_method": "overnight"},
        headers=auth(customer),
    ).json()["id"]

    shipped = client.post(f"{API}/orders/{order_id}/approve", headers=auth(pharmacist)).json()
    assert shipped["status"] == "shipped"
    assert shipped["carrier"] == "FedEx"

    delivered = client.post(f"{API}/orders/{order_id}/deliver", headers=auth(pharmacist)).json()
    assert delivered["status"] == "delivered"

    cancel = client.post(f"{API}/orders/{order_id}/cancel", headers=auth(customer))
    assert cancel.status_code == 409


def test_customers_cannot_read_other_orders(client, db, customer, other_customer, otc_medication):
    order = order_service.create_order(db, user_id=customer.id, items=[OrderLine(otc_medication.id, 1)])

    assert client.get(f"{API}/orders/{order.id}", headers=auth(other_customer)).status_code == 403
    assert client.post(f"{API}/orders/{order.id}/cancel", headers=auth(other_customer)).status_code == 403


def test_customer_lists_own_orders_and_prescriptions(client, db, customer, other_customer, pharmacist, otc_medication):
    prescription = verified_prescription(db, customer, pharmacist)
    verified_prescription(db, other_customer, pharmacist)
    with_rx = order_service.create_order(
        db, user_id=customer.id, prescription_id=prescription.id, items=[OrderLine(otc_medication.id, 1)]
    )
    order_service.create_order(db, user_id=customer.id, items=[OrderLine(otc_medication.id, 1)])
    order_service.create_order(db, user_id=other_customer.id, items=[OrderLine(otc_medication.id, 1)])

    orders = client.get(f"{API}/orders/user/{customer.id}", headers=auth(customer))
    assert orders.status_code == 200
    assert len(orders.json()) == 2
    assert {o["user_id"] for o in orders.json()} == {customer.id}

    prescriptions = client.get(f"{API}/prescriptions/user/{customer.id}", headers=auth(customer)).json()
    assert [p["id"] for p in prescriptions] == [prescription.id]

    linked = client.get(f"{API}/prescriptions/{prescription.id}/orders", headers=auth(customer)).json()
    assert [o["id"] for o in linked] == [with_rx.id]

    assert client.get(f"{API}/orders/user/{customer.id}", headers=auth(other_customer)).status_code == 403
    assert client.get(f"{API}/prescriptions/user/{customer.id}", headers=auth(other_customer)).status_code == 403
    assert client.get(f"{API}/prescriptions/{prescription.id}/orders", headers=auth(other_customer)).status_code == 403
    assert client.get(f"{API}/orders/user/{customer.id}", headers=auth(pharmacist)).status_code == 200


def test_list_orders_by_status(client, db, customer, pharmacist, otc_medication):
    for _ in range(3):
        order_service.create_order(db, user_id=customer.id, items=[OrderLine(otc_medication.id, 1)])

    page = client.get(f"{API}/orders/status/pending?limit=2&offset=0", headers=auth(pharmacist)).json()
    assert page["total"] == 3
    assert len(page["items"]) == 2
    assert page["limit"] == 2

    assert client.get(f"{API}/orders/status/pending", headers=auth(customer)).status_code == 403
    assert client.get(f"{API}/orders/status/unknown", headers=auth(pharmacist)).status_code == 400


def test_put_mapping_is_primary_promotes(client, db, pharmacist, medication, provider, second_provider):
    inventory_service.ingest_snapshot(db, provider.id, [make_item("A", medication.name)])
    inventory_service.ingest_snapshot(db, second_provider.id, [make_item("B", medication.name)])
    item_a = item_by_external_id(db, provider.id, "A")
    item_b = item_by_external_id(db, second_provider.id, "B")

    first = client.post(
        f"{API}/inventory/mappings",
        json={"medication_id": medication.id, "inventory_item_id": item_a.id, "isPrimary": True},
        headers=auth(pharmacist),
    ).json()
    second = client.post(
        f"{API}/inventory/mappings",
        json={"medication_id": medication.id, "inventory_item_id": item_b.id},
        headers=auth(pharmacist),
    ).json()

    promoted = client.put(
        f"{API}/inventory/mappings/{second['id']}", json={"isPrimary": True}, headers=auth(pharmacist)
    )
    assert promoted.status_code == 200
    assert promoted.json()["is_primary"] is True

    mappings = client.get(f"{API}/inventory/medications/{medication.id}/mappings", headers=auth(pharmacist)).json()
    assert {m["id"]: m["is_primary"] for m in mappings} == {first["id"]: False, second["id"]: True}

    primary = client.get(f"{API}/inventory/medications/{medication.id}/primary", headers=auth(pharmacist)).json()
    assert primary["item"]["id"] == item_b.id


def test_primary_lookup_without_mapping(client, pharmacist, medication):
    response = client.get(f"{API}/inventory/medications/{medication.id}/primary", headers=auth(pharmacist))

    assert response.status_code == 404
    assert response.json()["error"] == "NoMappingAvailable"


def test_sync_endpoint_runs_ingestion(client, pharmacist, medication, otc_medication, provider):
    response = client.post(f"{API}/inventory/providers/{provider.id}/sync", headers=auth(pharmacist))
    assert response.status_code == 202
    assert response.json() == {"provider_id": provider.id, "status": "queued"}

    items = client.get(f"{API}/inventory/providers/{provider.id}/items", headers=auth(pharmacist)).json()
    assert {i["name"] for i in items} == {"Lisinopril", "Ibuprofen"}

    mapped = client.post(f"{API}/inventory/providers/{provider.id}/auto-map", headers=auth(pharmacist)).json()
    assert mapped["total"] == 2
    assert mapped["mapped"] == 2


def test_create_provider_endpoint(client, pharmacist, customer):
    payload = {"name": "RxWare West", "provider_type": "rxware", "api_endpoint": "https://rx.example.test"}

    assert client.post(f"{API}/inventory/providers", json=payload, headers=auth(customer)).status_code == 403
    created = client.post(f"{API}/inventory/providers", json=payload, headers=auth(pharmacist))
    assert created.status_code == 201
    assert created.json()["connection_status"] == "disconnected"
    assert "api_key" not in created.json()


def test_refill_request_endpoints(client, db, customer, pharmacist, otc_medication):
    created = client.post(
        f"{API}/refill-requests",
        json={"medication_id": otc_medication.id, "refills_authorized": 2, "quantity": 1},
        headers=auth(customer),
    )
    assert created.status_code == 201
    request_id = created.json()["id"]

    approved = client.post(f"{API}/refill-requests/{request_id}/approve", headers=auth(pharmacist)).json()
    assert approved["status"] == "approved"
    assert approved["next_refill_date"] is not None
    assert approved["refills_remaining"] == 2

    toggled = client.post(f"{API}/refill-requests/{request_id}/toggle-auto-refill", headers=auth(customer)).json()
    assert toggled["auto_refill"] is True

    shown = client.get(f"{API}/refill-requests/{request_id}", headers=auth(customer)).json()
    assert shown["auto_refill"] is True

    inbox = client.get(f"{API}/refill-notifications", headers=auth(customer)).json()
    assert len(inbox) == 1
    assert inbox[0]["notification_type"] == "status_update"

    read = client.post(f"{API}/refill-notifications/{inbox[0]['id']}/read", headers=auth(customer)).json()
    assert read["read"] is True


def test_refill_request_validation_error(client, customer, medication):
    response = client.post(
        f"{API}/refill-requests",
        json={"medication_id": medication.id, "refills_authorized": 0, "auto_refill": True},
        headers=auth(customer),
    )

    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"
