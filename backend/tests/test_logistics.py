import pytest

from storefront.helpers import utcnow


def vehicle_payload(**overrides):
    payload = {
        "registration_no": "AB1234",
        "owner": "Storefront Ltd",
        "make": "Toyota",
        "model": "Hiace",
        "chassis_no": "CH-0001",
        "make_year": 2020,
        "weight": 2500,
        "cylinder_capacity": 2800,
        "body_type": "Van",
        "assigned_location": "Kowloon",
        "driver": {"name": "Driver", "license_no": "L-1", "contact_no": "91112222"},
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def vehicle(client, admin_headers):
    response = client.post("/api/logistics", json=vehicle_payload(), headers=admin_headers)
    return response.get_json()["vehicle"]


@pytest.fixture
def order(db, customer):
    document = {
        "order_reference": "ORD-202401-0001",
        "user": customer["_id"],
        "items": [],
        "total": 50.0,
        "status": "pending",
        "created_at": utcnow(),
    }
    document["_id"] = db.orders.insert_one(document).inserted_id
    return document


def assign(client, headers, vehicle_id, order_id):
    return client.post(
        "/api/logistics/assign",
        json={"vehicle_id": vehicle_id, "order_id": str(order_id), "scheduled_delivery_date": "2024-02-01"},
        headers=headers,
    )


def test_create_vehicle_defaults_to_available(vehicle):
    assert vehicle["status"] == "Available"
    assert vehicle["assigned_orders"] == []
    assert vehicle["make_year"] == 2020


def test_create_vehicle_lists_missing_fields(client, admin_headers):
    payload = vehicle_payload(owner="", driver={"name": "Only name"})
    response = client.post("/api/logistics", json=payload, headers=admin_headers)
    assert response.status_code == 400
    missing = response.get_json()["details"]["missing"]
    assert "owner" in missing
    assert "driver.license_no" in missing


def test_create_vehicle_rejects_bad_enum(client, admin_headers):
    response = client.post("/api/logistics", json=vehicle_payload(body_type="Spaceship"), headers=admin_headers)
    assert response.status_code == 400
    assert response.get_json()["details"]["field"] == "body_type"


def test_duplicate_registration_is_rejected(client, admin_headers, vehicle):
    response = client.post(
        "/api/logistics", json=vehicle_payload(chassis_no="CH-0002"), headers=admin_headers
    )
    assert response.status_code == 400


def test_vehicle_filters(client, admin_headers, vehicle):
    client.post(
        "/api/logistics",
        json=vehicle_payload(registration_no="ZZ9", chassis_no="CH-9", assigned_location="Hong Kong"),
        headers=admin_headers,
    )
    kowloon = client.get("/api/logistics?location=Kowloon", headers=admin_headers).get_json()
    assert [item["registration_no"] for item in kowloon["vehicles"]] == ["AB1234"]


def test_update_vehicle_via_body_and_path(client, admin_headers, vehicle):
    response = client.put(
        "/api/logistics", json={"id": vehicle["id"], "status": "Maintenance"}, headers=admin_headers
    )
    assert response.get_json()["vehicle"]["status"] == "Maintenance"

    response = client.put(f"/api/logistics/{vehicle['id']}", json={"model": "Coaster"}, headers=admin_headers)
    assert response.get_json()["vehicle"]["model"] == "Coaster"


def test_assignment_lifecycle(client, db, admin_headers, vehicle, order):
    response = assign(client, admin_headers, vehicle["id"], order["_id"])
    assert response.status_code == 200
    assigned = response.get_json()["vehicle"]
    assert assigned["status"] == "On Delivery"
    assert assigned["assigned_orders"][0]["status"] == "Pending"
    assert db.orders.find_one({"_id": order["_id"]})["status"] == "processing"

    lookup = client.get(f"/api/logistics/assign?order_id={order['_id']}", headers=admin_headers)
    assert lookup.get_json()["vehicle"]["id"] == vehicle["id"]

    busy = client.delete(f"/api/logistics/{vehicle['id']}", headers=admin_headers)
    assert busy.status_code == 400

    delivered = client.put(
        "/api/logistics/assign",
        json={"vehicle_id": vehicle["id"], "order_id": str(order["_id"]), "status": "Delivered"},
        headers=admin_headers,
    )
    body = delivered.get_json()
    assert body["order_status"] == "delivered"
    assert body["vehicle"]["status"] == "Available"
    assert body["vehicle"]["assigned_orders"][0]["status"] == "Delivered"
    assert db.orders.find_one({"_id": order["_id"]})["status"] == "delivered"

    assert client.delete(f"/api/logistics/{vehicle['id']}", headers=admin_headers).status_code == 200


def test_order_cannot_be_assigned_twice(client, admin_headers, vehicle, order):
    assign(client, admin_headers, vehicle["id"], order["_id"])
    other = client.post(
        "/api/logistics",
        json=vehicle_payload(registration_no="CD5678", chassis_no="CH-0003"),
        headers=admin_headers,
    ).get_json()["vehicle"]
    response = assign(client, admin_headers, other["id"], order["_id"])
    assert response.status_code == 400


def test_busy_vehicle_cannot_take_more_orders(client, db, admin_headers, vehicle, order, customer):
    assign(client, admin_headers, vehicle["id"], order["_id"])
    second_order = db.orders.insert_one({"user": customer["_id"], "status": "pending"}).inserted_id
    assert assign(client, admin_headers, vehicle["id"], second_order).status_code == 400


def test_failed_delivery_cancels_order(client, db, admin_headers, vehicle, order):
    assign(client, admin_headers, vehicle["id"], order["_id"])
    response = client.put(
        "/api/logistics/assign",
        json={"vehicle_id": vehicle["id"], "order_id": str(order["_id"]), "status": "Failed"},
        headers=admin_headers,
    )
    assert response.get_json()["order_status"] == "cancelled"


def test_maintenance_record(client, admin_headers, vehicle):
    invalid = client.post(f"/api/logistics/{vehicle['id']}/maintenance", json={}, headers=admin_headers)
    assert invalid.status_code == 400

    response = client.post(
        f"/api/logistics/{vehicle['id']}/maintenance",
        json={"date": "2024-01-10", "description": "Oil change", "cost": "480.5"},
        headers=admin_headers,
    )
    assert response.status_code == 201
    record = response.get_json()["vehicle"]["maintenance_records"][0]
    assert record["cost"] == 480.5
    assert record["date"] == "2024-01-10T00:00:00Z"


def test_logistics_requires_admin(client, customer_headers):
    assert client.get("/api/logistics", headers=customer_headers).status_code == 401
