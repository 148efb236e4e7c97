def test_subscribe_and_resubscribe(client, db):
    created = client.post("/api/newsletter/subscribe", json={"email": "Reader@Example.com"})
    assert created.status_code == 201
    subscriber = db.newsletter.find_one({"email": "reader@example.com"})
    assert subscriber["preferences"] == {"marketing": True, "updates": True, "promotions": True}

    again = client.post("/api/newsletter/subscribe", json={"email": "reader@example.com"})
    assert again.status_code == 400

    left = client.post("/api/newsletter/unsubscribe", json={"email": "reader@example.com"})
    assert left.status_code == 200
    assert db.newsletter.find_one({"email": "reader@example.com"})["is_active"] is False

    back = client.post("/api/newsletter/subscribe", json={"email": "reader@example.com"})
    assert back.status_code == 200
    assert db.newsletter.find_one({"email": "reader@example.com"})["is_active"] is True
    assert db.newsletter.count_documents({}) == 1


def test_subscribe_rejects_invalid_email(client):
    assert client.post("/api/newsletter/subscribe", json={"email": "nope"}).status_code == 400


def test_unsubscribe_unknown_email(client):
    assert client.post("/api/newsletter/unsubscribe", json={"email": "ghost@example.com"}).status_code == 404


def test_admin_subscriber_management(client, db, admin_headers):
    for email in ("a@example.com", "b@example.com", "c@other.org"):
        client.post("/api/newsletter/subscribe", json={"email": email})

    searched = client.get("/api/newsletter/subscribers?search=example", headers=admin_headers).get_json()
    assert searched["pagination"]["total"] == 2

    subscriber_id = searched["subscribers"][0]["id"]
    updated = client.put(
        f"/api/newsletter/subscribers/{subscriber_id}",
        json={"is_active": False, "preferences": {"promotions": False}},
        headers=admin_headers,
    ).get_json()["subscriber"]
    assert updated["is_active"] is False
    assert updated["preferences"]["promotions"] is False
    assert updated["preferences"]["marketing"] is True

    inactive = client.get("/api/newsletter/subscribers?active=false", headers=admin_headers).get_json()
    assert inactive["pagination"]["total"] == 1

    assert client.delete(f"/api/newsletter/subscribers/{subscriber_id}", headers=admin_headers).status_code == 200
    assert db.newsletter.count_documents({}) == 2


def test_subscriber_list_requires_admin(client, customer_headers):
    assert client.get("/api/newsletter/subscribers", headers=customer_headers).status_code == 401
