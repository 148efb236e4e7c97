from unittest.mock import MagicMock, patch

import stripe

from storefront.routes.checkout import calculate_totals, normalize_cart_items


def test_calculate_totals_applies_free_delivery_threshold():
    items = [{"product": None, "quantity": 2, "price": 40.0}]
    assert calculate_totals(items, 20, 100) == {"subtotal": 80.0, "delivery_cost": 20.0, "total": 100.0}
    items = [{"product": None, "quantity": 3, "price": 40.0}]
    assert calculate_totals(items, 20, 100)["delivery_cost"] == 0.0


def test_normalize_cart_items_drops_invalid_entries(product):
    items = normalize_cart_items(
        [
            {"id": str(product["_id"]), "quantity": "2", "price": "40"},
            {"id": "not-an-id", "quantity": 1},
            {"_id": str(product["_id"]), "quantity": 0},
            "junk",
        ]
    )
    assert items == [{"product": product["_id"], "quantity": 2, "price": 40.0}]


def test_delivery_settings_default_and_update(client, admin_headers):
    defaults = client.get("/api/delivery").get_json()
    assert defaults["delivery_methods"] == []
    assert defaults["free_delivery_threshold"] == 100.0

    response = client.post(
        "/api/delivery",
        json={
            "delivery_methods": [{"cost": 30, "name": {"en": "Van", "zh-TW": "貨車"}}],
            "free_delivery_threshold": 250,
        },
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.get_json()["delivery_methods"][0]["cost"] == 30.0
    assert response.get_json()["free_delivery_threshold"] == 250.0


def test_checkout_reports_missing_fields(client, customer_headers, delivery_settings):
    response = client.post("/api/checkout", json={"name": "x"}, headers=customer_headers)
    assert response.status_code == 400
    details = response.get_json()["details"]
    assert details["name"] is False
    assert details["cart_items"] is True


def test_checkout_rejects_unknown_delivery_method(client, customer_headers, delivery_settings, checkout_payload):
    checkout_payload["delivery_method"] = 5
    response = client.post("/api/checkout", json=checkout_payload, headers=customer_headers)
    assert response.status_code == 400
    assert response.get_json()["details"]["methods_length"] == 2


def test_checkout_rejects_partial_shipping_address(client, customer_headers, delivery_settings, checkout_payload):
    checkout_payload["shipping_address"] = {"en": "Somewhere"}
    response = client.post("/api/checkout", json=checkout_payload, headers=customer_headers)
    assert response.status_code == 400
    assert response.get_json()["details"]["missing"] == {"en": False, "zh-TW": True}


def test_online_checkout_creates_order_and_invoice(
    client, db, customer_headers, delivery_settings, checkout_payload
):
    with patch("storefront.routes.checkout.send_order_confirmation_email", return_value=(True, None)) as mailer:
        response = client.post("/api/checkout", json=checkout_payload, headers=customer_headers)

    assert response.status_code == 200
    body = response.get_json()
    assert body["success"] is True
    assert body["order_reference"].startswith("ORD-")
    assert body["invoice_number"].startswith("INV-")
    mailer.assert_called_once()

    order = db.orders.find_one({"order_reference": body["order_reference"]})
    assert order["total"] == 100.0
    assert order["delivery_cost"] == 20.0
    assert order["status"] == "pending"
    assert order["order_type"] == "onetime-order"
    assert order["invoice_number"] == body["invoice_number"]

    invoice = db.invoices.find_one({"invoice_number": body["invoice_number"]})
    assert invoice["payment_method"] == "credit_card"
    assert invoice["orders"] == [order["_id"]]
    assert invoice["amount"] == 100.0


def test_offline_checkout_waits_for_verification(
    client, db, customer_headers, delivery_settings, checkout_payload
):
    checkout_payload.update(
        {"payment_method": "offline", "payment_reference": "TX-1", "payment_proof_url": "https://img/1.png"}
    )
    response = client.post("/api/checkout", json=checkout_payload, headers=customer_headers)
    order = db.orders.find_one({"_id": db.orders.find_one()["_id"]})
    assert response.status_code == 200
    assert order["status"] == "pending_payment_verification"
    invoice = db.invoices.find_one({"invoice_number": response.get_json()["invoice_number"]})
    assert invoice["payment_method"] == "offline_payment"
    assert invoice["payment_reference"] == "TX-1"


def test_period_checkout_requires_period_user(client, customer_headers, delivery_settings, checkout_payload):
    checkout_payload["payment_method"] = "periodInvoice"
    response = client.post("/api/checkout", json=checkout_payload, headers=customer_headers)
    assert response.status_code == 400
    assert response.get_json()["error"] == "User is not a period-paid user"


def test_period_checkout_accumulates_into_one_invoice(
    client, db, customer, customer_headers, delivery_settings, checkout_payload
):
    db.users.update_one(
        {"_id": customer["_id"]}, {"$set": {"is_period_paid_user": True, "payment_period": "weekly"}}
    )
    checkout_payload["payment_method"] = "periodInvoice"

    first = client.post("/api/checkout", json=checkout_payload, headers=customer_headers).get_json()
    second = client.post("/api/checkout", json=checkout_payload, headers=customer_headers).get_json()

    assert first["invoice_number"] == second["invoice_number"]
    assert first["invoice_number"].startswith("PER-")
    invoice = db.invoices.find_one({"invoice_number": first["invoice_number"]})
    assert invoice["invoice_type"] == "period"
    assert len(invoice["orders"]) == 2
    assert invoice["amount"] == 200.0
    assert invoice["period_end"] > invoice["period_start"]
    assert len(db.users.find_one({"_id": customer["_id"]})["payment_history"]) == 1
    assert db.orders.count_documents({"order_type": "period-order"}) == 2


def test_offline_payment_endpoint_shares_invoice_number(client, db, customer_headers, product):
    response = client.post(
        "/api/checkout/offline-payment",
        json={
            "name": "Customer",
            "email": "customer@example.com",
            "cart_items": [{"id": str(product["_id"]), "quantity": 1, "price": 40}],
            "payment_proof_url": "https://img/proof.png",
            "payment_reference": "BANK-99",
            "billing_address": {"en": "A", "zh-TW": "甲"},
            "shipping_address": {"en": "B", "zh-TW": "乙"},
            "delivery_cost": 15,
        },
        headers=customer_headers,
    )
    assert response.status_code == 200
    body = response.get_json()
    order = db.orders.find_one({"order_reference": body["order_reference"]})
    invoice = db.invoices.find_one({"invoice_number": body["invoice_number"]})
    assert order["invoice_number"] == invoice["invoice_number"]
    assert order["total"] == 55.0
    assert order["status"] == "pending_payment_verification"
    assert invoice["payment_method"] == "bank_transfer"


def test_offline_payment_lists_missing_fields(client, customer_headers):
    response = client.post("/api/checkout/offline-payment", json={"name": "x"}, headers=customer_headers)
    assert response.status_code == 400
    assert "payment_reference" in response.get_json()["details"]


def _place_online_order(client, headers, payload):
    return client.post("/api/checkout", json=payload, headers=headers).get_json()["order_id"]


def test_online_session_requires_configuration(client, customer_headers, delivery_settings, checkout_payload):
    order_id = _place_online_order(client, customer_headers, checkout_payload)
    response = client.post(
        "/api/checkout/online-session", json={"order_id": order_id}, headers=customer_headers
    )
    assert response.status_code == 500


def test_online_session_sends_line_items_to_stripe(
    app, client, db, customer_headers, delivery_settings, checkout_payload
):
    app.config["STRIPE_SECRET_KEY"] = "sk_test_123"
    order_id = _place_online_order(client, customer_headers, checkout_payload)

    session = MagicMock(id="cs_test_1", url="https://checkout.stripe.com/cs_test_1")
    with patch("storefront.routes.checkout.stripe.checkout.Session.create", return_value=session) as create:
        response = client.post(
            "/api/checkout/online-session", json={"order_id": order_id}, headers=customer_headers
        )

    assert response.status_code == 200
    assert response.get_json() == {"id": "cs_test_1", "url": "https://checkout.stripe.com/cs_test_1"}
    kwargs = create.call_args.kwargs
    assert kwargs["mode"] == "payment"
    assert kwargs["metadata"]["order_id"] == order_id
    assert kwargs["api_key"] == "sk_test_123"
    line_items = kwargs["line_items"]
    assert line_items[0]["price_data"]["unit_amount"] == 4000
    assert line_items[0]["quantity"] == 2
    assert line_items[1]["price_data"]["product_data"]["name"] == "Delivery"
    assert kwargs["success_url"].endswith(f"/checkout/success?order_id={order_id}")
    assert db.orders.find_one({"stripe_session_id": "cs_test_1"}) is not None


def test_online_session_reports_provider_failure(
    app, client, customer_headers, delivery_settings, checkout_payload
):
    app.config["STRIPE_SECRET_KEY"] = "sk_test_123"
    order_id = _place_online_order(client, customer_headers, checkout_payload)
    with patch(
        "storefront.routes.checkout.stripe.checkout.Session.create",
        side_effect=stripe.APIConnectionError("down"),
    ):
        response = client.post(
            "/api/checkout/online-session", json={"order_id": order_id}, headers=customer_headers
        )
    assert response.status_code == 500


def test_online_session_rejects_other_users_orders(
    app, client, customer_headers, headers_for, user_factory, delivery_settings, checkout_payload
):
    app.config["STRIPE_SECRET_KEY"] = "sk_test_123"
    order_id = _place_online_order(client, customer_headers, checkout_payload)
    user_factory("intruder@example.com")
    response = client.post(
        "/api/checkout/online-session",
        json={"order_id": order_id},
        headers=headers_for("intruder@example.com"),
    )
    assert response.status_code == 404


def test_cloudinary_signature(app, client, customer_headers):
    assert client.post("/api/cloudinary/signature", json={}, headers=customer_headers).status_code == 500

    app.config.update(CLOUDINARY_API_KEY="key", CLOUDINARY_API_SECRET="secret", CLOUDINARY_CLOUD_NAME="demo")
    missing = client.post("/api/cloudinary/signature", json={}, headers=customer_headers)
    assert missing.status_code == 400

    response = client.post(
        "/api/cloudinary/signature", json={"timestamp": 1700000000, "folder": "products"}, headers=customer_headers
    )
    body = response.get_json()
    assert response.status_code == 200
    assert body["api_key"] == "key"
    assert body["folder"] == "products"
    assert len(body["signature"]) == 40
