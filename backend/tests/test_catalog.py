import pytest

from storefront.errors import ValidationError
from storefront.helpers import normalize_multilang, parse_pagination, slugify, utcnow


def product_payload(product, **overrides):
    payload = {
        "name": "Cordless Drill",
        "display_names": {"en": "Cordless Drill", "zh-TW": "無線電鑽"},
        "descriptions": {"en": "Drills holes", "zh-TW": "鑽孔"},
        "price": 99.5,
        "stock": 3,
        "brand": str(product["brand"]),
        "category": str(product["category"]),
    }
    payload.update(overrides)
    return payload


def test_create_product_builds_unique_slug(client, admin_headers, product):
    first = client.post("/api/products", json=product_payload(product), headers=admin_headers)
    second = client.post("/api/products", json=product_payload(product), headers=admin_headers)
    assert first.status_code == 201
    assert first.get_json()["product"]["slug"] == "cordless-drill"
    assert second.get_json()["product"]["slug"] == "cordless-drill-1"


def test_create_product_requires_both_languages(client, admin_headers, product):
    payload = product_payload(product, display_names={"en": "Drill"})
    response = client.post("/api/products", json=payload, headers=admin_headers)
    assert response.status_code == 400
    assert response.get_json()["details"]["missing"] == ["zh-TW"]


def test_product_listing_hides_drafts(client, db, product):
    db.products.insert_one({"name": "Secret", "price": 1.0, "draft": True, "created_at": utcnow()})
    response = client.get("/api/products")
    body = response.get_json()
    assert body["total"] == 1
    assert body["products"][0]["name"] == "Hammer"
    assert body["products"][0]["brand"]["slug"] == "acme"
    assert "purchased_by" not in body["products"][0]


def test_product_names_follow_language(client, product):
    response = client.get(f"/api/products/{product['_id']}?language=zh-TW")
    assert response.get_json()["product"]["name"] == "鐵鎚"


def test_draft_product_is_hidden_from_customers(client, db, admin_headers, customer_headers):
    draft_id = db.products.insert_one({"name": "Draft", "price": 5.0, "draft": True}).inserted_id
    assert client.get(f"/api/products/{draft_id}", headers=customer_headers).status_code == 404
    assert client.get(f"/api/products/{draft_id}", headers=admin_headers).status_code == 200


def test_search_requires_query(client, product):
    assert client.get("/api/products/search").status_code == 400
    response = client.get("/api/products/search?q=ham")
    assert [item["name"] for item in response.get_json()["products"]] == ["Hammer"]


def test_product_of_the_month_is_exclusive(client, db, admin_headers, product):
    other_id = db.products.insert_one(
        {"name": "Saw", "price": 10.0, "is_product_of_the_month": True}
    ).inserted_id
    response = client.put(
        "/api/products/product-of-the-month",
        json={"product_id": str(product["_id"])},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert db.products.find_one({"_id": other_id})["is_product_of_the_month"] is False
    current = client.get("/api/products/product-of-the-month").get_json()["product"]
    assert current["id"] == str(product["_id"])


def test_toggle_featured(client, admin_headers, product):
    response = client.put(f"/api/products/{product['_id']}/featured", headers=admin_headers)
    assert response.get_json()["product"]["featured"] is True
    featured = client.get("/api/products/featured").get_json()["products"]
    assert [item["id"] for item in featured] == [str(product["_id"])]


def test_category_delete_blocked_while_products_reference_it(client, admin_headers, product):
    response = client.delete(f"/api/categories/{product['category']}", headers=admin_headers)
    assert response.status_code == 400


def test_category_listing_counts_products(client, product):
    categories = client.get("/api/categories").get_json()["categories"]
    assert categories[0]["product_count"] == 1

    detail = client.get("/api/categories/tools").get_json()
    assert detail["category"]["slug"] == "tools"
    assert len(detail["products"]) == 1


def test_brand_delete_is_soft(client, db, admin_headers):
    created = client.post(
        "/api/brands",
        json={"name": "Bosch", "display_names": {"en": "Bosch", "zh-TW": "博世"}},
        headers=admin_headers,
    )
    assert created.status_code == 201
    brand_id = created.get_json()["brand"]["id"]

    client.delete(f"/api/brands/{brand_id}", headers=admin_headers)
    assert db.brands.find_one({"slug": "bosch"})["deleted_at"] is not None
    assert client.get("/api/brands").get_json()["brands"] == []


def test_slugify_strips_symbols():
    assert slugify("  Hello,  World!! ") == "hello-world"
    assert slugify("Café Crème") == "cafe-creme"


def test_normalize_multilang_reports_missing_languages():
    with pytest.raises(ValidationError) as excinfo:
        normalize_multilang({"en": "x", "zh-TW": " "}, "title")
    assert excinfo.value.details["missing"] == ["zh-TW"]
    assert normalize_multilang("plain", "title") == {"en": "plain", "zh-TW": "plain"}


def test_parse_pagination_bounds():
    assert parse_pagination({}) == (1, 10, 0)
    assert parse_pagination({"page": "3", "limit": "5"}) == (3, 5, 10)
    assert parse_pagination({"limit": "500"}, max_limit=100)[1] == 100


def test_review_requires_delivered_paid_order(client, db, customer, customer_headers, product):
    payload = {"product_id": str(product["_id"]), "rating": 4, "comment": "Solid"}
    eligibility = client.get(f"/api/reviews/can-review?product_id={product['_id']}", headers=customer_headers)
    assert eligibility.get_json()["can_review"] is False
    assert client.post("/api/reviews", json=payload, headers=customer_headers).status_code == 400

    db.orders.insert_one(
        {
            "user": customer["_id"],
            "status": "delivered",
            "paid": True,
            "items": [{"product": product["_id"], "quantity": 1, "price": 40.0}],
        }
    )
    created = client.post("/api/reviews", json=payload, headers=customer_headers)
    assert created.status_code == 201
    assert created.get_json()["review"]["user"]["name"] == "Customer"

    stored = db.products.find_one({"_id": product["_id"]})
    assert stored["num_reviews"] == 1
    assert stored["average_rating"] == 4.0

    again = client.post("/api/reviews", json=payload, headers=customer_headers)
    assert again.status_code == 400
    assert len(client.get(f"/api/reviews/{product['_id']}").get_json()["reviews"]) == 1


def test_review_rating_bounds(client, customer_headers, product):
    payload = {"product_id": str(product["_id"]), "rating": 9}
    assert client.post("/api/reviews", json=payload, headers=customer_headers).status_code == 400
    payload["product_id"] = "64b7f0f0f0f0f0f0f0f0f0f0"
    assert client.post("/api/reviews", json=payload, headers=customer_headers).status_code == 404
