import pytest


def spec(en="Material", zh="材質", **overrides):
    payload = {"display_names": {"en": en, "zh-TW": zh}, "type": "text"}
    payload.update(overrides)
    return payload


@pytest.fixture
def category_id(product):
    return str(product["category"])


def test_save_and_read_category_specifications(client, db, admin_headers, category_id):
    specifications = [
        spec("Country of Origin", "原產地", required=True, descriptions={"en": "Where it is made"}),
        spec("Size", "尺寸", type="select", options=["S", "M", "", "L"]),
    ]
    response = client.put(
        f"/api/admin/specifications/{category_id}",
        json={"specifications": specifications},
        headers=admin_headers,
    )
    assert response.status_code == 200
    saved = response.get_json()["specifications"]
    assert saved[0]["key"] == "country_of_origin"
    assert saved[0]["label"] == "Country of Origin"
    assert saved[0]["required"] is True
    assert saved[0]["descriptions"] == {"en": "Where it is made", "zh-TW": ""}
    assert saved[1]["options"] == ["S", "M", "L"]

    listed = client.get(f"/api/admin/specifications/{category_id}", headers=admin_headers)
    assert [item["key"] for item in listed.get_json()["specifications"]] == ["country_of_origin", "size"]
    assert db.audit_logs.count_documents({"action": "Updated category specifications"}) == 1


@pytest.mark.parametrize(
    "specifications",
    [
        "not-a-list",
        [spec(zh="")],
        [spec(type="date")],
        [spec("Colour", "顏色", type="select", options=[])],
        [spec(), spec("material", "材料")],
    ],
)
def test_invalid_specifications_are_rejected(client, admin_headers, category_id, specifications):
    response = client.put(
        f"/api/admin/specifications/{category_id}",
        json={"specifications": specifications},
        headers=admin_headers,
    )
    assert response.status_code == 400


def test_specifications_for_unknown_or_malformed_category(client, admin_headers):
    assert client.get("/api/admin/specifications/not-an-id", headers=admin_headers).status_code == 400
    missing = client.get("/api/admin/specifications/64b7f0f0f0f0f0f0f0f0f0f0", headers=admin_headers)
    assert missing.status_code == 404


def test_specifications_require_admin(client, customer_headers, category_id):
    response = client.get(f"/api/admin/specifications/{category_id}", headers=customer_headers)
    assert response.status_code == 401


def test_category_create_validates_specifications(client, admin_headers):
    payload = {
        "name": "Garden",
        "display_names": {"en": "Garden", "zh-TW": "園藝"},
        "specifications": [spec("Blade Length", "刀長", type="number")],
    }
    created = client.post("/api/categories", json=payload, headers=admin_headers)
    assert created.status_code == 201

    payload["specifications"] = [spec(type="colour")]
    assert client.post("/api/categories", json=payload, headers=admin_headers).status_code == 400


def test_update_translations_fills_display_names(client, db, admin_headers, category_id, product):
    db.categories.update_one(
        {"_id": product["category"]},
        {"$set": {"specifications": [{"key": "origin", "type": "text"}, {"key": "blade_length", "type": "number"}]}},
    )
    response = client.post("/api/admin/specifications/update-translations", headers=admin_headers)
    assert response.get_json() == {"success": True, "updated": 1}

    stored = db.categories.find_one({"_id": product["category"]})["specifications"]
    assert stored[0]["display_names"] == {"en": "Country of Origin", "zh-TW": "原產地"}
    assert stored[1]["display_names"] == {"en": "Blade Length", "zh-TW": "Blade Length"}
    assert stored[1]["label"] == "Blade Length"


def test_store_settings_created_on_first_read(client, db):
    body = client.get("/api/store-settings").get_json()
    assert body["return_policy"]["days_to_return"] == 30
    assert body["copyright"]["en"] == "© {{year}} {{storeName}}"
    assert db.store_settings.count_documents({}) == 1


def test_store_settings_merge_sections(client, db, admin_headers):
    client.get("/api/store-settings")
    response = client.post(
        "/api/store-settings",
        json={"settings": {"logo": " /logo.png ", "social_media": {"instagram": "@shop"}}},
        headers=admin_headers,
    )
    assert response.status_code == 200
    body = response.get_json()
    assert body["logo"] == "/logo.png"
    assert body["social_media"] == {"facebook": "", "instagram": "@shop", "twitter": ""}
    assert db.store_settings.count_documents({}) == 1
    assert db.audit_logs.count_documents({"action": "Updated store settings"}) == 1


@pytest.mark.parametrize(
    "settings",
    [None, {}, {"favicon": "x"}, {"social_media": "@shop"}, {"return_policy": {"days_to_return": -3}}],
)
def test_store_settings_rejects_bad_payloads(client, admin_headers, settings):
    response = client.post("/api/store-settings", json={"settings": settings}, headers=admin_headers)
    assert response.status_code == 400


def test_store_settings_update_requires_admin(client, customer_headers):
    response = client.post("/api/store-settings", json={"settings": {"logo": "x"}}, headers=customer_headers)
    assert response.status_code == 401


def test_theme_settings_defaults_and_update(client, admin_headers):
    defaults = client.get("/api/theme-settings").get_json()["theme_settings"]
    assert defaults["dark"]["background"] == "#1a1a1a"

    response = client.post(
        "/api/theme-settings",
        json={"theme_settings": {"light": {"background": "#FAFAFA", "card_opacity": 80}}},
        headers=admin_headers,
    )
    assert response.status_code == 200
    saved = client.get("/api/theme-settings").get_json()["theme_settings"]
    assert saved["light"]["background"] == "#fafafa"
    assert saved["light"]["card_opacity"] == 80
    assert saved["light"]["text"] == "#000000"
    assert saved["dark"] == defaults["dark"]


@pytest.mark.parametrize(
    "theme_settings",
    [
        {},
        {"light": {"background": "white"}},
        {"dark": {"card_opacity": 150}},
        {"light": {"glow": "#ffffff"}},
    ],
)
def test_theme_settings_validation(client, admin_headers, theme_settings):
    response = client.post("/api/theme-settings", json={"theme_settings": theme_settings}, headers=admin_headers)
    assert response.status_code == 400
