from datetime import datetime

import pytest


def hero_payload(title="Spring Sale"):
    return {
        "title": {"en": title, "zh-TW": "春季特賣"},
        "description": {"en": "Up to 50% off", "zh-TW": "低至五折"},
        "buttons": {"primary": {"text": {"en": "Shop", "zh-TW": "購物"}, "link": "/products"}},
    }


@pytest.fixture
def hero_ids(client, admin_headers):
    return [
        client.post("/api/hero-sections", json=hero_payload(title), headers=admin_headers).get_json()["section"]["id"]
        for title in ("First", "Second", "Third")
    ]


def test_hero_media_defaults(client, admin_headers):
    response = client.post("/api/hero-sections", json=hero_payload(), headers=admin_headers)
    assert response.status_code == 201
    section = response.get_json()["section"]
    assert section["media"] == {
        "video_url": "",
        "poster_url": "/images/placeholder-hero.jpg",
        "media_type": "image",
    }
    assert section["buttons"]["secondary"]["link"] == ""
    assert section["is_active"] is False


def test_hero_requires_bilingual_title(client, admin_headers):
    response = client.post("/api/hero-sections", json={"title": {"en": "Only"}}, headers=admin_headers)
    assert response.status_code == 400


def test_only_one_hero_section_is_active(client, admin_headers, hero_ids):
    client.post(f"/api/hero-sections/{hero_ids[0]}/activate", headers=admin_headers)
    client.post(f"/api/hero-sections/{hero_ids[2]}/activate", headers=admin_headers)

    sections = client.get("/api/hero-sections").get_json()["sections"]
    assert [section["is_active"] for section in sections] == [False, False, True]
    assert client.get("/api/hero-sections/active").get_json()["section"]["id"] == hero_ids[2]


def test_reorder_hero_sections(client, admin_headers, hero_ids):
    reordered = list(reversed(hero_ids))
    response = client.post("/api/hero-sections/reorder", json={"order": reordered}, headers=admin_headers)
    assert [section["id"] for section in response.get_json()["sections"]] == reordered

    bad = client.post("/api/hero-sections/reorder", json={"order": "nope"}, headers=admin_headers)
    assert bad.status_code == 400


def test_update_and_delete_hero(client, admin_headers, hero_ids):
    updated = client.put(
        f"/api/hero-sections/{hero_ids[0]}",
        json={"media": {"media_type": "video", "video_url": "https://cdn/v.mp4"}},
        headers=admin_headers,
    ).get_json()["section"]
    assert updated["media"]["media_type"] == "video"
    assert updated["title"]["en"] == "First"

    assert client.delete(f"/api/hero-sections/{hero_ids[0]}", headers=admin_headers).status_code == 200
    assert client.delete(f"/api/hero-sections/{hero_ids[0]}", headers=admin_headers).status_code == 404


def test_gallery_is_created_on_first_read(client, db):
    assert client.get("/api/gallery").get_json() == {"images": []}
    assert db.gallery.count_documents({}) == 1


def test_gallery_replacement(client, db, admin_headers):
    client.get("/api/gallery")
    response = client.put("/api/gallery", json={"images": ["a.jpg", "b.jpg"]}, headers=admin_headers)
    assert response.get_json() == {"images": ["a.jpg", "b.jpg"]}
    assert client.get("/api/gallery").get_json()["images"] == ["a.jpg", "b.jpg"]
    assert db.gallery.count_documents({}) == 1

    assert client.put("/api/gallery", json={"images": "a.jpg"}, headers=admin_headers).status_code == 400


def test_gallery_update_requires_admin(client, customer_headers):
    assert client.put("/api/gallery", json={"images": []}, headers=customer_headers).status_code == 401


def test_features_section_defaults_and_replace(client, admin_headers):
    assert client.get("/api/features-section").get_json() == {
        "title": {"en": "", "zh-TW": ""},
        "items": [],
    }

    payload = {
        "title": {"en": "Why us", "zh-TW": "為何選擇我們"},
        "items": [
            {"icon": "truck", "order": 2, "title": {"en": "Fast", "zh-TW": "快"}, "description": {"en": "d", "zh-TW": "述"}},
            {"icon": "star", "order": 1, "title": {"en": "Good", "zh-TW": "好"}, "description": {"en": "d", "zh-TW": "述"}},
        ],
    }
    response = client.put("/api/features-section", json=payload, headers=admin_headers)
    assert [item["icon"] for item in response.get_json()["items"]] == ["star", "truck"]
    assert client.get("/api/features-section").get_json()["title"]["en"] == "Why us"


def test_section_items_need_icon_and_translations(client, admin_headers):
    missing_icon = {"title": {"en": "T", "zh-TW": "T"}, "items": [{"title": {"en": "x", "zh-TW": "y"}}]}
    assert client.put("/api/features-section", json=missing_icon, headers=admin_headers).status_code == 400

    missing_translation = {
        "items": [{"icon": "shield", "title": {"en": "Safe"}, "description": {"en": "d", "zh-TW": "述"}}]
    }
    response = client.put("/api/guarantee-section", json=missing_translation, headers=admin_headers)
    assert response.status_code == 400


def test_guarantee_section_replace(client, admin_headers):
    payload = {
        "items": [{"icon": "shield", "title": {"en": "Safe", "zh-TW": "安全"}, "description": {"en": "d", "zh-TW": "述"}}]
    }
    response = client.put("/api/guarantee-section", json=payload, headers=admin_headers)
    assert response.status_code == 200
    assert client.get("/api/guarantee-section").get_json()["items"][0]["icon"] == "shield"


def test_blog_post_lifecycle(client, admin_headers):
    post = {
        "title": {"en": "Hello World", "zh-TW": "你好"},
        "content": {"en": "Body", "zh-TW": "內容"},
        "category": "news",
        "status": "published",
        "featured": True,
    }
    created = client.post("/api/blog/posts", json=post, headers=admin_headers)
    assert created.status_code == 201
    assert created.get_json()["post"]["slug"] == "hello-world"
    assert created.get_json()["post"]["author"]["name"] == "Admin"

    draft = dict(post, status="draft", featured=False, title={"en": "Hello World", "zh-TW": "草稿"})
    draft_slug = client.post("/api/blog/posts", json=draft, headers=admin_headers).get_json()["post"]["slug"]
    assert draft_slug == "hello-world-1"

    public = client.get("/api/blog/posts").get_json()
    assert public["total"] == 1
    assert client.get("/api/blog/featured").get_json()["post"]["slug"] == "hello-world"
    assert client.get(f"/api/blog/posts/{draft_slug}").status_code == 404
    assert client.get("/api/blog/posts?admin=true").status_code == 401
    assert client.get("/api/blog/posts?admin=true", headers=admin_headers).get_json()["total"] == 2


def test_featuring_a_post_unfeatures_others(client, db, admin_headers):
    base = {"content": {"en": "b", "zh-TW": "b"}, "category": "news", "status": "published", "featured": True}
    client.post("/api/blog/posts", json=dict(base, title={"en": "One", "zh-TW": "一"}), headers=admin_headers)
    client.post("/api/blog/posts", json=dict(base, title={"en": "Two", "zh-TW": "二"}), headers=admin_headers)
    assert db.blog_posts.count_documents({"featured": True}) == 1
    assert db.blog_posts.find_one({"featured": True})["slug"] == "two"


def test_audit_log_listing_and_purge(client, db, admin_headers):
    db.audit_logs.insert_many(
        [
            {"user_email": "a@example.com", "action": "Created product", "created_at": datetime(2024, 1, 5)},
            {"user_email": "b@example.com", "action": "Deleted brand", "created_at": datetime(2024, 2, 5)},
        ]
    )
    searched = client.get("/api/admin/logs?search=brand", headers=admin_headers).get_json()
    assert [log["action"] for log in searched["logs"]] == ["Deleted brand"]

    ranged = client.get("/api/admin/logs?from=2024-01-01&to=2024-01-31", headers=admin_headers).get_json()
    assert ranged["pagination"]["total"] == 1

    purged = client.delete("/api/admin/logs", json={"from": "2024-01-01", "to": "2024-01-31"}, headers=admin_headers)
    assert purged.get_json()["deleted"] == 1
    assert db.audit_logs.count_documents({"action": "Created product"}) == 0
    assert db.audit_logs.count_documents({"action": "Deleted audit logs"}) == 1
