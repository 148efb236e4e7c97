from typing import Dict, List

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from ..audit import record_audit_log
from ..auth import require_admin_user
from ..errors import ValidationError, error_response
from ..extensions import mongo
from ..helpers import normalize_multilang, normalize_object_id_value, parse_bool, serialize_value, utcnow

bp = Blueprint("content", __name__, url_prefix="/api")

DEFAULT_POSTER_URL = "/images/placeholder-hero.jpg"
MEDIA_TYPES = ("video", "image")
EMPTY_TITLE = {"en": "", "zh-TW": ""}


def normalize_hero(payload: Dict, *, partial: bool = False) -> Dict:
    section: Dict[str, object] = {}
    if not partial or "title" in payload:
        section["title"] = normalize_multilang(payload.get("title"), "title")
    for field in ("description", "credit_text"):
        if not partial or field in payload:
            section[field] = normalize_multilang(payload.get(field), field, required=False)
    if not partial or "media" in payload:
        media = payload.get("media") if isinstance(payload.get("media"), dict) else {}
        media_type = media.get("media_type") or "image"
        if media_type not in MEDIA_TYPES:
            raise ValidationError("media_type must be video or image")
        section["media"] = {
            "video_url": media.get("video_url") or "",
            "poster_url": media.get("poster_url") or DEFAULT_POSTER_URL,
            "media_type": media_type,
        }
    if not partial or "buttons" in payload:
        buttons = payload.get("buttons") if isinstance(payload.get("buttons"), dict) else {}
        section["buttons"] = {}
        for key in ("primary", "secondary"):
            button = buttons.get(key) if isinstance(buttons.get(key), dict) else {}
            section["buttons"][key] = {
                "text": normalize_multilang(button.get("text"), f"buttons.{key}.text", required=False),
                "link": str(button.get("link") or ""),
            }
    return section


def _fetch_hero(section_id: str):
    object_id = normalize_object_id_value(section_id)
    if object_id is None:
        return None
    return mongo.db.hero_sections.find_one({"_id": object_id})


@bp.route("/hero-sections", methods=["GET"])
def list_hero_sections():
    sections = mongo.db.hero_sections.find().sort("order", 1)
    return jsonify({"sections": [serialize_value(section) for section in sections]})


@bp.route("/hero-sections/active", methods=["GET"])
def active_hero_section():
    section = mongo.db.hero_sections.find_one({"is_active": True})
    return jsonify({"section": serialize_value(section) if section else None})


@bp.route("/hero-sections", methods=["POST"])
@jwt_required()
def create_hero_section():
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    payload = request.get_json(silent=True) or {}
    section = normalize_hero(payload)
    now = utcnow()
    last = mongo.db.hero_sections.find_one({}, sort=[("order", -1)])
    section.update(
        {
            "is_active": False,
            "order": (int(last.get("order") or 0) + 1) if last else 0,
            "created_at": now,
            "updated_at": now,
        }
    )
    section["_id"] = mongo.db.hero_sections.insert_one(section).inserted_id
    if parse_bool(payload.get("is_active")):
        _activate(section["_id"])
        section["is_active"] = True

    record_audit_log(admin_user.get("email"), "Created hero section", {"section_id": str(section["_id"])})
    return jsonify({"section": serialize_value(section)}), 201


@bp.route("/hero-sections/<section_id>", methods=["PUT"])
@jwt_required()
def update_hero_section(section_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    section = _fetch_hero(section_id)
    if not section:
        return error_response("Hero section not found", 404)

    updates = normalize_hero(request.get_json(silent=True) or {}, partial=True)
    updates["updated_at"] = utcnow()
    mongo.db.hero_sections.update_one({"_id": section["_id"]}, {"$set": updates})
    record_audit_log(admin_user.get("email"), "Updated hero section", {"section_id": section_id})
    return jsonify({"section": serialize_value(mongo.db.hero_sections.find_one({"_id": section["_id"]}))})


@bp.route("/hero-sections/<section_id>", methods=["DELETE"])
@jwt_required()
def delete_hero_section(section_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    section = _fetch_hero(section_id)
    if not section:
        return error_response("Hero section not found", 404)

    mongo.db.hero_sections.delete_one({"_id": section["_id"]})
    record_audit_log(admin_user.get("email"), "Deleted hero section", {"section_id": section_id})
    return jsonify({"message": "Hero section deleted."})


def _activate(section_id) -> None:
    mongo.db.hero_sections.update_many({"_id": {"$ne": section_id}}, {"$set": {"is_active": False}})
    mongo.db.hero_sections.update_one({"_id": section_id}, {"$set": {"is_active": True}})


@bp.route("/hero-sections/<section_id>/activate", methods=["POST"])
@jwt_required()
def activate_hero_section(section_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    section = _fetch_hero(section_id)
    if not section:
        return error_response("Hero section not found", 404)

    _activate(section["_id"])
    record_audit_log(admin_user.get("email"), "Activated hero section", {"section_id": section_id})
    return jsonify({"section": serialize_value(mongo.db.hero_sections.find_one({"_id": section["_id"]}))})


@bp.route("/hero-sections/reorder", methods=["POST"])
@jwt_required()
def reorder_hero_sections():
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    payload = request.get_json(silent=True) or {}
    ordered_ids = payload.get("order")
    if not isinstance(ordered_ids, list):
        return error_response("order must be a list of section ids", 400)

    for index, section_id in enumerate(ordered_ids):
        object_id = normalize_object_id_value(section_id)
        if object_id is not None:
            mongo.db.hero_sections.update_one({"_id": object_id}, {"$set": {"order": index}})

    record_audit_log(admin_user.get("email"), "Reordered hero sections", {"count": len(ordered_ids)})
    sections = mongo.db.hero_sections.find().sort("order", 1)
    return jsonify({"sections": [serialize_value(section) for section in sections]})


@bp.route("/gallery", methods=["GET"])
def read_gallery():
    gallery = mongo.db.gallery.find_one({})
    if not gallery:
        gallery = {"images": [], "created_at": utcnow()}
        gallery["_id"] = mongo.db.gallery.insert_one(gallery).inserted_id
    return jsonify({"images": gallery.get("images") or []})


@bp.route("/gallery", methods=["PUT"])
@jwt_required()
def replace_gallery():
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    payload = request.get_json(silent=True) or {}
    images = payload.get("images")
    if not isinstance(images, list):
        return error_response("images must be a list", 400)
    images = [str(url) for url in images if url]

    # single-document write keeps the replacement atomic
    mongo.db.gallery.update_one(
        {}, {"$set": {"images": images, "updated_at": utcnow()}}, upsert=True
    )
    record_audit_log(admin_user.get("email"), "Updated gallery", {"count": len(images)})
    return jsonify({"images": images})


def normalize_section_items(items, *, with_order: bool) -> List[Dict]:
    if not isinstance(items, list):
        raise ValidationError("items must be a list")
    normalized: List[Dict] = []
    for index, item in enumerate(items):
        if not isinstance(item, dict) or not str(item.get("icon") or "").strip():
            raise ValidationError("Each item needs an icon", {"index": index})
        entry = {
            "icon": str(item["icon"]).strip(),
            "title": normalize_multilang(item.get("title"), f"items[{index}].title"),
            "description": normalize_multilang(item.get("description"), f"items[{index}].description"),
        }
        if with_order:
            entry["order"] = int(item.get("order", index) or 0)
        normalized.append(entry)
    if with_order:
        normalized.sort(key=lambda entry: entry["order"])
    return normalized


def _read_section(collection):
    section = collection.find_one({})
    if not section:
        return {"title": dict(EMPTY_TITLE), "items": []}
    return {"title": section.get("title") or dict(EMPTY_TITLE), "items": section.get("items") or []}


def _replace_section(collection, payload: Dict, *, title_required: bool, with_order: bool) -> Dict:
    section = {
        "title": normalize_multilang(payload.get("title"), "title", required=title_required),
        "items": normalize_section_items(payload.get("items"), with_order=with_order),
    }
    collection.update_one({}, {"$set": {**section, "updated_at": utcnow()}}, upsert=True)
    return section


@bp.route("/features-section", methods=["GET"])
def read_features_section():
    return jsonify(_read_section(mongo.db.features_section))


@bp.route("/features-section", methods=["PUT"])
@jwt_required()
def replace_features_section():
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    section = _replace_section(
        mongo.db.features_section,
        request.get_json(silent=True) or {},
        title_required=True,
        with_order=True,
    )
    record_audit_log(admin_user.get("email"), "Updated features section", {"items": len(section["items"])})
    return jsonify(section)


@bp.route("/guarantee-section", methods=["GET"])
def read_guarantee_section():
    return jsonify(_read_section(mongo.db.guarantee_section))


@bp.route("/guarantee-section", methods=["PUT"])
@jwt_required()
def replace_guarantee_section():
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    section = _replace_section(
        mongo.db.guarantee_section,
        request.get_json(silent=True) or {},
        title_required=False,
        with_order=False,
    )
    record_audit_log(admin_user.get("email"), "Updated guarantee section", {"items": len(section["items"])})
    return jsonify(section)
