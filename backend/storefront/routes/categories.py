from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from ..audit import record_audit_log
from ..auth import is_admin, optional_current_user, require_admin_user
from ..errors import error_response
from ..extensions import mongo
from ..helpers import (
    normalize_multilang,
    normalize_object_id_value,
    parse_bool,
    safe_positive_int,
    slugify,
    unique_slug,
    utcnow,
)
from .catalog import request_language, serialize_catalog_document, serialize_products
from .specifications import normalize_specifications

bp = Blueprint("categories", __name__, url_prefix="/api/categories")


def build_category_product_counts():
    pipeline = [
        {"$match": {"category": {"$ne": None}, "draft": {"$ne": True}}},
        {"$group": {"_id": "$category", "count": {"$sum": 1}}},
    ]
    return {entry["_id"]: entry["count"] for entry in mongo.db.products.aggregate(pipeline)}


def serialize_category(category_document, language: str, product_counts=None):
    serialized = serialize_catalog_document(category_document, language)
    if product_counts is not None:
        serialized["product_count"] = product_counts.get(category_document["_id"], 0)
    return serialized


@bp.route("", methods=["GET"])
def list_categories():
    language = request_language()
    query = {}
    user = optional_current_user()
    if not (user and is_admin(user)):
        query["is_active"] = {"$ne": False}

    counts = build_category_product_counts()
    categories = mongo.db.categories.find(query).sort([("order", 1), ("name", 1)])
    return jsonify(
        {"categories": [serialize_category(category, language, counts) for category in categories]}
    )


@bp.route("/<slug>", methods=["GET"])
def get_category(slug: str):
    language = request_language()
    category = mongo.db.categories.find_one({"slug": slug})
    if not category:
        return error_response("Category not found.", 404)

    products = list(
        mongo.db.products.find({"category": category["_id"], "draft": {"$ne": True}}).sort(
            "created_at", -1
        )
    )
    return jsonify(
        {
            "category": serialize_category(category, language),
            "products": serialize_products(products, language),
        }
    )


@bp.route("", methods=["POST"])
@jwt_required()
def create_category():
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    payload = request.get_json(silent=True) or {}
    display_names = normalize_multilang(payload.get("display_names"), "display_names")
    name = str(payload.get("name") or display_names["en"]).strip()
    slug = unique_slug(mongo.db.categories, slugify(payload.get("slug") or name) or "category")

    now = utcnow()
    category_document = {
        "name": name,
        "slug": slug,
        "display_names": display_names,
        "descriptions": normalize_multilang(payload.get("descriptions"), "descriptions", required=False),
        "specifications": normalize_specifications(payload.get("specifications") or []),
        "order": safe_positive_int(payload.get("order"), 0),
        "is_active": parse_bool(payload.get("is_active"), True),
        "created_at": now,
        "updated_at": now,
    }
    result = mongo.db.categories.insert_one(category_document)

    record_audit_log(
        admin_user.get("email"),
        "Created category",
        {"category_id": str(result.inserted_id), "category_name": name},
    )
    return jsonify({"category": serialize_category(category_document, request_language())}), 201


@bp.route("/<category_id>", methods=["PUT"])
@jwt_required()
def update_category(category_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    object_id = normalize_object_id_value(category_id)
    category = mongo.db.categories.find_one({"_id": object_id}) if object_id else None
    if not category:
        return error_response("Category not found.", 404)

    payload = request.get_json(silent=True) or {}
    updates = {}
    if "display_names" in payload:
        updates["display_names"] = normalize_multilang(payload.get("display_names"), "display_names")
    if "descriptions" in payload:
        updates["descriptions"] = normalize_multilang(
            payload.get("descriptions"), "descriptions", required=False
        )
    if "name" in payload:
        name = str(payload.get("name") or "").strip()
        if not name:
            return error_response("Category name cannot be empty.", 400)
        updates["name"] = name
        updates["slug"] = unique_slug(
            mongo.db.categories, slugify(name) or "category", exclude_id=category["_id"]
        )
    if "specifications" in payload:
        updates["specifications"] = normalize_specifications(payload.get("specifications") or [])
    if "order" in payload:
        updates["order"] = safe_positive_int(payload.get("order"), 0)
    if "is_active" in payload:
        updates["is_active"] = parse_bool(payload.get("is_active"), True)

    updates["updated_at"] = utcnow()
    mongo.db.categories.update_one({"_id": category["_id"]}, {"$set": updates})
    record_audit_log(admin_user.get("email"), "Updated category", {"category_id": category_id})

    updated = mongo.db.categories.find_one({"_id": category["_id"]})
    return jsonify({"category": serialize_category(updated, request_language())})


@bp.route("/<category_id>", methods=["DELETE"])
@jwt_required()
def delete_category(category_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    object_id = normalize_object_id_value(category_id)
    category = mongo.db.categories.find_one({"_id": object_id}) if object_id else None
    if not category:
        return error_response("Category not found.", 404)

    product_count = mongo.db.products.count_documents({"category": category["_id"]})
    if product_count:
        return error_response(
            "Category still has products assigned.", 400, product_count=product_count
        )

    mongo.db.categories.delete_one({"_id": category["_id"]})
    record_audit_log(
        admin_user.get("email"),
        "Deleted category",
        {"category_id": category_id, "category_name": category.get("name")},
    )
    return jsonify({"message": "Category deleted.", "category": {"id": category_id}})
