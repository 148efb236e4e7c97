from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from ..audit import record_audit_log
from ..auth import require_admin_user
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
from .catalog import request_language, serialize_catalog_document

bp = Blueprint("brands", __name__, url_prefix="/api/brands")


def _fetch_brand(brand_id: str):
    object_id = normalize_object_id_value(brand_id)
    if object_id is None:
        return None
    return mongo.db.brands.find_one({"_id": object_id, "deleted_at": None})


@bp.route("", methods=["GET"])
def list_brands():
    language = request_language()
    query = {"deleted_at": None}
    if parse_bool(request.args.get("active_only")):
        query["is_active"] = True
    brands = mongo.db.brands.find(query).sort([("order", 1), ("name", 1)])
    return jsonify({"brands": [serialize_catalog_document(brand, language) for brand in brands]})


@bp.route("", methods=["POST"])
@jwt_required()
def create_brand():
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    payload = request.get_json(silent=True) or {}
    name = str(payload.get("name") or "").strip()
    if not name:
        return error_response("Brand name is required.", 400)

    now = utcnow()
    brand_document = {
        "name": name,
        "slug": unique_slug(mongo.db.brands, slugify(name) or "brand"),
        "display_names": normalize_multilang(payload.get("display_names") or name, "display_names"),
        "descriptions": normalize_multilang(payload.get("descriptions"), "descriptions", required=False),
        "is_active": parse_bool(payload.get("is_active"), True),
        "order": safe_positive_int(payload.get("order"), 0),
        "deleted_at": None,
        "created_at": now,
        "updated_at": now,
    }
    result = mongo.db.brands.insert_one(brand_document)
    record_audit_log(
        admin_user.get("email"), "Created brand", {"brand_id": str(result.inserted_id), "name": name}
    )
    return jsonify({"brand": serialize_catalog_document(brand_document, request_language())}), 201


@bp.route("/<brand_id>", methods=["PUT"])
@jwt_required()
def update_brand(brand_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    brand = _fetch_brand(brand_id)
    if not brand:
        return error_response("Brand not found.", 404)

    payload = request.get_json(silent=True) or {}
    updates = {}
    if "name" in payload:
        name = str(payload.get("name") or "").strip()
        if not name:
            return error_response("Brand name cannot be empty.", 400)
        updates["name"] = name
        updates["slug"] = unique_slug(mongo.db.brands, slugify(name) or "brand", exclude_id=brand["_id"])
    if "display_names" in payload:
        updates["display_names"] = normalize_multilang(payload.get("display_names"), "display_names")
    if "descriptions" in payload:
        updates["descriptions"] = normalize_multilang(
            payload.get("descriptions"), "descriptions", required=False
        )
    if "is_active" in payload:
        updates["is_active"] = parse_bool(payload.get("is_active"), True)
    if "order" in payload:
        updates["order"] = safe_positive_int(payload.get("order"), 0)

    updates["updated_at"] = utcnow()
    mongo.db.brands.update_one({"_id": brand["_id"]}, {"$set": updates})
    record_audit_log(admin_user.get("email"), "Updated brand", {"brand_id": brand_id})

    updated = mongo.db.brands.find_one({"_id": brand["_id"]})
    return jsonify({"brand": serialize_catalog_document(updated, request_language())})


@bp.route("/<brand_id>", methods=["DELETE"])
@jwt_required()
def delete_brand(brand_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    brand = _fetch_brand(brand_id)
    if not brand:
        return error_response("Brand not found.", 404)

    now = utcnow()
    mongo.db.brands.update_one(
        {"_id": brand["_id"]},
        {"$set": {"deleted_at": now, "is_active": False, "updated_at": now}},
    )
    record_audit_log(
        admin_user.get("email"), "Deleted brand", {"brand_id": brand_id, "name": brand.get("name")}
    )
    return jsonify({"message": "Brand deleted.", "brand": {"id": brand_id}})
