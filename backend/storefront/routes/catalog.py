import re
from typing import Dict, List, Optional

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from ..audit import record_audit_log
from ..auth import is_admin, optional_current_user, require_admin_user
from ..errors import ValidationError, error_response
from ..extensions import mongo
from ..helpers import (
    localized,
    normalize_multilang,
    normalize_object_id_value,
    parse_bool,
    parse_pagination,
    resolve_language,
    safe_float,
    safe_positive_int,
    serialize_value,
    slugify,
    total_pages,
    unique_slug,
    utcnow,
)

bp = Blueprint("catalog", __name__, url_prefix="/api/products")

SORT_OPTIONS = {
    "newest": [("created_at", -1)],
    "price_asc": [("price", 1)],
    "price_desc": [("price", -1)],
    "rating": [("average_rating", -1), ("num_reviews", -1)],
    "name": [("name", 1)],
}
SHOWCASE_LIMIT = 8


def serialize_catalog_document(document, language: str, *, name_field: str = "display_names"):
    """Serialize a product, category or brand with names resolved for ``language``."""
    if not document:
        return None
    serialized = serialize_value(document)
    serialized["name"] = localized(document.get(name_field), language, document.get("name") or "")
    serialized["description"] = localized(
        document.get("descriptions"), language, document.get("description") or ""
    )
    return serialized


def _lookup(collection, ids, language: str) -> Dict:
    ids = [object_id for object_id in ids if object_id is not None]
    if not ids:
        return {}
    return {
        document["_id"]: {
            "id": str(document["_id"]),
            "name": localized(document.get("display_names"), language, document.get("name") or ""),
            "slug": document.get("slug"),
        }
        for document in collection.find(
            {"_id": {"$in": list(set(ids))}}, {"name": 1, "display_names": 1, "slug": 1}
        )
    }


def serialize_products(products: List[Dict], language: str) -> List[Dict]:
    brands = _lookup(mongo.db.brands, [p.get("brand") for p in products], language)
    categories = _lookup(mongo.db.categories, [p.get("category") for p in products], language)
    serialized_products = []
    for product in products:
        serialized = serialize_catalog_document(product, language)
        serialized.pop("purchased_by", None)
        serialized["brand"] = brands.get(product.get("brand")) or serialize_value(product.get("brand"))
        serialized["category"] = categories.get(product.get("category")) or serialize_value(
            product.get("category")
        )
        serialized_products.append(serialized)
    return serialized_products


def request_language() -> str:
    return resolve_language(request.args.get("language") or request.args.get("lang"))


def _fetch_product(product_id: str):
    object_id = normalize_object_id_value(product_id)
    if object_id is None:
        return None
    return mongo.db.products.find_one({"_id": object_id})


def _product_fields(payload: Dict, existing: Optional[Dict] = None) -> Dict:
    """Normalize a create/update payload; ``existing`` switches to partial updates."""
    fields: Dict[str, object] = {}
    creating = existing is None

    if creating or "name" in payload:
        name = str(payload.get("name") or "").strip()
        if not name:
            raise ValidationError("A valid name is required.", {"field": "name"})
        fields["name"] = name
    if creating or "display_names" in payload:
        fields["display_names"] = normalize_multilang(payload.get("display_names"), "display_names")
    if creating or "descriptions" in payload:
        fields["descriptions"] = normalize_multilang(payload.get("descriptions"), "descriptions")
        fields["description"] = fields["descriptions"]["en"]
    if creating or "price" in payload:
        price = safe_float(payload.get("price"), None)
        if price is None or price < 0:
            raise ValidationError("A valid price is required.", {"field": "price"})
        fields["price"] = round(price, 2)
    for reference in ("brand", "category"):
        if creating or reference in payload:
            object_id = normalize_object_id_value(payload.get(reference))
            if object_id is None:
                raise ValidationError(f"A valid {reference} is required.", {"field": reference})
            fields[reference] = object_id

    for numeric in ("net_price", "original_price"):
        if numeric in payload:
            fields[numeric] = round(safe_float(payload.get(numeric), 0.0), 2)
    if "stock" in payload or creating:
        fields["stock"] = safe_positive_int(payload.get("stock"), 0)
    if "images" in payload or creating:
        images = payload.get("images") or []
        fields["images"] = [str(url) for url in images if url] if isinstance(images, list) else []
    if "specifications" in payload or creating:
        specifications = payload.get("specifications") or []
        fields["specifications"] = specifications if isinstance(specifications, list) else []
    for flag in ("draft", "featured", "is_best_selling"):
        if flag in payload or creating:
            fields[flag] = parse_bool(payload.get(flag))
    return fields


@bp.route("", methods=["GET"])
def list_products():
    language = request_language()
    page, limit, skip = parse_pagination(request.args, default_limit=10)

    query: Dict[str, object] = {}
    user = optional_current_user() if parse_bool(request.args.get("include_drafts")) else None
    if not (user and is_admin(user)):
        query["draft"] = {"$ne": True}

    price_filter: Dict[str, float] = {}
    min_price = safe_float(request.args.get("min_price"), None)
    max_price = safe_float(request.args.get("max_price"), None)
    if min_price is not None:
        price_filter["$gte"] = min_price
    if max_price is not None:
        price_filter["$lte"] = max_price
    if price_filter:
        query["price"] = price_filter

    for reference in ("brand", "category"):
        object_id = normalize_object_id_value(request.args.get(reference)) if request.args.get(reference) else None
        if object_id is not None:
            query[reference] = object_id
    if parse_bool(request.args.get("featured")):
        query["featured"] = True

    sort = SORT_OPTIONS.get(request.args.get("sort") or "newest", SORT_OPTIONS["newest"])
    total = mongo.db.products.count_documents(query)
    products = list(mongo.db.products.find(query).sort(sort).skip(skip).limit(limit))

    return jsonify(
        {
            "products": serialize_products(products, language),
            "total": total,
            "page": page,
            "total_pages": total_pages(total, limit),
        }
    )


@bp.route("/search", methods=["GET"])
def search_products():
    search_term = (request.args.get("q") or "").strip()
    if not search_term:
        return error_response("Search query is required.", 400)

    regex = re.compile(re.escape(search_term), re.IGNORECASE)
    query = {
        "draft": {"$ne": True},
        "$or": [
            {"name": regex},
            {"display_names.en": regex},
            {"display_names.zh-TW": regex},
        ],
    }
    products = list(mongo.db.products.find(query).sort("name", 1).limit(50))
    return jsonify({"products": serialize_products(products, request_language())})


@bp.route("/featured", methods=["GET"])
def featured_products():
    products = list(
        mongo.db.products.find({"featured": True, "draft": {"$ne": True}})
        .sort("updated_at", -1)
        .limit(SHOWCASE_LIMIT)
    )
    return jsonify({"products": serialize_products(products, request_language())})


@bp.route("/bestselling", methods=["GET"])
def bestselling_products():
    products = list(
        mongo.db.products.find({"is_best_selling": True, "draft": {"$ne": True}})
        .sort("num_reviews", -1)
        .limit(SHOWCASE_LIMIT)
    )
    return jsonify({"products": serialize_products(products, request_language())})


@bp.route("/product-of-the-month", methods=["GET"])
def product_of_the_month():
    product = mongo.db.products.find_one({"is_product_of_the_month": True})
    serialized = serialize_products([product], request_language())[0] if product else None
    return jsonify({"product": serialized})


@bp.route("/product-of-the-month", methods=["PUT"])
@jwt_required()
def set_product_of_the_month():
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    payload = request.get_json(silent=True) or {}
    product = _fetch_product(payload.get("product_id"))
    if not product:
        return error_response("Product not found.", 404)

    mongo.db.products.update_many(
        {"is_product_of_the_month": True}, {"$set": {"is_product_of_the_month": False}}
    )
    details = {key: payload[key] for key in ("description", "features") if key in payload}
    mongo.db.products.update_one(
        {"_id": product["_id"]},
        {"$set": {"is_product_of_the_month": True, "product_of_the_month_details": details}},
    )
    record_audit_log(
        admin_user.get("email"), "Set product of the month", {"product_id": str(product["_id"])}
    )
    updated = mongo.db.products.find_one({"_id": product["_id"]})
    return jsonify({"product": serialize_products([updated], request_language())[0]})


@bp.route("/brand/<slug>", methods=["GET"])
def products_by_brand(slug: str):
    brand = mongo.db.brands.find_one({"slug": slug, "deleted_at": None})
    if not brand:
        return error_response("Brand not found.", 404)
    language = request_language()
    products = list(
        mongo.db.products.find({"brand": brand["_id"], "draft": {"$ne": True}}).sort("created_at", -1)
    )
    return jsonify(
        {
            "brand": serialize_catalog_document(brand, language),
            "products": serialize_products(products, language),
        }
    )


@bp.route("/<product_id>", methods=["GET"])
def get_product(product_id: str):
    product = _fetch_product(product_id)
    if not product:
        return error_response("Product not found.", 404)
    if product.get("draft"):
        user = optional_current_user()
        if not (user and is_admin(user)):
            return error_response("Product not found.", 404)
    return jsonify({"product": serialize_products([product], request_language())[0]})


@bp.route("", methods=["POST"])
@jwt_required()
def create_product():
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    payload = request.get_json(silent=True) or {}
    fields = _product_fields(payload)

    now = utcnow()
    fields.update(
        {
            "slug": unique_slug(mongo.db.products, slugify(fields["name"]) or "product"),
            "average_rating": 0.0,
            "num_reviews": 0,
            "is_product_of_the_month": False,
            "purchased_by": [],
            "created_by": admin_user.get("email"),
            "created_at": now,
            "updated_at": now,
        }
    )
    result = mongo.db.products.insert_one(fields)
    fields["_id"] = result.inserted_id

    record_audit_log(
        admin_user.get("email"),
        "Created product",
        {"product_id": str(result.inserted_id), "product_name": fields["name"]},
    )
    return jsonify({"product": serialize_products([fields], request_language())[0]}), 201


@bp.route("/<product_id>", methods=["PUT"])
@jwt_required()
def update_product(product_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    product = _fetch_product(product_id)
    if not product:
        return error_response("Product not found.", 404)

    payload = request.get_json(silent=True) or {}
    fields = _product_fields(payload, existing=product)

    if "name" in fields and fields["name"] != product.get("name"):
        fields["slug"] = unique_slug(
            mongo.db.products, slugify(fields["name"]) or "product", exclude_id=product["_id"]
        )
    fields["updated_at"] = utcnow()
    mongo.db.products.update_one({"_id": product["_id"]}, {"$set": fields})

    record_audit_log(
        admin_user.get("email"),
        "Updated product",
        {"product_id": product_id, "fields": ",".join(sorted(fields))},
    )
    updated = mongo.db.products.find_one({"_id": product["_id"]})
    return jsonify({"product": serialize_products([updated], request_language())[0]})


@bp.route("/<product_id>", methods=["DELETE"])
@jwt_required()
def delete_product(product_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    product = _fetch_product(product_id)
    if not product:
        return error_response("Product not found.", 404)

    mongo.db.products.delete_one({"_id": product["_id"]})
    mongo.db.users.update_many({}, {"$pull": {"wishlist": product["_id"]}})
    record_audit_log(
        admin_user.get("email"),
        "Deleted product",
        {"product_id": product_id, "product_name": product.get("name")},
    )
    return jsonify({"message": "Product deleted.", "product": {"id": product_id}})


@bp.route("/<product_id>/featured", methods=["PUT"])
@jwt_required()
def toggle_featured(product_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    product = _fetch_product(product_id)
    if not product:
        return error_response("Product not found.", 404)

    featured = not bool(product.get("featured"))
    mongo.db.products.update_one(
        {"_id": product["_id"]}, {"$set": {"featured": featured, "updated_at": utcnow()}}
    )
    record_audit_log(
        admin_user.get("email"),
        "Toggled featured product",
        {"product_id": product_id, "featured": featured},
    )
    return jsonify({"product": {"id": product_id, "featured": featured}})
