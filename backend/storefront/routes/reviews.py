from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from ..auth import require_login
from ..errors import error_response
from ..extensions import mongo
from ..helpers import isoformat, normalize_object_id_value, safe_positive_int, utcnow

bp = Blueprint("reviews", __name__, url_prefix="/api/reviews")


def serialize_review(review, user_names=None):
    user_names = user_names or {}
    return {
        "id": str(review["_id"]),
        "product": str(review.get("product")),
        "user": {
            "id": str(review.get("user")),
            "name": user_names.get(review.get("user"), ""),
        },
        "rating": review.get("rating"),
        "comment": review.get("comment") or "",
        "image": review.get("image"),
        "created_at": isoformat(review.get("created_at")),
    }


def has_purchased(user_id, product_id) -> bool:
    return bool(
        mongo.db.orders.find_one(
            {
                "user": user_id,
                "status": "delivered",
                "paid": True,
                "items.product": product_id,
            },
            {"_id": 1},
        )
    )


def review_eligibility(user, product_id):
    if mongo.db.reviews.find_one({"user": user["_id"], "product": product_id}, {"_id": 1}):
        return False, "You have already reviewed this product."
    if not has_purchased(user["_id"], product_id):
        return False, "Only customers with a delivered order can review this product."
    return True, None


def refresh_product_rating(product_id) -> None:
    ratings = [review.get("rating") or 0 for review in mongo.db.reviews.find({"product": product_id}, {"rating": 1})]
    average = round(sum(ratings) / len(ratings), 2) if ratings else 0.0
    mongo.db.products.update_one(
        {"_id": product_id},
        {"$set": {"num_reviews": len(ratings), "average_rating": average}},
    )


@bp.route("/can-review", methods=["GET"])
@jwt_required()
def can_review():
    user, error = require_login()
    if error:
        return error

    product_id = normalize_object_id_value(request.args.get("product_id"))
    if product_id is None:
        return error_response("Product ID is required.", 400)

    allowed, reason = review_eligibility(user, product_id)
    return jsonify({"can_review": allowed, "reason": reason})


@bp.route("/<product_id>", methods=["GET"])
def list_reviews(product_id: str):
    object_id = normalize_object_id_value(product_id)
    if object_id is None:
        return error_response("Invalid product identifier.", 400)

    reviews = list(mongo.db.reviews.find({"product": object_id}).sort("created_at", -1))
    user_ids = list({review.get("user") for review in reviews})
    user_names = {
        user["_id"]: user.get("name", "")
        for user in mongo.db.users.find({"_id": {"$in": user_ids}}, {"name": 1})
    }
    return jsonify({"reviews": [serialize_review(review, user_names) for review in reviews]})


@bp.route("", methods=["POST"])
@jwt_required()
def create_review():
    user, error = require_login()
    if error:
        return error

    payload = request.get_json(silent=True) or {}
    product_id = normalize_object_id_value(payload.get("product_id"))
    if product_id is None or not mongo.db.products.find_one({"_id": product_id}, {"_id": 1}):
        return error_response("Product not found.", 404)

    rating = safe_positive_int(payload.get("rating"), 0)
    if rating < 1 or rating > 5:
        return error_response("Rating must be between 1 and 5.", 400)

    allowed, reason = review_eligibility(user, product_id)
    if not allowed:
        return error_response(reason, 400)

    review = {
        "user": user["_id"],
        "product": product_id,
        "rating": rating,
        "comment": str(payload.get("comment") or "").strip(),
        "image": payload.get("image") or None,
        "created_at": utcnow(),
    }
    result = mongo.db.reviews.insert_one(review)
    review["_id"] = result.inserted_id
    refresh_product_rating(product_id)

    return jsonify({"review": serialize_review(review, {user["_id"]: user.get("name", "")})}), 201
