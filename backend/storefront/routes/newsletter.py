import re
from typing import Dict

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from ..audit import record_audit_log
from ..auth import require_admin_user
from ..errors import error_response
from ..extensions import mongo
from ..helpers import (
    is_valid_email,
    normalize_email,
    normalize_object_id_value,
    parse_bool,
    parse_pagination,
    serialize_value,
    total_pages,
    utcnow,
)

bp = Blueprint("newsletter", __name__, url_prefix="/api/newsletter")

DEFAULT_PREFERENCES = {"marketing": True, "updates": True, "promotions": True}


@bp.route("/subscribe", methods=["POST"])
def subscribe():
    payload = request.get_json(silent=True) or {}
    email = normalize_email(payload.get("email"))
    if not is_valid_email(email):
        return error_response("Please provide a valid email address.", 400)

    source = str(payload.get("source") or "website").strip()
    now = utcnow()
    subscriber = mongo.db.newsletter.find_one({"email": email})
    if subscriber:
        if subscriber.get("is_active"):
            return error_response("This email is already subscribed.", 400)
        mongo.db.newsletter.update_one(
            {"_id": subscriber["_id"]},
            {
                "$set": {
                    "is_active": True,
                    "source": source,
                    "subscribed_at": now,
                    "unsubscribed_at": None,
                }
            },
        )
        return jsonify({"message": "Welcome back! Your subscription is active again."})

    mongo.db.newsletter.insert_one(
        {
            "email": email,
            "source": source,
            "is_active": True,
            "subscribed_at": now,
            "unsubscribed_at": None,
            "preferences": dict(DEFAULT_PREFERENCES),
        }
    )
    return jsonify({"message": "Subscribed successfully."}), 201


@bp.route("/unsubscribe", methods=["POST"])
def unsubscribe():
    payload = request.get_json(silent=True) or {}
    email = normalize_email(payload.get("email"))
    subscriber = mongo.db.newsletter.find_one({"email": email}) if email else None
    if not subscriber:
        return error_response("Subscriber not found.", 404)

    mongo.db.newsletter.update_one(
        {"_id": subscriber["_id"]},
        {"$set": {"is_active": False, "unsubscribed_at": utcnow()}},
    )
    return jsonify({"message": "You have been unsubscribed."})


@bp.route("/subscribers", methods=["GET"])
@jwt_required()
def list_subscribers():
    _, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    page, limit, skip = parse_pagination(request.args, default_limit=20)
    query: Dict[str, object] = {}
    if request.args.get("active") not in (None, "", "all"):
        query["is_active"] = parse_bool(request.args.get("active"))
    search_term = (request.args.get("search") or "").strip()
    if search_term:
        query["email"] = re.compile(re.escape(search_term), re.IGNORECASE)

    total = mongo.db.newsletter.count_documents(query)
    subscribers = mongo.db.newsletter.find(query).sort("subscribed_at", -1).skip(skip).limit(limit)
    return jsonify(
        {
            "subscribers": [serialize_value(subscriber) for subscriber in subscribers],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": total_pages(total, limit),
            },
        }
    )


@bp.route("/subscribers/<subscriber_id>", methods=["PUT"])
@jwt_required()
def update_subscriber(subscriber_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    object_id = normalize_object_id_value(subscriber_id)
    subscriber = mongo.db.newsletter.find_one({"_id": object_id}) if object_id else None
    if not subscriber:
        return error_response("Subscriber not found.", 404)

    payload = request.get_json(silent=True) or {}
    updates: Dict[str, object] = {}
    if "is_active" in payload:
        is_active = parse_bool(payload.get("is_active"), bool(subscriber.get("is_active")))
        updates["is_active"] = is_active
        updates["unsubscribed_at"] = None if is_active else utcnow()
    if isinstance(payload.get("preferences"), dict):
        current = subscriber.get("preferences") or DEFAULT_PREFERENCES
        updates["preferences"] = {
            key: parse_bool(payload["preferences"].get(key), current.get(key, True))
            for key in DEFAULT_PREFERENCES
        }
    if not updates:
        return error_response("Nothing to update.", 400)

    mongo.db.newsletter.update_one({"_id": subscriber["_id"]}, {"$set": updates})
    record_audit_log(admin_user.get("email"), "Updated newsletter subscriber", {"email": subscriber.get("email")})
    return jsonify({"subscriber": serialize_value(mongo.db.newsletter.find_one({"_id": subscriber["_id"]}))})


@bp.route("/subscribers/<subscriber_id>", methods=["DELETE"])
@jwt_required()
def delete_subscriber(subscriber_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    object_id = normalize_object_id_value(subscriber_id)
    subscriber = mongo.db.newsletter.find_one({"_id": object_id}) if object_id else None
    if not subscriber:
        return error_response("Subscriber not found.", 404)

    mongo.db.newsletter.delete_one({"_id": subscriber["_id"]})
    record_audit_log(admin_user.get("email"), "Deleted newsletter subscriber", {"email": subscriber.get("email")})
    return jsonify({"message": "Subscriber removed."})
