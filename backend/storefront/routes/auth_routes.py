from typing import Dict

import bcrypt
from flask import Blueprint, jsonify, request
from flask_jwt_extended import (
    create_access_token,
    jwt_required,
    set_access_cookies,
    unset_jwt_cookies,
)

from ..audit import record_audit_log
from ..auth import default_admin_email, get_user_role, require_login
from ..errors import error_response
from ..extensions import mongo
from ..helpers import (
    is_valid_phone,
    normalize_address,
    normalize_email,
    normalize_object_id_value,
    parse_bool,
    resolve_language,
    serialize_value,
    utcnow,
)

bp = Blueprint("auth", __name__, url_prefix="/api")


def serialize_user_profile(user_document) -> Dict[str, object]:
    if not user_document:
        return {}
    role = get_user_role(user_document)
    preferences = user_document.get("notification_preferences") or {}
    return {
        "id": str(user_document.get("_id")),
        "email": user_document.get("email", ""),
        "name": user_document.get("name", ""),
        "phone": user_document.get("phone") or "",
        "address": serialize_value(user_document.get("address") or {}),
        "language": user_document.get("language") or "en",
        "role": role,
        "admin": role == "admin",
        "is_period_paid_user": bool(user_document.get("is_period_paid_user")),
        "payment_period": user_document.get("payment_period"),
        "notification_preferences": {
            "order_updates": preferences.get("order_updates", True),
            "promotions": preferences.get("promotions", False),
        },
        "wishlist": [str(product_id) for product_id in user_document.get("wishlist") or []],
    }


@bp.route("/register", methods=["POST"])
def register():
    payload = request.get_json(silent=True) or {}
    email = normalize_email(payload.get("email"))
    name = str(payload.get("name", "")).strip()
    password = str(payload.get("password", ""))

    if not email or not name or not password:
        return error_response("Name, email, and password are required.", 400)

    if mongo.db.users.find_one({"email": email}):
        return error_response("An account with this email already exists.", 409)

    hashed_pw = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())
    is_default_admin = bool(email) and email == default_admin_email()

    user_document = {
        "email": email,
        "name": name,
        "password": hashed_pw,
        "admin": is_default_admin,
        "role": "admin" if is_default_admin else "user",
        "phone": "",
        "language": "en",
        "is_period_paid_user": False,
        "payment_period": None,
        "payment_history": [],
        "notification_preferences": {"order_updates": True, "promotions": False},
        "wishlist": [],
        "created_at": utcnow(),
    }
    insert_result = mongo.db.users.insert_one(user_document)

    record_audit_log(email, "Registered new account", {"user_id": str(insert_result.inserted_id)})

    return (
        jsonify({"message": "Account created.", "user": serialize_user_profile(user_document)}),
        201,
    )


@bp.route("/login", methods=["POST"])
def login():
    payload = request.get_json(silent=True) or {}
    email = normalize_email(payload.get("email"))
    password = str(payload.get("password", ""))

    if not email or not password:
        return error_response("Email and password are required.", 400)

    user = mongo.db.users.find_one({"email": email})
    if not user or not bcrypt.checkpw(password.encode("utf-8"), user["password"]):
        return error_response("Invalid credentials", 401)

    mongo.db.users.update_one({"_id": user["_id"]}, {"$set": {"last_login_at": utcnow()}})

    token = create_access_token(identity=email)
    record_audit_log(
        email, "Signed in", {"ip": request.headers.get("X-Forwarded-For", request.remote_addr)}
    )

    response = jsonify({"access_token": token, "user": serialize_user_profile(user)})
    set_access_cookies(response, token)
    return response


@bp.route("/logout", methods=["POST"])
def logout():
    response = jsonify({"message": "Signed out."})
    unset_jwt_cookies(response)
    return response


@bp.route("/account", methods=["GET", "PUT", "DELETE"])
@jwt_required()
def manage_account():
    user, error = require_login()
    if error:
        return error

    if request.method == "GET":
        return jsonify({"user": serialize_user_profile(user)})

    if request.method == "DELETE":
        mongo.db.users.delete_one({"_id": user["_id"]})
        record_audit_log(None, "Deleted own account", {"email": user.get("email")})
        response = jsonify({"message": "Account deleted."})
        unset_jwt_cookies(response)
        return response

    payload = request.get_json(silent=True) or {}
    updates: Dict[str, object] = {}

    if "name" in payload:
        name = str(payload.get("name") or "").strip()
        if not name:
            return error_response("Name cannot be empty.", 400)
        updates["name"] = name

    if "phone" in payload:
        phone = str(payload.get("phone") or "").strip()
        if phone and not is_valid_phone(phone):
            return error_response("Invalid phone number format. Must be at least 8 digits.", 400)
        updates["phone"] = phone

    if "address" in payload:
        updates["address"] = normalize_address(payload.get("address"))

    if "language" in payload:
        updates["language"] = resolve_language(payload.get("language"))

    if isinstance(payload.get("notification_preferences"), dict):
        preferences = payload["notification_preferences"]
        current = user.get("notification_preferences") or {}
        updates["notification_preferences"] = {
            "order_updates": parse_bool(
                preferences.get("order_updates"), current.get("order_updates", True)
            ),
            "promotions": parse_bool(
                preferences.get("promotions"), current.get("promotions", False)
            ),
        }

    if not updates:
        return error_response("No changes supplied.", 400)

    updates["updated_at"] = utcnow()
    mongo.db.users.update_one({"_id": user["_id"]}, {"$set": updates})
    updated_user = mongo.db.users.find_one({"_id": user["_id"]})
    return jsonify({"message": "Profile updated.", "user": serialize_user_profile(updated_user)})


@bp.route("/wishlist", methods=["GET", "POST", "DELETE"])
@jwt_required()
def manage_wishlist():
    user, error = require_login()
    if error:
        return error

    if request.method == "GET":
        product_ids = user.get("wishlist") or []
        products = mongo.db.products.find(
            {"_id": {"$in": product_ids}},
            {"name": 1, "display_names": 1, "images": 1, "price": 1, "slug": 1},
        )
        return jsonify({"success": True, "wishlist": [serialize_value(p) for p in products]})

    payload = request.get_json(silent=True) or {}
    product_id = normalize_object_id_value(payload.get("product_id") or request.args.get("product_id"))
    if product_id is None:
        return error_response("Product ID is required", 400)

    if request.method == "POST":
        if not mongo.db.products.find_one({"_id": product_id}, {"_id": 1}):
            return error_response("Product not found", 404)
        mongo.db.users.update_one({"_id": user["_id"]}, {"$addToSet": {"wishlist": product_id}})
    else:
        mongo.db.users.update_one({"_id": user["_id"]}, {"$pull": {"wishlist": product_id}})

    updated_user = mongo.db.users.find_one({"_id": user["_id"]}, {"wishlist": 1})
    return jsonify(
        {
            "success": True,
            "wishlist": [str(pid) for pid in updated_user.get("wishlist") or []],
        }
    )
