from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from ..audit import record_audit_log
from ..auth import ALLOWED_USER_ROLES, default_admin_email, get_user_role, require_admin_user
from ..errors import error_response
from ..extensions import mongo
from ..helpers import isoformat, normalize_email, normalize_object_id_value, parse_bool, utcnow
from ..invoicing import open_period_invoice, record_payment_history

bp = Blueprint("users", __name__, url_prefix="/api/admin")

PAYMENT_PERIODS = ("weekly", "monthly")


def serialize_admin_user(user_document):
    role = get_user_role(user_document)
    return {
        "id": str(user_document.get("_id")),
        "email": user_document.get("email", ""),
        "name": user_document.get("name", ""),
        "phone": user_document.get("phone") or "",
        "role": role,
        "admin": role == "admin",
        "is_period_paid_user": bool(user_document.get("is_period_paid_user")),
        "payment_period": user_document.get("payment_period"),
        "created_at": isoformat(user_document.get("created_at")),
        "last_login_at": isoformat(user_document.get("last_login_at")),
    }


def _find_target_user(user_id: str):
    target_object_id = normalize_object_id_value(user_id)
    if target_object_id is None:
        return None, error_response("Invalid user identifier.", 400)
    user_document = mongo.db.users.find_one({"_id": target_object_id})
    if not user_document:
        return None, error_response("User not found.", 404)
    return user_document, None


@bp.route("/users", methods=["GET"])
@jwt_required()
def list_users():
    _, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    users = [serialize_admin_user(user) for user in mongo.db.users.find().sort("created_at", -1)]
    return jsonify({"users": users})


@bp.route("/users/<user_id>", methods=["PUT"])
@jwt_required()
def update_user(user_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    user_to_update, error = _find_target_user(user_id)
    if error:
        return error

    payload = request.get_json(silent=True) or {}
    updates = {}
    if "role" in payload:
        desired_role = str(payload.get("role") or "").strip().lower()
        if desired_role not in ALLOWED_USER_ROLES:
            return error_response(
                "Role must be one of: " + ", ".join(sorted(ALLOWED_USER_ROLES)) + ".", 400
            )
        updates["role"] = desired_role
        updates["admin"] = desired_role == "admin"
    if "admin" in payload:
        updates["admin"] = parse_bool(payload.get("admin"))
        if updates["admin"]:
            updates["role"] = "admin"
        elif updates.get("role", user_to_update.get("role")) == "admin":
            updates["role"] = "user"

    if not updates:
        return error_response("Nothing to update.", 400)

    target_email = normalize_email(user_to_update.get("email"))
    if target_email == default_admin_email() and not updates.get("admin", True):
        return error_response("The default administrator must remain an admin.", 400)

    mongo.db.users.update_one({"_id": user_to_update["_id"]}, {"$set": updates})
    updated_user = mongo.db.users.find_one({"_id": user_to_update["_id"]})

    record_audit_log(
        admin_user.get("email"),
        "Updated user role",
        {"target_email": target_email, "new_role": get_user_role(updated_user)},
    )
    return jsonify({"message": "User updated.", "user": serialize_admin_user(updated_user)})


@bp.route("/users/<user_id>", methods=["DELETE"])
@jwt_required()
def delete_user(user_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    user_to_delete, error = _find_target_user(user_id)
    if error:
        return error

    target_email = normalize_email(user_to_delete.get("email"))
    if target_email == default_admin_email():
        return error_response("The default administrator cannot be deleted.", 400)

    mongo.db.users.delete_one({"_id": user_to_delete["_id"]})
    record_audit_log(admin_user.get("email"), "Deleted user", {"target_email": target_email})

    display_name = user_to_delete.get("name") or "User"
    return jsonify(
        {
            "message": f"{display_name} has been removed from the directory.",
            "user": {"id": str(user_to_delete["_id"])},
        }
    )


@bp.route("/period-users", methods=["GET"])
@jwt_required()
def list_period_users():
    _, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    users = mongo.db.users.find(
        {}, {"name": 1, "email": 1, "is_period_paid_user": 1, "payment_period": 1, "created_at": 1}
    ).sort("name", 1)
    return jsonify({"users": [serialize_admin_user(user) for user in users]})


@bp.route("/period-users/<user_id>", methods=["PUT"])
@jwt_required()
def update_period_user(user_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    user_document, error = _find_target_user(user_id)
    if error:
        return error

    payload = request.get_json(silent=True) or {}
    updates = {}
    if isinstance(payload.get("is_period_paid_user"), bool):
        updates["is_period_paid_user"] = payload["is_period_paid_user"]
    if "payment_period" in payload:
        payment_period = payload.get("payment_period") or None
        if payment_period is not None and payment_period not in PAYMENT_PERIODS:
            return error_response("Payment period must be weekly or monthly.", 400)
        updates["payment_period"] = payment_period

    if not updates:
        return error_response("Nothing to update.", 400)

    updates["updated_at"] = utcnow()
    mongo.db.users.update_one({"_id": user_document["_id"]}, {"$set": updates})
    updated_user = mongo.db.users.find_one({"_id": user_document["_id"]})

    invoice_number = None
    if updated_user.get("is_period_paid_user") and updated_user.get("payment_period"):
        invoice = open_period_invoice(updated_user)
        record_payment_history(updated_user, invoice)
        invoice_number = invoice["invoice_number"]

    record_audit_log(
        admin_user.get("email"),
        "Updated period billing",
        {
            "target_email": updated_user.get("email"),
            "is_period_paid_user": updated_user.get("is_period_paid_user"),
            "payment_period": updated_user.get("payment_period"),
        },
    )

    response = {"user": serialize_admin_user(mongo.db.users.find_one({"_id": user_document["_id"]}))}
    if invoice_number:
        response["invoice_number"] = invoice_number
    return jsonify(response)
