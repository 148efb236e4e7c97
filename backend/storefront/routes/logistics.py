from typing import Dict, List

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required

from ..audit import record_audit_log
from ..auth import require_admin_user
from ..errors import ValidationError, error_response
from ..extensions import mongo
from ..helpers import (
    isoformat,
    normalize_object_id_value,
    parse_iso_date,
    safe_float,
    serialize_value,
    utcnow,
)

bp = Blueprint("logistics", __name__, url_prefix="/api/logistics")

BODY_TYPES = ("Van", "Truck", "Lorry", "Motorcycle")
LOCATIONS = ("Hong Kong", "Kowloon", "New Territories")
VEHICLE_STATUSES = ("Available", "On Delivery", "Maintenance", "Out of Service")
DELIVERY_STATUSES = ("Pending", "In Transit", "Delivered", "Failed")
ORDER_STATUS_FOR_DELIVERY = {
    "Pending": "processing",
    "In Transit": "processing",
    "Delivered": "delivered",
    "Failed": "cancelled",
}
ACTIVE_DELIVERY_STATUSES = ("Pending", "In Transit")

REQUIRED_TEXT_FIELDS = ("registration_no", "owner", "make", "model", "chassis_no")
REQUIRED_NUMERIC_FIELDS = ("make_year", "weight", "cylinder_capacity")
REQUIRED_DRIVER_FIELDS = ("name", "license_no", "contact_no")


def normalize_vehicle(payload: Dict, *, partial: bool = False) -> Dict:
    """Validate vehicle fields; ``partial`` only checks what ``payload`` carries."""
    vehicle: Dict[str, object] = {}
    missing: List[str] = []

    for field in REQUIRED_TEXT_FIELDS:
        if partial and field not in payload:
            continue
        value = str(payload.get(field) or "").strip()
        if not value:
            missing.append(field)
        vehicle[field] = value

    for field in REQUIRED_NUMERIC_FIELDS:
        if partial and field not in payload:
            continue
        value = safe_float(payload.get(field), None)
        if value is None or value < 0:
            missing.append(field)
        vehicle[field] = int(value) if field == "make_year" and value is not None else value

    if not partial or "driver" in payload:
        driver = payload.get("driver") if isinstance(payload.get("driver"), dict) else {}
        normalized_driver = {key: str(driver.get(key) or "").strip() for key in REQUIRED_DRIVER_FIELDS}
        normalized_driver["email"] = str(driver.get("email") or "").strip().lower()
        missing.extend(f"driver.{key}" for key in REQUIRED_DRIVER_FIELDS if not normalized_driver[key])
        vehicle["driver"] = normalized_driver

    if missing:
        raise ValidationError("Missing required vehicle fields", {"missing": missing})

    enum_fields = (
        ("body_type", BODY_TYPES, True),
        ("assigned_location", LOCATIONS, True),
        ("status", VEHICLE_STATUSES, False),
    )
    for field, allowed, required in enum_fields:
        if partial and field not in payload:
            continue
        value = payload.get(field)
        if value is None and not required:
            continue
        if value not in allowed:
            raise ValidationError(f"Invalid {field}", {"field": field, "allowed": list(allowed)})
        vehicle[field] = value

    if "assigned_date" in payload:
        vehicle["assigned_date"] = parse_iso_date(payload.get("assigned_date"))
    return vehicle


def _duplicate_check(vehicle: Dict, exclude_id=None):
    for field in ("registration_no", "chassis_no"):
        if field not in vehicle:
            continue
        query: Dict[str, object] = {field: vehicle[field]}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        if mongo.db.logistics.find_one(query, {"_id": 1}):
            return error_response(f"A vehicle with this {field} already exists.", 400)
    return None


def serialize_vehicle(vehicle, orders=None) -> Dict:
    orders = orders or {}
    serialized = serialize_value(vehicle)
    for raw, assignment in zip(vehicle.get("assigned_orders") or [], serialized.get("assigned_orders") or []):
        order = orders.get(raw.get("order_id"))
        if order:
            assignment["order"] = {
                "id": str(order["_id"]),
                "status": order.get("status"),
                "total": order.get("total"),
                "created_at": isoformat(order.get("created_at")),
            }
    return serialized


def _order_summaries(vehicles) -> Dict:
    order_ids = [
        assignment.get("order_id")
        for vehicle in vehicles
        for assignment in vehicle.get("assigned_orders") or []
    ]
    if not order_ids:
        return {}
    return {
        order["_id"]: order
        for order in mongo.db.orders.find(
            {"_id": {"$in": order_ids}}, {"status": 1, "total": 1, "created_at": 1}
        )
    }


def _fetch_vehicle(vehicle_id):
    object_id = normalize_object_id_value(vehicle_id)
    if object_id is None:
        return None
    return mongo.db.logistics.find_one({"_id": object_id})


def _update_vehicle(vehicle_id, payload: Dict, admin_user):
    vehicle = _fetch_vehicle(vehicle_id)
    if not vehicle:
        return error_response("Vehicle not found", 404)

    updates = normalize_vehicle(payload, partial=True)
    duplicate = _duplicate_check(updates, exclude_id=vehicle["_id"])
    if duplicate:
        return duplicate
    if not updates:
        return error_response("Nothing to update.", 400)

    updates["updated_at"] = utcnow()
    mongo.db.logistics.update_one({"_id": vehicle["_id"]}, {"$set": updates})
    record_audit_log(
        admin_user.get("email"),
        "Updated vehicle",
        {"registration_no": vehicle.get("registration_no")},
    )
    return jsonify({"vehicle": serialize_vehicle(mongo.db.logistics.find_one({"_id": vehicle["_id"]}))})


@bp.route("", methods=["GET"])
@jwt_required()
def list_vehicles():
    _, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    query = {}
    for arg, field in (("location", "assigned_location"), ("status", "status"), ("body_type", "body_type")):
        value = (request.args.get(arg) or "").strip()
        if value:
            query[field] = value

    vehicles = list(mongo.db.logistics.find(query).sort("created_at", -1))
    orders = _order_summaries(vehicles)
    return jsonify({"vehicles": [serialize_vehicle(vehicle, orders) for vehicle in vehicles]})


@bp.route("", methods=["POST"])
@jwt_required()
def create_vehicle():
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    payload = request.get_json(silent=True) or {}
    vehicle = normalize_vehicle(payload)
    duplicate = _duplicate_check(vehicle)
    if duplicate:
        return duplicate

    now = utcnow()
    vehicle.setdefault("status", "Available")
    vehicle.setdefault("assigned_date", now)
    vehicle.update(
        {"assigned_orders": [], "maintenance_records": [], "created_at": now, "updated_at": now}
    )
    vehicle["_id"] = mongo.db.logistics.insert_one(vehicle).inserted_id

    record_audit_log(
        admin_user.get("email"), "Created vehicle", {"registration_no": vehicle["registration_no"]}
    )
    return jsonify({"vehicle": serialize_vehicle(vehicle)}), 201


@bp.route("", methods=["PUT"])
@jwt_required()
def update_vehicle_from_body():
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    payload = dict(request.get_json(silent=True) or {})
    vehicle_id = payload.pop("id", None)
    if not vehicle_id:
        return error_response("Vehicle id is required.", 400)
    return _update_vehicle(vehicle_id, payload, admin_user)


@bp.route("/assign", methods=["GET"])
@jwt_required()
def get_assignment():
    _, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    order_id = normalize_object_id_value(request.args.get("order_id"))
    if order_id is None:
        return error_response("Order ID is required", 400)

    vehicle = mongo.db.logistics.find_one({"assigned_orders.order_id": order_id})
    return jsonify({"vehicle": serialize_vehicle(vehicle) if vehicle else None})


@bp.route("/assign", methods=["POST"])
@jwt_required()
def assign_order():
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    payload = request.get_json(silent=True) or {}
    vehicle_id = normalize_object_id_value(payload.get("vehicle_id"))
    order_id = normalize_object_id_value(payload.get("order_id"))
    scheduled_date = parse_iso_date(payload.get("scheduled_delivery_date"))
    if vehicle_id is None or order_id is None or scheduled_date is None:
        return error_response("vehicle_id, order_id and scheduled_delivery_date are required", 400)

    vehicle = mongo.db.logistics.find_one({"_id": vehicle_id})
    if not vehicle:
        return error_response("Vehicle not found", 404)
    if vehicle.get("status") != "Available":
        return error_response("Vehicle is not available", 400)

    order = mongo.db.orders.find_one({"_id": order_id})
    if not order:
        return error_response("Order not found", 404)
    if mongo.db.logistics.find_one({"assigned_orders.order_id": order_id}, {"_id": 1}):
        return error_response("Order is already assigned to a vehicle", 400)

    now = utcnow()
    assignment = {
        "order_id": order_id,
        "assigned_at": now,
        "scheduled_delivery_date": scheduled_date,
        "status": "Pending",
        "delivery_notes": str(payload.get("delivery_notes") or ""),
    }
    mongo.db.logistics.update_one(
        {"_id": vehicle_id},
        {"$push": {"assigned_orders": assignment}, "$set": {"status": "On Delivery", "updated_at": now}},
    )
    mongo.db.orders.update_one(
        {"_id": order_id}, {"$set": {"status": "processing", "updated_at": now}}
    )

    current_app.logger.info(
        "Assigned order %s to vehicle %s", order.get("order_reference"), vehicle.get("registration_no")
    )
    record_audit_log(
        admin_user.get("email"),
        "Assigned order to vehicle",
        {"order_reference": order.get("order_reference"), "registration_no": vehicle.get("registration_no")},
    )
    return jsonify({"vehicle": serialize_vehicle(mongo.db.logistics.find_one({"_id": vehicle_id}))})


@bp.route("/assign", methods=["PUT"])
@jwt_required()
def update_assignment():
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    payload = request.get_json(silent=True) or {}
    vehicle_id = normalize_object_id_value(payload.get("vehicle_id"))
    order_id = normalize_object_id_value(payload.get("order_id"))
    status = payload.get("status")
    if vehicle_id is None or order_id is None:
        return error_response("vehicle_id and order_id are required", 400)
    if status not in DELIVERY_STATUSES:
        return error_response("Invalid delivery status", 400)

    vehicle = mongo.db.logistics.find_one({"_id": vehicle_id, "assigned_orders.order_id": order_id})
    if not vehicle:
        return error_response("Vehicle or assignment not found", 404)

    now = utcnow()
    vehicle_updates: Dict[str, object] = {
        "assigned_orders.$.status": status,
        "updated_at": now,
    }
    if "delivery_notes" in payload:
        vehicle_updates["assigned_orders.$.delivery_notes"] = str(payload.get("delivery_notes") or "")
    if status in ("Delivered", "Failed"):
        vehicle_updates["status"] = "Available"

    mongo.db.logistics.update_one(
        {"_id": vehicle_id, "assigned_orders.order_id": order_id}, {"$set": vehicle_updates}
    )
    order_status = ORDER_STATUS_FOR_DELIVERY[status]
    mongo.db.orders.update_one(
        {"_id": order_id}, {"$set": {"status": order_status, "updated_at": now}}
    )

    current_app.logger.info(
        "Delivery of order %s on vehicle %s is now %s", order_id, vehicle.get("registration_no"), status
    )
    record_audit_log(
        admin_user.get("email"),
        "Updated delivery status",
        {"order_id": str(order_id), "status": status, "order_status": order_status},
    )
    return jsonify(
        {
            "vehicle": serialize_vehicle(mongo.db.logistics.find_one({"_id": vehicle_id})),
            "order_status": order_status,
        }
    )


@bp.route("/<vehicle_id>", methods=["GET"])
@jwt_required()
def get_vehicle(vehicle_id: str):
    _, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    vehicle = _fetch_vehicle(vehicle_id)
    if not vehicle:
        return error_response("Vehicle not found", 404)
    return jsonify({"vehicle": serialize_vehicle(vehicle, _order_summaries([vehicle]))})


@bp.route("/<vehicle_id>", methods=["PUT"])
@jwt_required()
def update_vehicle(vehicle_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error
    return _update_vehicle(vehicle_id, request.get_json(silent=True) or {}, admin_user)


@bp.route("/<vehicle_id>", methods=["DELETE"])
@jwt_required()
def delete_vehicle(vehicle_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    vehicle = _fetch_vehicle(vehicle_id)
    if not vehicle:
        return error_response("Vehicle not found", 404)

    in_flight = [
        assignment
        for assignment in vehicle.get("assigned_orders") or []
        if assignment.get("status") in ACTIVE_DELIVERY_STATUSES
    ]
    if in_flight:
        return error_response("Vehicle still has deliveries in progress", 400)

    mongo.db.logistics.delete_one({"_id": vehicle["_id"]})
    record_audit_log(
        admin_user.get("email"), "Deleted vehicle", {"registration_no": vehicle.get("registration_no")}
    )
    return jsonify({"message": "Vehicle deleted.", "vehicle": {"id": vehicle_id}})


@bp.route("/<vehicle_id>/maintenance", methods=["POST"])
@jwt_required()
def add_maintenance_record(vehicle_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    payload = request.get_json(silent=True) or {}
    record_date = parse_iso_date(payload.get("date"))
    description = str(payload.get("description") or "").strip()
    cost = safe_float(payload.get("cost"), None)
    if record_date is None or not description or cost is None:
        return error_response("date, description and cost are required", 400)

    vehicle = _fetch_vehicle(vehicle_id)
    if not vehicle:
        return error_response("Vehicle not found", 404)

    record = {
        "date": record_date,
        "description": description,
        "cost": round(cost, 2),
        "next_maintenance_date": parse_iso_date(payload.get("next_maintenance_date")),
    }
    mongo.db.logistics.update_one(
        {"_id": vehicle["_id"]},
        {"$push": {"maintenance_records": record}, "$set": {"updated_at": utcnow()}},
    )
    record_audit_log(
        admin_user.get("email"),
        "Added maintenance record",
        {"registration_no": vehicle.get("registration_no"), "cost": record["cost"]},
    )
    return jsonify({"vehicle": serialize_vehicle(mongo.db.logistics.find_one({"_id": vehicle["_id"]}))}), 201
