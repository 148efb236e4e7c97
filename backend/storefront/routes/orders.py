from io import BytesIO
from typing import Dict

from flask import Blueprint, current_app, jsonify, request, send_file
from flask_jwt_extended import jwt_required

from ..audit import record_audit_log
from ..auth import is_admin, require_admin_user, require_login
from ..errors import error_response
from ..extensions import mongo
from ..helpers import (
    normalize_object_id_value,
    parse_pagination,
    safe_float,
    serialize_value,
    total_pages,
    utcnow,
)
from ..invoicing import remove_order_from_invoices
from ..pdf import render_order_pdf

bp = Blueprint("orders", __name__, url_prefix="/api")

ORDER_STATUSES = (
    "pending",
    "pending_payment_verification",
    "processing",
    "shipped",
    "delivered",
    "cancelled",
)


def fetch_product_summaries(product_ids) -> Dict:
    ids = [product_id for product_id in product_ids if product_id is not None]
    if not ids:
        return {}
    return {
        product["_id"]: product
        for product in mongo.db.products.find(
            {"_id": {"$in": list(set(ids))}},
            {"name": 1, "display_names": 1, "images": 1, "price": 1, "slug": 1},
        )
    }


def serialize_order(order, products=None) -> Dict:
    products = products or {}
    serialized = serialize_value(order)
    for raw_item, item in zip(order.get("items") or [], serialized.get("items") or []):
        product = products.get(raw_item.get("product"))
        if product:
            item["product"] = serialize_value(product)
    return serialized


def _owned_order(order_id: str, user):
    object_id = normalize_object_id_value(order_id)
    order = mongo.db.orders.find_one({"_id": object_id}) if object_id else None
    if not order:
        return None, error_response("Order not found", 404)
    if order.get("user") != user["_id"] and not is_admin(user):
        return None, error_response("Order not found", 404)
    return order, None


def backfill_order_details(order: Dict) -> Dict:
    """Fill period invoice data, delivery method name and missing totals."""
    if order.get("order_type") == "period-order" and not (
        order.get("period_invoice_number") and order.get("period_start") and order.get("period_end")
    ):
        invoice = mongo.db.invoices.find_one({"orders": order["_id"], "invoice_type": "period"})
        if invoice:
            updates = {}
            if not order.get("period_invoice_number"):
                updates["period_invoice_number"] = invoice.get("invoice_number")
            if not order.get("period_start"):
                updates["period_start"] = invoice.get("period_start")
            if not order.get("period_end"):
                updates["period_end"] = invoice.get("period_end")
            if updates:
                mongo.db.orders.update_one({"_id": order["_id"]}, {"$set": updates})
                order.update(updates)

    if not order.get("subtotal") or not order.get("total"):
        subtotal = sum(
            safe_float(item.get("price")) * safe_float(item.get("quantity"))
            for item in order.get("items") or []
        )
        order["subtotal"] = round(subtotal, 2)
        order["delivery_cost"] = safe_float(order.get("delivery_cost"))
        order["total"] = round(subtotal + order["delivery_cost"], 2)

    settings = mongo.db.delivery_settings.find_one({}) or {}
    methods = settings.get("delivery_methods") or []
    method_index = order.get("delivery_method")
    if isinstance(method_index, int) and 0 <= method_index < len(methods):
        order["delivery_method_name"] = methods[method_index].get("name")
    return order


@bp.route("/orders", methods=["GET"])
@jwt_required()
def list_my_orders():
    user, error = require_login()
    if error:
        return error

    _, limit, skip = parse_pagination(request.args, default_limit=5)
    query = {"user": user["_id"]}
    orders = list(mongo.db.orders.find(query).sort("created_at", -1).skip(skip).limit(limit))
    total_orders = mongo.db.orders.count_documents(query)

    products = fetch_product_summaries(
        item.get("product") for order in orders for item in order.get("items") or []
    )
    return jsonify(
        {
            "orders": [serialize_order(order, products) for order in orders],
            "has_more": total_orders > skip + len(orders),
            "total_orders": total_orders,
        }
    )


@bp.route("/orders", methods=["PUT"])
@jwt_required()
def confirm_delivery():
    user, error = require_login()
    if error:
        return error

    payload = request.get_json(silent=True) or {}
    object_id = normalize_object_id_value(payload.get("order_id"))
    order = mongo.db.orders.find_one({"_id": object_id, "user": user["_id"]}) if object_id else None
    if not order:
        return error_response("Order not found", 404)

    mongo.db.orders.update_one(
        {"_id": order["_id"]}, {"$set": {"status": "delivered", "updated_at": utcnow()}}
    )
    return jsonify({"success": True, "order": {"id": str(order["_id"]), "status": "delivered"}})


@bp.route("/orders/<order_id>", methods=["GET"])
@jwt_required()
def get_order(order_id: str):
    user, error = require_login()
    if error:
        return error

    order, error = _owned_order(order_id, user)
    if error:
        return error

    backfill_order_details(order)
    products = fetch_product_summaries(item.get("product") for item in order.get("items") or [])
    return jsonify({"order": serialize_order(order, products)})


@bp.route("/orders/<order_id>/print", methods=["GET"])
@jwt_required()
def print_order(order_id: str):
    user, error = require_login()
    if error:
        return error

    order, error = _owned_order(order_id, user)
    if error:
        return error

    products = fetch_product_summaries(item.get("product") for item in order.get("items") or [])
    document = render_order_pdf(order, products, current_app.config.get("STORE_NAME"))
    filename = f"{order.get('order_reference') or order['_id']}.pdf"
    return send_file(
        BytesIO(document), mimetype="application/pdf", as_attachment=True, download_name=filename
    )


@bp.route("/admin/orders", methods=["GET"])
@jwt_required()
def admin_list_orders():
    _, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    page, limit, skip = parse_pagination(request.args, default_limit=20)
    query = {}
    status = (request.args.get("status") or "").strip()
    if status and status != "all":
        query["status"] = status

    total = mongo.db.orders.count_documents(query)
    orders = list(mongo.db.orders.find(query).sort("created_at", -1).skip(skip).limit(limit))
    return jsonify(
        {
            "orders": [serialize_order(order) for order in orders],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": total_pages(total, limit),
            },
        }
    )


@bp.route("/admin/orders/<order_id>", methods=["GET"])
@jwt_required()
def admin_get_order(order_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    order, error = _owned_order(order_id, admin_user)
    if error:
        return error
    backfill_order_details(order)
    products = fetch_product_summaries(item.get("product") for item in order.get("items") or [])
    return jsonify({"order": serialize_order(order, products)})


@bp.route("/admin/orders/<order_id>", methods=["PUT"])
@jwt_required()
def admin_update_order(order_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    order, error = _owned_order(order_id, admin_user)
    if error:
        return error

    payload = request.get_json(silent=True) or {}
    status = str(payload.get("status") or "").strip()
    if status not in ORDER_STATUSES:
        return error_response("Invalid order status", 400)

    updates = {"status": status, "updated_at": utcnow()}
    if "paid" in payload:
        updates["paid"] = bool(payload.get("paid"))
    mongo.db.orders.update_one({"_id": order["_id"]}, {"$set": updates})
    record_audit_log(
        admin_user.get("email"),
        "Updated order status",
        {"order_reference": order.get("order_reference"), "status": status},
    )
    updated = mongo.db.orders.find_one({"_id": order["_id"]})
    return jsonify({"success": True, "order": serialize_order(updated)})


@bp.route("/admin/orders/<order_id>", methods=["DELETE"])
@jwt_required()
def admin_delete_order(order_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    order, error = _owned_order(order_id, admin_user)
    if error:
        return error

    invoice_changes = remove_order_from_invoices(order)
    mongo.db.orders.delete_one({"_id": order["_id"]})
    record_audit_log(
        admin_user.get("email"),
        "Deleted order",
        {"order_reference": order.get("order_reference"), **invoice_changes},
    )
    return jsonify({"success": True, "invoices": invoice_changes})
