from typing import Dict, List

import cloudinary.utils
import stripe
from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required

from ..audit import record_audit_log
from ..auth import require_admin_user, require_login
from ..emails import send_order_confirmation_email
from ..errors import error_response
from ..extensions import mongo
from ..helpers import (
    localized,
    normalize_address,
    normalize_multilang,
    normalize_object_id_value,
    parse_iso_date,
    safe_float,
    safe_positive_int,
    serialize_value,
    utcnow,
)
from ..invoicing import (
    append_order_to_period_invoice,
    create_one_time_invoice,
    open_period_invoice,
    record_payment_history,
)
from ..numbering import generate_one_time_invoice_number, generate_order_reference

bp = Blueprint("checkout", __name__, url_prefix="/api")

DEFAULT_FREE_DELIVERY_THRESHOLD = 100.0
PAYMENT_METHODS = ("online", "offline", "periodInvoice")


def get_delivery_settings():
    """Return the single delivery-settings document, creating defaults on first use."""
    settings = mongo.db.delivery_settings.find_one({})
    if settings:
        return settings
    settings = {
        "delivery_methods": [],
        "free_delivery_threshold": DEFAULT_FREE_DELIVERY_THRESHOLD,
        "bank_account_details": "",
        "created_at": utcnow(),
    }
    result = mongo.db.delivery_settings.insert_one(settings)
    settings["_id"] = result.inserted_id
    return settings


def normalize_cart_items(cart_items) -> List[Dict]:
    items: List[Dict] = []
    for entry in cart_items or []:
        if not isinstance(entry, dict):
            continue
        product_id = normalize_object_id_value(entry.get("id") or entry.get("_id") or entry.get("product"))
        quantity = safe_positive_int(entry.get("quantity"), 0)
        if product_id is None or quantity < 1:
            continue
        items.append(
            {
                "product": product_id,
                "quantity": quantity,
                "price": round(safe_float(entry.get("price"), 0.0), 2),
            }
        )
    return items


def calculate_totals(items: List[Dict], delivery_cost: float, threshold: float) -> Dict[str, float]:
    subtotal = round(sum(item["price"] * item["quantity"] for item in items), 2)
    final_delivery_cost = 0.0 if subtotal >= threshold else round(safe_float(delivery_cost), 2)
    return {
        "subtotal": subtotal,
        "delivery_cost": final_delivery_cost,
        "total": round(subtotal + final_delivery_cost, 2),
    }


def notify_customer(order: Dict) -> None:
    success, error = send_order_confirmation_email(order)
    if not success:
        current_app.logger.error(
            "Order confirmation email failed for %s: %s", order.get("order_reference"), error
        )


@bp.route("/delivery", methods=["GET"])
def read_delivery_settings():
    return jsonify(serialize_value(get_delivery_settings()))


@bp.route("/delivery", methods=["POST"])
@jwt_required()
def update_delivery_settings():
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    settings = get_delivery_settings()
    payload = request.get_json(silent=True) or {}
    updates = {}
    if "delivery_methods" in payload:
        methods = payload.get("delivery_methods")
        if not isinstance(methods, list):
            return error_response("delivery_methods must be a list.", 400)
        updates["delivery_methods"] = [
            {
                "cost": round(safe_float(method.get("cost"), 0.0), 2),
                "name": normalize_multilang(method.get("name"), "name", required=False),
            }
            for method in methods
            if isinstance(method, dict)
        ]
    if "free_delivery_threshold" in payload:
        threshold = safe_float(payload.get("free_delivery_threshold"), None)
        if threshold is None or threshold < 0:
            return error_response("free_delivery_threshold must be a non-negative number.", 400)
        updates["free_delivery_threshold"] = threshold
    if "bank_account_details" in payload:
        updates["bank_account_details"] = str(payload.get("bank_account_details") or "")

    updates["updated_at"] = utcnow()
    mongo.db.delivery_settings.update_one({"_id": settings["_id"]}, {"$set": updates})
    record_audit_log(admin_user.get("email"), "Updated delivery settings", {"fields": ",".join(sorted(updates))})
    return jsonify(serialize_value(mongo.db.delivery_settings.find_one({"_id": settings["_id"]})))


@bp.route("/checkout", methods=["POST"])
@jwt_required()
def checkout():
    user, error = require_login()
    if error:
        return error

    payload = request.get_json(silent=True) or {}
    shipping_address = payload.get("shipping_address")
    cart_items = payload.get("cart_items")
    payment_method = payload.get("payment_method")

    missing_fields = {
        "name": not payload.get("name"),
        "email": not payload.get("email"),
        "phone": not payload.get("phone"),
        "shipping_address": not shipping_address,
        "cart_items": not cart_items,
        "delivery_method": payload.get("delivery_method") is None,
        "payment_method": not payment_method,
    }
    if any(missing_fields.values()):
        return error_response("Missing required fields", 400, details=missing_fields)

    if not isinstance(shipping_address, dict) or not (
        str(shipping_address.get("en") or "").strip()
        and str(shipping_address.get("zh-TW") or "").strip()
    ):
        address = shipping_address if isinstance(shipping_address, dict) else {}
        return error_response(
            "Invalid shipping address",
            400,
            details={"missing": {"en": not address.get("en"), "zh-TW": not address.get("zh-TW")}},
        )

    if not isinstance(cart_items, list) or not cart_items:
        return error_response("Invalid cart items", 400)
    items = normalize_cart_items(cart_items)
    if not items:
        return error_response("Invalid cart items", 400)

    if payment_method not in PAYMENT_METHODS:
        return error_response("Invalid payment method", 400)

    settings = get_delivery_settings()
    methods = settings.get("delivery_methods") or []
    try:
        method_index = int(payload.get("delivery_method"))
    except (TypeError, ValueError):
        method_index = -1
    if method_index < 0 or method_index >= len(methods):
        return error_response(
            "Invalid delivery method",
            400,
            details={"delivery_method": payload.get("delivery_method"), "methods_length": len(methods)},
        )

    threshold = safe_float(settings.get("free_delivery_threshold"), DEFAULT_FREE_DELIVERY_THRESHOLD)
    totals = calculate_totals(items, methods[method_index].get("cost"), threshold)

    if payment_method == "periodInvoice" and not (
        user.get("is_period_paid_user") and user.get("payment_period")
    ):
        return error_response("User is not a period-paid user", 400)

    now = utcnow()
    order = {
        "order_reference": generate_order_reference(now),
        "user": user["_id"],
        "name": str(payload.get("name")).strip(),
        "email": str(payload.get("email")).strip().lower(),
        "phone": str(payload.get("phone")).strip(),
        "shipping_address": normalize_address(shipping_address, "shipping_address", required=True),
        "items": items,
        "delivery_method": method_index,
        **totals,
        "payment_method": payment_method,
        "paid": False,
        "created_at": now,
        "updated_at": now,
    }

    response: Dict[str, object] = {"success": True}

    if payment_method == "periodInvoice":
        invoice = open_period_invoice(user, order, now)
        order.update(
            {
                "order_type": "period-order",
                "status": "pending",
                "period_invoice_number": invoice["invoice_number"],
            }
        )
        order["_id"] = mongo.db.orders.insert_one(order).inserted_id
        append_order_to_period_invoice(invoice, order, items)
        record_payment_history(user, invoice)
        response["invoice_number"] = invoice["invoice_number"]
    else:
        order.update(
            {
                "order_type": "onetime-order",
                "status": "pending_payment_verification" if payment_method == "offline" else "pending",
            }
        )
        invoice_extra = {}
        if payment_method == "offline":
            order.update(
                {
                    "payment_proof": payload.get("payment_proof_url"),
                    "payment_reference": payload.get("payment_reference"),
                    "payment_date": parse_iso_date(payload.get("payment_date")),
                }
            )
            invoice_extra = {
                "payment_proof_url": payload.get("payment_proof_url"),
                "payment_reference": payload.get("payment_reference"),
            }
        order["_id"] = mongo.db.orders.insert_one(order).inserted_id
        invoice = create_one_time_invoice(
            order,
            "credit_card" if payment_method == "online" else "offline_payment",
            extra=invoice_extra,
        )
        mongo.db.orders.update_one(
            {"_id": order["_id"]}, {"$set": {"invoice_number": invoice["invoice_number"]}}
        )
        response["invoice_number"] = invoice["invoice_number"]

    current_app.logger.info(
        "Checkout created order %s (%s) for %s", order["order_reference"], payment_method, order["email"]
    )
    notify_customer(order)

    response.update({"order_id": str(order["_id"]), "order_reference": order["order_reference"]})
    return jsonify(response)


@bp.route("/checkout/offline-payment", methods=["POST"])
@jwt_required()
def offline_payment():
    user, error = require_login()
    if error:
        return error

    payload = request.get_json(silent=True) or {}
    required_fields = [
        "name",
        "email",
        "cart_items",
        "payment_proof_url",
        "payment_reference",
        "billing_address",
        "shipping_address",
    ]
    missing = [field for field in required_fields if not payload.get(field)]
    if missing:
        return error_response(f"Missing required fields: {', '.join(missing)}", 400, details=missing)

    items = normalize_cart_items(payload.get("cart_items"))
    if not items:
        return error_response("Invalid cart items", 400)

    subtotal = round(sum(item["price"] * item["quantity"] for item in items), 2)
    delivery_cost = round(safe_float(payload.get("delivery_cost"), 0.0), 2)
    now = utcnow()
    invoice_number = generate_one_time_invoice_number(now)

    order = {
        "order_reference": generate_order_reference(now),
        "user": user["_id"],
        "name": str(payload.get("name")).strip(),
        "email": str(payload.get("email")).strip().lower(),
        "phone": str(payload.get("phone") or "").strip(),
        "items": items,
        "subtotal": subtotal,
        "delivery_method": payload.get("delivery_method"),
        "delivery_cost": delivery_cost,
        "total": round(subtotal + delivery_cost, 2),
        "status": "pending_payment_verification",
        "paid": False,
        "payment_method": "offline",
        "order_type": "onetime-order",
        "payment_proof": payload.get("payment_proof_url"),
        "payment_reference": payload.get("payment_reference"),
        "payment_date": parse_iso_date(payload.get("payment_date")),
        "invoice_number": invoice_number,
        "billing_address": normalize_address(payload.get("billing_address"), "billing_address"),
        "shipping_address": normalize_address(payload.get("shipping_address"), "shipping_address"),
        "created_at": now,
        "updated_at": now,
    }
    order["_id"] = mongo.db.orders.insert_one(order).inserted_id

    create_one_time_invoice(
        order,
        "bank_transfer",
        invoice_number=invoice_number,
        extra={
            "payment_proof_url": order["payment_proof"],
            "payment_reference": order["payment_reference"],
            "payment_date": order["payment_date"],
            "period_start": now,
            "period_end": now,
        },
    )
    current_app.logger.info("Offline payment submitted for order %s", order["order_reference"])

    return jsonify(
        {
            "success": True,
            "order_id": str(order["_id"]),
            "order_reference": order["order_reference"],
            "invoice_number": invoice_number,
        }
    )


def build_stripe_line_items(order: Dict, currency: str) -> List[Dict]:
    product_ids = [item["product"] for item in order.get("items") or []]
    products = {
        product["_id"]: product
        for product in mongo.db.products.find({"_id": {"$in": product_ids}})
    }

    line_items: List[Dict] = []
    for item in order.get("items") or []:
        product = products.get(item["product"]) or {}
        unit_price = safe_float(product.get("price"), safe_float(item.get("price")))
        line_items.append(
            {
                "quantity": item["quantity"],
                "price_data": {
                    "currency": currency,
                    "unit_amount": int(round(unit_price * 100)),
                    "product_data": {
                        "name": localized(
                            product.get("display_names"), "en", product.get("name") or "Product"
                        )
                    },
                },
            }
        )

    delivery_cost = safe_float(order.get("delivery_cost"))
    if delivery_cost > 0:
        line_items.append(
            {
                "quantity": 1,
                "price_data": {
                    "currency": currency,
                    "unit_amount": int(round(delivery_cost * 100)),
                    "product_data": {"name": "Delivery"},
                },
            }
        )
    return line_items


@bp.route("/checkout/online-session", methods=["POST"])
@jwt_required()
def create_online_session():
    user, error = require_login()
    if error:
        return error

    payload = request.get_json(silent=True) or {}
    order_id = normalize_object_id_value(payload.get("order_id"))
    if order_id is None:
        return error_response("Missing order_id", 400)

    config = current_app.config
    secret_key = config.get("STRIPE_SECRET_KEY")
    if not secret_key:
        return error_response("Payment provider is not configured.", 500)

    order = mongo.db.orders.find_one({"_id": order_id, "user": user["_id"]})
    if not order:
        return error_response("Order not found", 404)
    if order.get("payment_method") != "online":
        return error_response("Order is not marked for online payment", 400)

    base_url = (config.get("APP_BASE_URL") or "").rstrip("/")
    if not base_url:
        return error_response("APP_BASE_URL is not configured.", 500)

    order_key = str(order["_id"])
    try:
        session = stripe.checkout.Session.create(
            mode="payment",
            payment_method_types=["card"],
            line_items=build_stripe_line_items(order, config.get("STRIPE_CURRENCY") or "hkd"),
            metadata={"order_id": order_key, "user_email": order.get("email") or ""},
            success_url=f"{base_url}/checkout/success?order_id={order_key}",
            cancel_url=f"{base_url}/checkout?canceled=1&order_id={order_key}",
            api_key=secret_key,
        )
    except stripe.StripeError as exc:
        current_app.logger.error("Stripe session request failed: %s", exc)
        return error_response("Failed to create checkout session", 500)

    mongo.db.orders.update_one(
        {"_id": order["_id"]},
        {"$set": {"stripe_session_id": session.id, "updated_at": utcnow()}},
    )
    return jsonify({"id": session.id, "url": session.url})


@bp.route("/cloudinary/signature", methods=["POST"])
@jwt_required()
def cloudinary_signature():
    _, error = require_login()
    if error:
        return error

    config = current_app.config
    api_secret = config.get("CLOUDINARY_API_SECRET")
    if not api_secret or not config.get("CLOUDINARY_API_KEY"):
        return error_response("Image uploads are not configured.", 500)

    payload = request.get_json(silent=True) or {}
    timestamp = payload.get("timestamp")
    if not timestamp:
        return error_response("timestamp is required.", 400)

    params_to_sign = {"timestamp": timestamp}
    if payload.get("folder"):
        params_to_sign["folder"] = payload["folder"]
    if config.get("CLOUDINARY_UPLOAD_PRESET"):
        params_to_sign["upload_preset"] = config["CLOUDINARY_UPLOAD_PRESET"]

    signature = cloudinary.utils.api_sign_request(params_to_sign, api_secret)
    return jsonify(
        {
            "signature": signature,
            "timestamp": timestamp,
            "api_key": config.get("CLOUDINARY_API_KEY"),
            "cloud_name": config.get("CLOUDINARY_CLOUD_NAME"),
            **{key: value for key, value in params_to_sign.items() if key != "timestamp"},
        }
    )
