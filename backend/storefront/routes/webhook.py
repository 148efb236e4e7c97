"""Inbound provider callbacks.

Requests carrying a ``Stripe-Signature`` header are payment events and must
verify against the signing secret. Anything else is treated as a delivery
event from the transactional email provider.
"""

import json
from typing import Dict

import stripe
from flask import Blueprint, current_app, jsonify, request

from ..errors import error_response
from ..extensions import mongo
from ..helpers import normalize_email, normalize_object_id_value, utcnow

bp = Blueprint("webhook", __name__, url_prefix="/api")

BOUNCE_EVENTS = {"email.bounced", "email.complained"}


def complete_checkout_session(session: Dict):
    order_id = (session.get("metadata") or {}).get("order_id")
    if not order_id:
        return error_response("No order ID in metadata", 400)

    object_id = normalize_object_id_value(order_id)
    order = mongo.db.orders.find_one({"_id": object_id}) if object_id else None
    if not order:
        return error_response("Order not found", 404)

    for item in order.get("items") or []:
        product = mongo.db.products.find_one({"_id": item.get("product")}, {"stock": 1})
        if product:
            new_stock = max(0, int(product.get("stock") or 0) - int(item.get("quantity") or 0))
            mongo.db.products.update_one(
                {"_id": product["_id"]},
                {"$set": {"stock": new_stock}, "$addToSet": {"purchased_by": order.get("user")}},
            )

    now = utcnow()
    mongo.db.orders.update_one(
        {"_id": order["_id"]},
        {
            "$set": {
                "paid": True,
                "status": "processing",
                "payment_date": now,
                "stripe_session_id": session.get("id") or order.get("stripe_session_id"),
                "updated_at": now,
            }
        },
    )
    if order.get("invoice_number"):
        mongo.db.invoices.update_one(
            {"invoice_number": order["invoice_number"]},
            {"$set": {"status": "paid", "payment_date": now, "updated_at": now}},
        )

    current_app.logger.info("Payment confirmed for order %s", order.get("order_reference"))
    return jsonify({"success": True})


def handle_email_event(event: Dict):
    event_type = event.get("type")
    data = event.get("data")
    if not event_type or not isinstance(data, dict):
        return jsonify({"received": True})

    recipients = data.get("to") or []
    if isinstance(recipients, str):
        recipients = [recipients]
    emails = [normalize_email(address) for address in recipients if address]
    if not emails:
        return jsonify({"received": True})

    now = utcnow()
    updates: Dict[str, object] = {"last_event": {"type": event_type, "received_at": now}}
    if event_type in BOUNCE_EVENTS:
        updates.update({"is_active": False, "bounced_at": now})
    elif event_type == "email.delivered":
        updates["last_email_sent_at"] = now

    result = mongo.db.newsletter.update_many({"email": {"$in": emails}}, {"$set": updates})
    if event_type in BOUNCE_EVENTS and result.modified_count:
        current_app.logger.info(
            "Deactivated %s newsletter subscriber(s) after %s", result.modified_count, event_type
        )
    return jsonify({"received": True, "updated": result.modified_count})


@bp.route("/webhook", methods=["POST"])
def webhook():
    raw_body = request.get_data()
    signature_header = request.headers.get("Stripe-Signature")

    try:
        event = json.loads(raw_body or b"{}")
    except ValueError:
        return error_response("Invalid JSON payload", 400)
    if not isinstance(event, dict):
        return error_response("Invalid JSON payload", 400)

    if signature_header is None:
        return handle_email_event(event)

    config = current_app.config
    secret = config.get("STRIPE_WEBHOOK_SECRET")
    if not secret:
        current_app.logger.error("Stripe webhook received but no signing secret is configured")
        return error_response("Invalid signature", 400)

    try:
        stripe.Webhook.construct_event(
            raw_body,
            signature_header,
            secret,
            tolerance=int(config.get("WEBHOOK_TOLERANCE_SECONDS") or 0),
        )
    except stripe.SignatureVerificationError as exc:
        current_app.logger.warning("Rejected webhook with invalid signature: %s", exc)
        return error_response("Invalid signature", 400)

    if event.get("type") == "checkout.session.completed":
        session = (event.get("data") or {}).get("object") or {}
        return complete_checkout_session(session)

    return jsonify({"received": True})
