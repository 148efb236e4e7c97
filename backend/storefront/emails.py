from datetime import datetime
from typing import Dict, List, Optional, Tuple

import resend
from flask import current_app, render_template

from .extensions import mongo
from .helpers import localized, normalize_email, safe_float, utcnow


def send_transactional_email(payload: Dict[str, object]) -> Tuple[bool, Optional[str]]:
    """Send ``payload`` through Resend with the key from the app config."""
    api_key = (current_app.config.get("RESEND_API_KEY") or "").strip()
    if not api_key:
        return False, "Resend API key is not configured."

    resend.api_key = api_key
    try:
        response = resend.Emails.send(payload)
    except Exception as exc:
        current_app.logger.warning("Resend rejected email to %s: %s", payload.get("to"), exc)
        return False, str(exc)

    if not isinstance(response, dict) or not response.get("id"):
        return False, str(response)
    return True, None


def order_email_lines(order_document: Dict) -> List[Dict]:
    """Order items with English product names and line totals for the receipt."""
    items = order_document.get("items") or []
    product_ids = [item.get("product") for item in items if item.get("product")]
    names = {
        product["_id"]: localized(product.get("display_names"), "en", product.get("name") or "Item")
        for product in mongo.db.products.find(
            {"_id": {"$in": product_ids}}, {"name": 1, "display_names": 1}
        )
    }

    lines: List[Dict] = []
    for item in items:
        quantity = int(safe_float(item.get("quantity"), 1)) or 1
        price = round(safe_float(item.get("price"), 0.0), 2)
        lines.append(
            {
                "name": names.get(item.get("product")) or item.get("name") or "Item",
                "quantity": quantity,
                "price": price,
                "line_total": round(price * quantity, 2),
            }
        )
    return lines


def send_order_confirmation_email(order_document: Dict[str, object]) -> Tuple[bool, Optional[str]]:
    recipient = normalize_email(order_document.get("email"))
    if not recipient:
        return False, "Missing customer email for the order receipt."

    config = current_app.config
    store_name = config.get("STORE_NAME") or "Storefront"
    lines = order_email_lines(order_document)
    order_reference = str(
        order_document.get("order_reference") or order_document.get("_id") or "Order"
    )

    created_at = order_document.get("created_at")
    if not isinstance(created_at, datetime):
        created_at = utcnow()

    html_body = render_template(
        "emails/order_confirmation.html",
        store_name=store_name,
        order_reference=order_reference,
        customer_name=order_document.get("name") or "customer",
        items=lines,
        subtotal=safe_float(order_document.get("subtotal")),
        delivery_cost=safe_float(order_document.get("delivery_cost")),
        total=safe_float(order_document.get("total")),
        shipping_address=localized(order_document.get("shipping_address"), "en"),
        created_at=created_at,
    )
    item_summary = ", ".join(
        f"{line['name']} x{line['quantity']} ({line['price']:.2f})" for line in lines
    )
    text_body = (
        f"Thank you for your order {order_reference} placed on "
        f"{created_at.strftime('%Y-%m-%d %H:%M')}.\n"
        f"Items: {item_summary}.\n"
        f"Total: {safe_float(order_document.get('total')):.2f}.\n\n"
        f"{store_name} Team"
    )

    return send_transactional_email(
        {
            "from": f"{store_name} <{config.get('ORDER_EMAIL_SENDER')}>",
            "to": [recipient],
            "subject": f"{store_name} order confirmation {order_reference}",
            "html": html_body,
            "text": text_body,
        }
    )
