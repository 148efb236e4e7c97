import calendar
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from flask import current_app

from .errors import ValidationError
from .extensions import mongo
from .helpers import isoformat, normalize_object_id_value, safe_float, serialize_value, utcnow
from .numbering import (
    generate_one_time_invoice_number,
    generate_period_invoice_number,
    get_current_period_number,
)

INVOICE_STATUSES = ("pending", "paid", "overdue")
INVOICE_TYPES = ("one-time", "period")
INVOICE_PAYMENT_METHODS = ("credit_card", "bank_transfer", "cash", "offline_payment")


def validate_invoice(invoice: Dict) -> Dict:
    """Check the stored-invoice invariants and return ``invoice`` unchanged."""
    if safe_float(invoice.get("amount"), -1) < 0:
        raise ValidationError("Invoice amount cannot be negative.")

    period_start = invoice.get("period_start")
    period_end = invoice.get("period_end")
    if isinstance(period_start, datetime) and isinstance(period_end, datetime):
        if period_end < period_start:
            raise ValidationError("Invoice period end must not precede its start.")

    for item in invoice.get("items") or []:
        if int(safe_float(item.get("quantity"), 0)) < 1:
            raise ValidationError("Invoice item quantity must be at least 1.")
        if safe_float(item.get("price"), -1) < 0:
            raise ValidationError("Invoice item price cannot be negative.")

    if invoice.get("status") and invoice["status"] not in INVOICE_STATUSES:
        raise ValidationError("Invalid invoice status.")
    if invoice.get("payment_method") and invoice["payment_method"] not in INVOICE_PAYMENT_METHODS:
        raise ValidationError("Invalid invoice payment method.")
    return invoice


def insert_invoice(invoice: Dict):
    now = utcnow()
    invoice.setdefault("created_at", now)
    invoice.setdefault("updated_at", now)
    validate_invoice(invoice)
    result = mongo.db.invoices.insert_one(invoice)
    invoice["_id"] = result.inserted_id
    return invoice


def invoice_items_from_cart(cart_items: List[Dict]) -> List[Dict]:
    items: List[Dict] = []
    for entry in cart_items or []:
        product_id = normalize_object_id_value(entry.get("product") or entry.get("id"))
        items.append(
            {
                "product": product_id,
                "quantity": int(safe_float(entry.get("quantity"), 1)),
                "price": round(safe_float(entry.get("price"), 0.0), 2),
            }
        )
    return items


def create_one_time_invoice(
    order: Dict,
    payment_method: str,
    *,
    invoice_number: Optional[str] = None,
    extra: Optional[Dict] = None,
):
    invoice = {
        "user": order.get("user"),
        "invoice_number": invoice_number or generate_one_time_invoice_number(),
        "name": order.get("name"),
        "email": order.get("email"),
        "phone": order.get("phone"),
        "invoice_type": "one-time",
        "orders": [order["_id"]],
        "amount": round(safe_float(order.get("total"), 0.0), 2),
        "items": [
            {
                "product": item.get("product"),
                "quantity": item.get("quantity"),
                "price": item.get("price"),
            }
            for item in order.get("items") or []
        ],
        "status": "pending",
        "payment_method": payment_method,
        "billing_address": order.get("billing_address") or order.get("shipping_address"),
        "shipping_address": order.get("shipping_address"),
    }
    if extra:
        invoice.update(extra)
    return insert_invoice(invoice)


def compute_period_window(user_document, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Billing window a period-paid user's order falls into.

    Weekly windows run from today 00:00 for seven days. Monthly windows reuse
    a pending period invoice whose window contains ``now``, otherwise span the
    calendar month.
    """
    now = now or utcnow()
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    end_of_day = now.replace(hour=23, minute=59, second=59, microsecond=999000)
    payment_period = user_document.get("payment_period")

    if payment_period == "weekly":
        return start_of_day, end_of_day + timedelta(days=6)

    if payment_period == "monthly":
        existing = mongo.db.invoices.find_one(
            {
                "user": user_document["_id"],
                "invoice_type": "period",
                "status": "pending",
                "period_start": {"$lte": now},
                "period_end": {"$gte": now},
            },
            sort=[("period_end", -1)],
        )
        if existing and existing.get("period_start") and existing.get("period_end"):
            return existing["period_start"], existing["period_end"]
        last_day = calendar.monthrange(now.year, now.month)[1]
        return start_of_day.replace(day=1), end_of_day.replace(day=last_day)

    raise ValidationError("User has no billing period configured.")


def find_open_period_invoice(user_id, now: datetime):
    return mongo.db.invoices.find_one(
        {
            "user": user_id,
            "invoice_type": "period",
            "status": "pending",
            "period_start": {"$lte": now},
            "period_end": {"$gte": now},
        }
    )


def open_period_invoice(user_document, details: Optional[Dict] = None, now: Optional[datetime] = None):
    """Return the pending period invoice covering ``now``, creating it if needed."""
    now = now or utcnow()
    invoice = find_open_period_invoice(user_document["_id"], now)
    if invoice:
        return invoice

    period_start, period_end = compute_period_window(user_document, now)

    details = details or {}
    payment_period = user_document.get("payment_period")
    period_number = get_current_period_number(payment_period, period_start)
    invoice = {
        "user": user_document["_id"],
        "invoice_number": generate_period_invoice_number(payment_period, period_number, now),
        "name": details.get("name") or user_document.get("name") or user_document.get("email"),
        "email": details.get("email") or user_document.get("email"),
        "phone": details.get("phone") or user_document.get("phone"),
        "invoice_type": "period",
        "period_start": period_start,
        "period_end": period_end,
        "amount": 0.0,
        "items": [],
        "orders": [],
        "status": "pending",
        "shipping_address": details.get("shipping_address"),
        "billing_address": details.get("shipping_address"),
    }
    insert_invoice(invoice)
    current_app.logger.info(
        "Opened period invoice %s for %s", invoice["invoice_number"], invoice["email"]
    )
    return invoice


def record_payment_history(user_document, invoice) -> bool:
    """Add a payment-history entry for the invoice window unless one already exists."""
    period_start = invoice.get("period_start")
    period_end = invoice.get("period_end")
    for entry in user_document.get("payment_history") or []:
        if entry.get("period_start") == period_start and entry.get("period_end") == period_end:
            return False
    mongo.db.users.update_one(
        {"_id": user_document["_id"]},
        {
            "$push": {
                "payment_history": {
                    "period_start": period_start,
                    "period_end": period_end,
                    "amount": round(safe_float(invoice.get("amount"), 0.0), 2),
                    "status": "pending",
                    "invoice": invoice["_id"],
                }
            }
        },
    )
    return True


def append_order_to_period_invoice(invoice, order: Dict, cart_items: List[Dict]):
    items = invoice_items_from_cart(cart_items)
    for item in items:
        if item["quantity"] < 1 or item["price"] < 0:
            raise ValidationError("Invoice items need a positive quantity and a price.")
    new_amount = round(safe_float(invoice.get("amount"), 0.0) + safe_float(order.get("total"), 0.0), 2)
    mongo.db.invoices.update_one(
        {"_id": invoice["_id"]},
        {
            "$push": {"orders": order["_id"], "items": {"$each": items}},
            "$set": {"amount": new_amount, "updated_at": utcnow()},
        },
    )
    invoice["amount"] = new_amount
    return invoice


def _strip_order_items(invoice_items: List[Dict], order_items: List[Dict]) -> List[Dict]:
    remaining = list(invoice_items or [])
    for order_item in order_items or []:
        for index, candidate in enumerate(remaining):
            if (
                candidate.get("product") == order_item.get("product")
                and candidate.get("quantity") == order_item.get("quantity")
            ):
                del remaining[index]
                break
    return remaining


def remove_order_from_invoices(order: Dict) -> Dict[str, int]:
    removed = 0
    updated = 0
    order_total = safe_float(order.get("total"), 0.0)
    for invoice in list(mongo.db.invoices.find({"orders": order["_id"]})):
        remaining_orders = [oid for oid in invoice.get("orders") or [] if oid != order["_id"]]
        if invoice.get("invoice_type") == "period" and not remaining_orders:
            mongo.db.invoices.delete_one({"_id": invoice["_id"]})
            removed += 1
            continue
        new_amount = max(round(safe_float(invoice.get("amount"), 0.0) - order_total, 2), 0.0)
        mongo.db.invoices.update_one(
            {"_id": invoice["_id"]},
            {
                "$set": {
                    "orders": remaining_orders,
                    "items": _strip_order_items(invoice.get("items"), order.get("items")),
                    "amount": new_amount,
                    "updated_at": utcnow(),
                }
            },
        )
        updated += 1
    return {"removed": removed, "updated": updated}


def cleanup_invalid_invoices() -> Dict[str, int]:
    """Drop period invoices with no orders and rebuild ones with dangling order ids."""
    cleaned_count = 0
    updated_count = 0
    for invoice in list(mongo.db.invoices.find({})):
        order_ids = invoice.get("orders") or []
        if invoice.get("invoice_type") == "period" and not order_ids:
            mongo.db.invoices.delete_one({"_id": invoice["_id"]})
            cleaned_count += 1
            continue

        existing_orders = list(mongo.db.orders.find({"_id": {"$in": order_ids}})) if order_ids else []
        if len(existing_orders) == len(order_ids):
            continue

        if invoice.get("invoice_type") == "period" and not existing_orders:
            mongo.db.invoices.delete_one({"_id": invoice["_id"]})
            cleaned_count += 1
            continue

        items: List[Dict] = []
        for order in existing_orders:
            items.extend(
                {
                    "product": item.get("product"),
                    "quantity": item.get("quantity"),
                    "price": item.get("price"),
                }
                for item in order.get("items") or []
            )
        mongo.db.invoices.update_one(
            {"_id": invoice["_id"]},
            {
                "$set": {
                    "orders": [order["_id"] for order in existing_orders],
                    "items": items,
                    "amount": round(
                        sum(safe_float(order.get("total"), 0.0) for order in existing_orders), 2
                    ),
                    "updated_at": utcnow(),
                }
            },
        )
        updated_count += 1
    return {"cleaned_count": cleaned_count, "updated_count": updated_count}


def serialize_invoice(invoice, orders=None, products=None):
    if not invoice:
        return {}
    serialized = serialize_value(invoice)
    serialized["period_start"] = isoformat(invoice.get("period_start"))
    serialized["period_end"] = isoformat(invoice.get("period_end"))
    serialized["amount"] = round(safe_float(invoice.get("amount"), 0.0), 2)
    if orders is not None:
        serialized["orders"] = [serialize_value(order) for order in orders]
    if products is not None:
        for item in serialized.get("items") or []:
            product = products.get(item.get("product"))
            if product:
                item["product"] = product
    return serialized
