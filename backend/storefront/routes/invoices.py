from io import BytesIO
from typing import Dict

from flask import Blueprint, current_app, jsonify, request, send_file
from flask_jwt_extended import jwt_required

from ..audit import record_audit_log
from ..auth import require_admin_user, require_login
from ..errors import error_response
from ..extensions import mongo
from ..helpers import parse_pagination, total_pages, utcnow
from ..invoicing import (
    INVOICE_STATUSES,
    cleanup_invalid_invoices,
    serialize_invoice,
)
from ..pdf import render_invoice_pdf
from .orders import fetch_product_summaries

bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


def _filters_from_args(args) -> Dict[str, object]:
    query: Dict[str, object] = {}
    invoice_type = (args.get("type") or "").strip()
    status = (args.get("status") or "").strip()
    if invoice_type and invoice_type != "all":
        query["invoice_type"] = invoice_type
    if status and status != "all":
        query["status"] = status
    return query


def _populated(invoice) -> Dict:
    orders = list(mongo.db.orders.find({"_id": {"$in": invoice.get("orders") or []}}))
    products = fetch_product_summaries(item.get("product") for item in invoice.get("items") or [])
    summaries = {
        str(product_id): {
            "id": str(product_id),
            "name": product.get("name"),
            "display_names": product.get("display_names"),
            "price": product.get("price"),
        }
        for product_id, product in products.items()
    }
    return serialize_invoice(invoice, orders=orders, products=summaries)


def _paginated_invoices(query: Dict, default_limit: int):
    page, limit, skip = parse_pagination(request.args, default_limit=default_limit)
    total = mongo.db.invoices.count_documents(query)
    invoices = mongo.db.invoices.find(query).sort("created_at", -1).skip(skip).limit(limit)
    return jsonify(
        {
            "invoices": [serialize_invoice(invoice) for invoice in invoices],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": total_pages(total, limit),
            },
        }
    )


@bp.route("", methods=["GET"])
@jwt_required()
def list_my_invoices():
    user, error = require_login()
    if error:
        return error

    query = _filters_from_args(request.args)
    query["user"] = user["_id"]
    return _paginated_invoices(query, default_limit=10)


@bp.route("/admin", methods=["GET"])
@jwt_required()
def admin_list_invoices():
    _, admin_error = require_admin_user()
    if admin_error:
        return admin_error
    return _paginated_invoices(_filters_from_args(request.args), default_limit=20)


@bp.route("/admin/<invoice_number>", methods=["GET"])
@jwt_required()
def admin_get_invoice(invoice_number: str):
    _, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    invoice = mongo.db.invoices.find_one({"invoice_number": invoice_number})
    if not invoice:
        return error_response("Invoice not found", 404)
    return jsonify({"invoice": _populated(invoice)})


@bp.route("/status/<invoice_number>", methods=["PUT"])
@jwt_required()
def update_invoice_status(invoice_number: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    payload = request.get_json(silent=True) or {}
    status = str(payload.get("status") or "").strip()
    if status not in INVOICE_STATUSES:
        return error_response("Invalid status", 400)

    invoice = mongo.db.invoices.find_one({"invoice_number": invoice_number})
    if not invoice:
        return error_response("Invoice not found", 404)

    now = utcnow()
    updates = {"status": status, "updated_at": now}
    if status == "paid":
        updates["payment_date"] = now
    mongo.db.invoices.update_one({"_id": invoice["_id"]}, {"$set": updates})

    record_audit_log(
        admin_user.get("email"),
        "Updated invoice status",
        {"invoice_number": invoice_number, "status": status},
    )
    return jsonify({"invoice": serialize_invoice(mongo.db.invoices.find_one({"_id": invoice["_id"]}))})


@bp.route("/cleanup", methods=["POST"])
@jwt_required()
def cleanup_invoices():
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    result = cleanup_invalid_invoices()
    current_app.logger.info(
        "Invoice cleanup removed %s and updated %s invoice(s)",
        result["cleaned_count"],
        result["updated_count"],
    )
    record_audit_log(admin_user.get("email"), "Cleaned up invoices", result)
    return jsonify(
        {
            "success": True,
            "message": (
                f"Cleanup completed: {result['cleaned_count']} invoices deleted, "
                f"{result['updated_count']} invoices updated"
            ),
            **result,
        }
    )


@bp.route("/<invoice_number>", methods=["GET"])
@jwt_required()
def get_my_invoice(invoice_number: str):
    user, error = require_login()
    if error:
        return error

    invoice = mongo.db.invoices.find_one({"invoice_number": invoice_number, "user": user["_id"]})
    if not invoice:
        return error_response("Invoice not found", 404)
    return jsonify({"invoice": _populated(invoice)})


@bp.route("/<invoice_number>/download", methods=["GET"])
@jwt_required()
def download_invoice(invoice_number: str):
    user, error = require_login()
    if error:
        return error

    invoice = mongo.db.invoices.find_one({"invoice_number": invoice_number, "user": user["_id"]})
    if not invoice:
        return error_response("Invoice not found", 404)

    products = fetch_product_summaries(item.get("product") for item in invoice.get("items") or [])
    document = render_invoice_pdf(invoice, products, current_app.config.get("STORE_NAME"))
    return send_file(
        BytesIO(document),
        mimetype="application/pdf",
        as_attachment=True,
        download_name=f"{invoice_number}.pdf",
    )
