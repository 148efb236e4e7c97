import re
from datetime import datetime
from typing import Dict

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from ..audit import record_audit_log, serialize_audit_log
from ..auth import require_admin_user
from ..extensions import mongo
from ..helpers import parse_iso_date, parse_pagination, total_pages

bp = Blueprint("audit_logs", __name__, url_prefix="/api/admin")


def _date_filter(start_param, end_param) -> Dict[str, object]:
    start_date = parse_iso_date(start_param)
    end_date = parse_iso_date(end_param, end_of_day=True)
    if not (start_date or end_date):
        return {}
    created_filter: Dict[str, datetime] = {}
    if start_date:
        created_filter["$gte"] = start_date
    if end_date:
        created_filter["$lt"] = end_date
    return {"created_at": created_filter}


@bp.route("/logs", methods=["GET"])
@jwt_required()
def admin_list_logs():
    _, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    search_term = (request.args.get("search") or "").strip()
    page, limit, skip = parse_pagination(request.args, default_limit=50, max_limit=200)

    query: Dict[str, object] = _date_filter(
        request.args.get("start") or request.args.get("from"),
        request.args.get("end") or request.args.get("to"),
    )
    if search_term:
        regex = re.compile(re.escape(search_term), re.IGNORECASE)
        query["$or"] = [
            {"user_email": regex},
            {"user_name": regex},
            {"action": regex},
        ]

    cursor = mongo.db.audit_logs.find(query).sort("created_at", -1).skip(skip).limit(limit)
    logs = [serialize_audit_log(document) for document in cursor]
    total = mongo.db.audit_logs.count_documents(query)

    return jsonify(
        {
            "logs": logs,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": total_pages(total, limit),
            },
        }
    )


@bp.route("/logs", methods=["DELETE"])
@jwt_required()
def admin_delete_logs():
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    payload = request.get_json(silent=True) or {}
    delete_query = _date_filter(
        payload.get("from") or payload.get("start"),
        payload.get("to") or payload.get("end"),
    )
    result = mongo.db.audit_logs.delete_many(delete_query)

    record_audit_log(
        admin_user.get("email"),
        "Deleted audit logs",
        {
            "count": str(result.deleted_count),
            "range": "filtered" if delete_query else "all",
        },
    )

    return jsonify(
        {
            "message": f"Removed {result.deleted_count} audit log entries.",
            "deleted": result.deleted_count,
        }
    )
