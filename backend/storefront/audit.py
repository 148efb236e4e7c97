from typing import Dict, Optional

from flask import current_app

from .auth import get_user_role
from .extensions import mongo
from .helpers import isoformat, normalize_email, utcnow


def sanitize_metadata(metadata: Optional[Dict]) -> Dict[str, str]:
    if not isinstance(metadata, dict):
        return {}
    sanitized: Dict[str, str] = {}
    for key, value in metadata.items():
        if value is None:
            continue
        sanitized[str(key)] = str(value)
    return sanitized


def record_audit_log(actor_email: Optional[str], action: str, metadata: Optional[Dict] = None):
    if not action:
        return
    try:
        normalized_email = normalize_email(actor_email)
        log_document = {
            "user_email": normalized_email or None,
            "user_name": "",
            "action": action,
            "metadata": sanitize_metadata(metadata),
            "created_at": utcnow(),
        }
        if normalized_email:
            user_document = mongo.db.users.find_one({"email": normalized_email})
            if user_document:
                log_document["user_name"] = user_document.get("name", "") or ""
                log_document["metadata"].setdefault("user_role", get_user_role(user_document))
        mongo.db.audit_logs.insert_one(log_document)
    except Exception as exc:
        current_app.logger.warning("Unable to record audit log: %s", exc)


def serialize_audit_log(document):
    if not document:
        return {}
    metadata = document.get("metadata")
    return {
        "id": str(document.get("_id")),
        "user_email": document.get("user_email") or "",
        "user_name": document.get("user_name") or "",
        "action": document.get("action") or "",
        "metadata": metadata if isinstance(metadata, dict) else {},
        "created_at": isoformat(document.get("created_at")),
    }
