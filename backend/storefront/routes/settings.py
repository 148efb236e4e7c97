import copy
import re
from typing import Dict

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from ..audit import record_audit_log
from ..auth import require_admin_user
from ..errors import ValidationError, error_response
from ..extensions import mongo
from ..helpers import SUPPORTED_LANGUAGES, safe_float, serialize_value, utcnow

bp = Blueprint("settings", __name__, url_prefix="/api")

HEX_COLOR_PATTERN = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


def _ml(default: str = "") -> Dict[str, str]:
    return {language: default for language in SUPPORTED_LANGUAGES}


STORE_SETTINGS_DEFAULTS = {
    "store_name": _ml(),
    "slogan": _ml(),
    "copyright": _ml("© {{year}} {{storeName}}"),
    "logo": "",
    "contact_info": {"email": "", "phone": ""},
    "business_hours": {"weekdays": _ml(), "weekends": _ml()},
    "social_media": {"facebook": "", "instagram": "", "twitter": ""},
    "shipping_info": {
        "standard_days": "",
        "express_days": "",
        "international_shipping": False,
        "show": True,
        "title": _ml(),
        "standard_shipping": _ml(),
        "express_shipping": _ml(),
    },
    "return_policy": {"days_to_return": 30, "conditions": _ml(), "show": True, "title": _ml()},
    "newsletter_settings": {
        "title": _ml(),
        "subtitle": _ml(),
        "banner_image": "",
        "discount_percentage": 0,
        "button_text": _ml(),
        "disclaimer": _ml(),
        "background_color": "#f8f9fa",
        "text_color": "#1a1a1a",
    },
    "about_page": {"title": _ml(), "subtitle": _ml(), "banner_image": "", "story": {}, "values": {}, "team": {}},
    "contact_page": {"title": _ml(), "subtitle": _ml(), "banner_image": "", "contact_info": {}, "faq": {}},
    "privacy_policy": {"title": _ml(), "subtitle": _ml(), "sections": [], "contact_info": {}},
}

THEME_MODE_DEFAULTS = {
    "light": {
        "background": "#ffffff",
        "card": "#ffffff",
        "navbar": "#ffffff",
        "text": "#000000",
        "muted_text": "#666666",
        "border": "#e5e7eb",
        "footer": "#f9fafb",
        "card_border": "#e5e7eb",
        "card_item_border": "#e5e7eb",
        "background_opacity": 100,
        "card_opacity": 100,
        "navbar_opacity": 100,
    },
    "dark": {
        "background": "#1a1a1a",
        "card": "#1e1e1e",
        "navbar": "#1e1e1e",
        "text": "#ffffff",
        "muted_text": "#a1a1a1",
        "border": "#374151",
        "footer": "#111827",
        "card_border": "#374151",
        "card_item_border": "#374151",
        "background_opacity": 100,
        "card_opacity": 100,
        "navbar_opacity": 100,
    },
}


def get_store_settings():
    """Return the single store-settings document, creating defaults on first use."""
    settings = mongo.db.store_settings.find_one({})
    if settings:
        return settings
    settings = copy.deepcopy(STORE_SETTINGS_DEFAULTS)
    settings["created_at"] = utcnow()
    settings["_id"] = mongo.db.store_settings.insert_one(settings).inserted_id
    return settings


def merge_store_settings(current: Dict, changes) -> Dict[str, object]:
    """Merge ``changes`` onto ``current`` one section at a time.

    Dict sections are merged key by key so a partial section keeps the
    stored values of keys it leaves out.
    """
    if not isinstance(changes, dict) or not changes:
        raise ValidationError("No settings provided")

    unknown = sorted(key for key in changes if key not in STORE_SETTINGS_DEFAULTS)
    if unknown:
        raise ValidationError("Unknown store settings.", {"unknown": unknown})

    updates: Dict[str, object] = {}
    for section, value in changes.items():
        default = STORE_SETTINGS_DEFAULTS[section]
        if isinstance(default, dict):
            if not isinstance(value, dict):
                raise ValidationError(f"{section} must be an object.", {"field": section})
            stored = current.get(section) if isinstance(current.get(section), dict) else {}
            updates[section] = {**default, **stored, **value}
        else:
            if not isinstance(value, str):
                raise ValidationError(f"{section} must be a string.", {"field": section})
            updates[section] = value.strip()

    return_policy = updates.get("return_policy")
    if return_policy is not None:
        days = safe_float(return_policy.get("days_to_return"), -1)
        if days < 0:
            raise ValidationError("return_policy.days_to_return must be a non-negative number.")
        return_policy["days_to_return"] = int(days)
    return updates


def normalize_theme_settings(theme_settings) -> Dict[str, Dict]:
    if not isinstance(theme_settings, dict) or not theme_settings:
        raise ValidationError("No theme settings provided")

    normalized: Dict[str, Dict] = {}
    for mode, defaults in THEME_MODE_DEFAULTS.items():
        values = theme_settings.get(mode) or {}
        if not isinstance(values, dict):
            raise ValidationError(f"{mode} theme must be an object.", {"field": mode})
        merged = dict(defaults)
        for key, value in values.items():
            if key not in defaults:
                raise ValidationError(f"Unknown theme setting {mode}.{key}.", {"field": f"{mode}.{key}"})
            if key.endswith("_opacity"):
                opacity = safe_float(value, -1)
                if not 0 <= opacity <= 100:
                    raise ValidationError(
                        f"{mode}.{key} must be between 0 and 100.", {"field": f"{mode}.{key}"}
                    )
                merged[key] = int(opacity)
            else:
                if not HEX_COLOR_PATTERN.match(str(value or "")):
                    raise ValidationError(
                        f"{mode}.{key} must be a hex color.", {"field": f"{mode}.{key}"}
                    )
                merged[key] = str(value).lower()
        normalized[mode] = merged
    return normalized


@bp.route("/store-settings", methods=["GET"])
def read_store_settings():
    return jsonify(serialize_value(get_store_settings()))


@bp.route("/store-settings", methods=["POST", "PUT"])
@jwt_required()
def update_store_settings():
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    settings = get_store_settings()
    payload = request.get_json(silent=True) or {}
    updates = merge_store_settings(settings, payload.get("settings"))
    updates["updated_at"] = utcnow()
    mongo.db.store_settings.update_one({"_id": settings["_id"]}, {"$set": updates})

    record_audit_log(
        admin_user.get("email"),
        "Updated store settings",
        {"sections": ",".join(sorted(key for key in updates if key != "updated_at"))},
    )
    return jsonify(serialize_value(mongo.db.store_settings.find_one({"_id": settings["_id"]})))


@bp.route("/theme-settings", methods=["GET"])
def read_theme_settings():
    settings = mongo.db.store_settings.find_one({}, {"theme_settings": 1})
    theme_settings = (settings or {}).get("theme_settings")
    if not theme_settings:
        theme_settings = copy.deepcopy(THEME_MODE_DEFAULTS)
    return jsonify({"theme_settings": theme_settings})


@bp.route("/theme-settings", methods=["POST", "PUT"])
@jwt_required()
def update_theme_settings():
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    payload = request.get_json(silent=True) or {}
    if not payload.get("theme_settings"):
        return error_response("No theme settings provided", 400)
    theme_settings = normalize_theme_settings(payload.get("theme_settings"))

    settings = get_store_settings()
    mongo.db.store_settings.update_one(
        {"_id": settings["_id"]},
        {"$set": {"theme_settings": theme_settings, "updated_at": utcnow()}},
    )
    record_audit_log(admin_user.get("email"), "Updated theme settings")
    return jsonify({"theme_settings": theme_settings})
