"""Per-category product specification schemas (admin only)."""

from typing import Dict, List

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from ..audit import record_audit_log
from ..auth import require_admin_user
from ..errors import ValidationError, error_response
from ..extensions import mongo
from ..helpers import normalize_multilang, normalize_object_id_value, parse_bool, slugify, utcnow

bp = Blueprint("specifications", __name__, url_prefix="/api/admin/specifications")

SPECIFICATION_TYPES = ("text", "number", "select")

# Display names for keys that predate bilingual specifications.
KNOWN_SPECIFICATION_NAMES = {
    "manufactury_country": {"en": "Manufacturing Country", "zh-TW": "製造國"},
    "origin": {"en": "Country of Origin", "zh-TW": "原產地"},
    "material": {"en": "Material", "zh-TW": "材質"},
    "weight": {"en": "Weight", "zh-TW": "重量"},
    "size": {"en": "Size", "zh-TW": "尺寸"},
}


def specification_key(english_name: str) -> str:
    return slugify(english_name).replace("-", "_")


def normalize_specifications(specifications) -> List[Dict]:
    """Validate a category's specification list.

    Keys are derived from the English display name and must be unique within
    the category; ``select`` specifications need at least one option.
    """
    if not isinstance(specifications, list):
        raise ValidationError("specifications must be a list.")

    normalized: List[Dict] = []
    for index, spec in enumerate(specifications, start=1):
        if not isinstance(spec, dict):
            raise ValidationError(f"Specification {index} must be an object.")
        display_names = normalize_multilang(
            spec.get("display_names"), f"specifications[{index}].display_names"
        )
        spec_type = spec.get("type") or "text"
        if spec_type not in SPECIFICATION_TYPES:
            raise ValidationError(
                f"Specification {index} has an invalid type.",
                {"field": "type", "allowed": list(SPECIFICATION_TYPES)},
            )

        options: List[str] = []
        if spec_type == "select":
            raw_options = spec.get("options") if isinstance(spec.get("options"), list) else []
            options = [str(option).strip() for option in raw_options if str(option or "").strip()]
            if not options:
                raise ValidationError(f"Specification {index} needs options for a select field.")

        normalized.append(
            {
                "key": specification_key(display_names["en"]),
                "label": display_names["en"],
                "type": spec_type,
                "options": options,
                "required": parse_bool(spec.get("required"), False),
                "display_names": display_names,
                "descriptions": normalize_multilang(
                    spec.get("descriptions"), "descriptions", required=False
                ),
            }
        )

    keys = [spec["key"] for spec in normalized]
    duplicates = sorted({key for key in keys if keys.count(key) > 1})
    if duplicates:
        raise ValidationError(
            f"Duplicate specification keys found: {', '.join(duplicates)}",
            {"duplicates": duplicates},
        )
    return normalized


def fill_specification_names(spec: Dict) -> Dict:
    key = str(spec.get("key") or "")
    if key in KNOWN_SPECIFICATION_NAMES:
        names = dict(KNOWN_SPECIFICATION_NAMES[key])
        return {**spec, "display_names": names, "label": names["en"]}

    formatted = " ".join(word.capitalize() for word in key.split("_") if word)
    current = spec.get("display_names") if isinstance(spec.get("display_names"), dict) else {}
    return {
        **spec,
        "display_names": {
            "en": current.get("en") or formatted,
            "zh-TW": current.get("zh-TW") or formatted,
        },
        "label": spec.get("label") or formatted,
    }


def _find_category(category_id: str):
    object_id = normalize_object_id_value(category_id)
    if object_id is None:
        return None, error_response("Invalid category ID format", 400)
    category = mongo.db.categories.find_one({"_id": object_id}, {"specifications": 1, "name": 1})
    if not category:
        return None, error_response("Category not found", 404)
    return category, None


@bp.route("/<category_id>", methods=["GET"])
@jwt_required()
def get_specifications(category_id: str):
    _, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    category, error = _find_category(category_id)
    if error:
        return error
    return jsonify({"specifications": category.get("specifications") or []})


@bp.route("/<category_id>", methods=["PUT", "POST"])
@jwt_required()
def save_specifications(category_id: str):
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    category, error = _find_category(category_id)
    if error:
        return error

    payload = request.get_json(silent=True) or {}
    specifications = normalize_specifications(payload.get("specifications"))
    mongo.db.categories.update_one(
        {"_id": category["_id"]},
        {"$set": {"specifications": specifications, "updated_at": utcnow()}},
    )
    record_audit_log(
        admin_user.get("email"),
        "Updated category specifications",
        {"category_id": category_id, "category_name": category.get("name"), "count": len(specifications)},
    )
    return jsonify({"message": "Specifications saved successfully", "specifications": specifications})


@bp.route("/update-translations", methods=["POST"])
@jwt_required()
def update_specification_translations():
    admin_user, admin_error = require_admin_user()
    if admin_error:
        return admin_error

    updated = 0
    for category in mongo.db.categories.find({}, {"specifications": 1}):
        if not category.get("specifications"):
            continue
        specifications = [
            fill_specification_names(spec)
            for spec in category["specifications"]
            if isinstance(spec, dict)
        ]
        mongo.db.categories.update_one(
            {"_id": category["_id"]}, {"$set": {"specifications": specifications}}
        )
        updated += 1

    record_audit_log(
        admin_user.get("email"), "Updated specification translations", {"categories": updated}
    )
    return jsonify({"success": True, "updated": updated})
