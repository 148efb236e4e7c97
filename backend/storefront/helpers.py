import math
import re
import unicodedata
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId

from .errors import ValidationError

SUPPORTED_LANGUAGES = ("en", "zh-TW")
DEFAULT_LANGUAGE = "en"

email_regex = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
phone_regex = re.compile(r"^\d{8,}$")


def utcnow() -> datetime:
    # pymongo hands back naive UTC datetimes, so everything stored stays naive
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def is_valid_email(value: Optional[str]) -> bool:
    normalized = normalize_email(value)
    return bool(normalized and email_regex.match(normalized))


def is_valid_phone(value) -> bool:
    return bool(phone_regex.match(str(value or "").strip()))


def safe_float(value, default=0.0):
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return default
    if math.isfinite(numeric):
        return numeric
    return default


def safe_positive_int(value, default=0):
    try:
        numeric = int(float(value))
    except (TypeError, ValueError):
        return default
    return max(default, numeric)


def parse_bool(value, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    normalized = str(value).strip().lower()
    if normalized in {"true", "1", "yes", "on"}:
        return True
    if normalized in {"false", "0", "no", "off"}:
        return False
    return default


def normalize_object_id_value(value):
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def normalize_object_id_list(values) -> List[ObjectId]:
    normalized_ids: List[ObjectId] = []
    if not values:
        return normalized_ids
    for value in values:
        object_id = normalize_object_id_value(value)
        if object_id is not None:
            normalized_ids.append(object_id)
    return normalized_ids


def parse_iso_date(value, *, end_of_day: bool = False):
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if not value:
        return None
    candidate = str(value).strip()
    if not candidate:
        return None
    normalized = candidate.replace("Z", "+00:00")
    if re.fullmatch(r"\d{4}-\d{2}-\d{2}", candidate):
        normalized = f"{candidate}T00:00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    if end_of_day and re.fullmatch(r"\d{4}-\d{2}-\d{2}", candidate):
        return parsed + timedelta(days=1)
    return parsed


def isoformat(value) -> Optional[str]:
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is not None:
        return value.isoformat()
    return f"{value.isoformat()}Z"


def slugify(value: Optional[str], max_length: int = 200) -> str:
    condensed = " ".join(str(value or "").split()).lower()
    ascii_name = (
        unicodedata.normalize("NFKD", condensed).encode("ascii", "ignore").decode("ascii")
    )
    return re.sub(r"[^a-z0-9]+", "-", ascii_name).strip("-")[:max_length].strip("-")


def unique_slug(collection, base_slug: str, exclude_id=None) -> str:
    """Return ``base_slug`` or the first free ``base_slug-N`` in ``collection``."""
    counter = 0
    while True:
        candidate = base_slug if counter == 0 else f"{base_slug}-{counter}"
        query: Dict[str, object] = {"slug": candidate}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        if not collection.find_one(query, {"_id": 1}):
            return candidate
        counter += 1


def resolve_language(value: Optional[str]) -> str:
    candidate = str(value or "").strip()
    if candidate in SUPPORTED_LANGUAGES:
        return candidate
    # accept legacy lowercase codes such as "zh-tw"
    for language in SUPPORTED_LANGUAGES:
        if candidate.lower() == language.lower():
            return language
    return DEFAULT_LANGUAGE


def normalize_multilang(
    value, field_name: str, *, required: bool = True, fallback: str = ""
) -> Dict[str, str]:
    """Coerce ``value`` into a ``{"en": ..., "zh-TW": ...}`` pair.

    A bare string fills both languages. With ``required`` set, both
    translations must be non-empty or a ``ValidationError`` is raised naming
    the missing languages.
    """
    if isinstance(value, str):
        value = {language: value for language in SUPPORTED_LANGUAGES}
    if value is None:
        value = {}
    if not isinstance(value, dict):
        raise ValidationError(f"{field_name} must be an object with en and zh-TW keys.")

    normalized: Dict[str, str] = {}
    for language in SUPPORTED_LANGUAGES:
        normalized[language] = str(value.get(language) or fallback or "").strip()

    if required:
        missing = [language for language in SUPPORTED_LANGUAGES if not normalized[language]]
        if missing:
            raise ValidationError(
                f"{field_name} is missing translations.",
                {"field": field_name, "missing": missing},
            )
    return normalized


def localized(value, language: str, fallback: str = "") -> str:
    if isinstance(value, dict):
        text = value.get(language) or value.get(DEFAULT_LANGUAGE)
        if text:
            return str(text)
    return fallback or ""


def parse_pagination(args, default_limit: int = 10, max_limit: int = 100) -> Tuple[int, int, int]:
    page = max(safe_positive_int(args.get("page"), 1), 1)
    limit = safe_positive_int(args.get("limit"), 0) or default_limit
    limit = min(max(limit, 1), max_limit)
    return page, limit, (page - 1) * limit


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if total else 0


def serialize_value(value):
    """Recursively make a Mongo document JSON-safe (ids and dates as strings)."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return isoformat(value)
    if isinstance(value, bytes):
        return None
    if isinstance(value, dict):
        return {
            ("id" if key == "_id" else key): serialize_value(item)
            for key, item in value.items()
            if key != "password"
        }
    if isinstance(value, (list, tuple)):
        return [serialize_value(item) for item in value]
    return value


def normalize_address(value, field_name: str = "address", *, required: bool = False) -> Dict:
    """Multilingual address with optional ``coordinates`` ``{lat, lng}``."""
    if isinstance(value, dict):
        address: Dict[str, object] = dict(
            normalize_multilang(value, field_name, required=required)
        )
        coordinates = value.get("coordinates")
        if isinstance(coordinates, dict):
            address["coordinates"] = {
                "lat": safe_float(coordinates.get("lat"), None),
                "lng": safe_float(coordinates.get("lng"), None),
            }
        return address
    return dict(normalize_multilang(value, field_name, required=required))
