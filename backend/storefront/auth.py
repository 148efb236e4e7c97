from typing import Optional

from flask import current_app
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request

from .errors import error_response
from .extensions import mongo
from .helpers import normalize_email

ALLOWED_USER_ROLES = {"admin", "accounting", "logistics", "user"}


def normalize_role(value: Optional[str]) -> str:
    normalized = str(value or "").strip().lower()
    return normalized if normalized in ALLOWED_USER_ROLES else "user"


def default_admin_email() -> str:
    return normalize_email(current_app.config.get("DEFAULT_ADMIN_EMAIL"))


def get_user_role(user_document) -> str:
    if not user_document:
        return "user"

    email = normalize_email(user_document.get("email"))
    if email and email == default_admin_email():
        return "admin"
    if user_document.get("admin") is True:
        return "admin"

    return normalize_role(user_document.get("role", "user"))


def is_admin(user_document) -> bool:
    return get_user_role(user_document) == "admin"


def current_user():
    current_email = normalize_email(get_jwt_identity())
    if not current_email:
        return None
    return mongo.db.users.find_one({"email": current_email})


def optional_current_user():
    """Return the caller's user document when a valid token is present."""
    verify_jwt_in_request(optional=True)
    if not get_jwt_identity():
        return None
    return current_user()


def require_login():
    user = current_user()
    if not user:
        return None, error_response("Authentication required", 401)
    return user, None


def require_role(*roles: str):
    """Return ``(user, None)`` when the caller holds one of ``roles``.

    Administrators pass every role check. On failure the second element is
    a ready-made 401 response tuple.
    """
    allowed = {normalize_role(role) for role in roles if role}

    user = current_user()
    if not user:
        return None, error_response("Authentication required", 401)

    user_role = get_user_role(user)
    if user_role == "admin" or not allowed or user_role in allowed:
        return user, None

    return None, error_response("Administrator access required", 401)


def require_admin_user():
    return require_role("admin")
