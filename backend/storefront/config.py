import os
from datetime import timedelta
from typing import Dict, List, Optional

from dotenv import load_dotenv

load_dotenv()


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name, default) or default).strip()


def _env_int(name: str, default: int) -> int:
    raw_value = os.getenv(name)
    try:
        return int(str(raw_value).strip())
    except (TypeError, ValueError):
        return default


def build_allowed_origins() -> List[str]:
    allowed_origins = [
        "http://localhost:3000",
        "http://localhost:5173",
        _env("FRONTEND_URL"),
        _env("APP_BASE_URL"),
    ]
    cors_extra = _env("CORS_ALLOWED_ORIGINS")
    if cors_extra:
        for origin in cors_extra.split(","):
            trimmed = origin.strip()
            if trimmed:
                allowed_origins.append(trimmed)
    return [origin for origin in allowed_origins if origin]


def default_settings() -> Dict[str, object]:
    return {
        "MONGO_URI": _env("MONGO_URI", "mongodb://localhost:27017/storefront"),
        "JWT_SECRET_KEY": _env("JWT_SECRET_KEY", "change-me-in-production"),
        "JWT_ACCESS_TOKEN_EXPIRES": timedelta(hours=_env_int("JWT_EXPIRES_HOURS", 12)),
        "JWT_TOKEN_LOCATION": ["headers", "cookies"],
        "JWT_COOKIE_SECURE": _env("JWT_COOKIE_SECURE", "false").lower() == "true",
        "JWT_COOKIE_CSRF_PROTECT": _env("JWT_COOKIE_CSRF_PROTECT", "true").lower()
        == "true",
        "DEFAULT_ADMIN_EMAIL": _env("DEFAULT_ADMIN_EMAIL").lower(),
        "TRUSTED_PROXY_HOPS": _env_int("TRUSTED_PROXY_HOPS", 1),
        "CORS_ALLOWED_ORIGINS": build_allowed_origins(),
        "LOG_LEVEL": _env("LOG_LEVEL", "INFO").upper(),
        "STORE_NAME": _env("STORE_NAME", "Storefront"),
        "APP_BASE_URL": _env("APP_BASE_URL"),
        "RESEND_API_KEY": _env("RESEND_API_KEY"),
        "ORDER_EMAIL_SENDER": _env("ORDER_EMAIL_SENDER", "orders@storefront.local"),
        "STRIPE_SECRET_KEY": _env("STRIPE_SECRET_KEY"),
        "STRIPE_WEBHOOK_SECRET": _env("STRIPE_WEBHOOK_SECRET"),
        "STRIPE_CURRENCY": _env("STRIPE_CURRENCY", "hkd").lower(),
        "WEBHOOK_TOLERANCE_SECONDS": _env_int("WEBHOOK_TOLERANCE_SECONDS", 300),
        "CLOUDINARY_CLOUD_NAME": _env("CLOUDINARY_CLOUD_NAME"),
        "CLOUDINARY_API_KEY": _env("CLOUDINARY_API_KEY"),
        "CLOUDINARY_API_SECRET": _env("CLOUDINARY_API_SECRET"),
        "CLOUDINARY_UPLOAD_PRESET": _env("CLOUDINARY_UPLOAD_PRESET"),
    }


def apply_config(app, test_config: Optional[Dict[str, object]] = None) -> None:
    app.config.from_mapping(default_settings())
    if test_config:
        app.config.from_mapping(test_config)
