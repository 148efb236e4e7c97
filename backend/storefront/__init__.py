import logging
from typing import Dict, Optional

from flask import Flask
from werkzeug.middleware.proxy_fix import ProxyFix

from .config import apply_config
from .errors import register_error_handlers
from .extensions import cors, jwt, mongo

INDEX_SPECS = (
    ("users", "email", {"unique": True}),
    ("products", "slug", {"unique": True}),
    ("categories", "slug", {"unique": True}),
    ("brands", "slug", {"unique": True}),
    ("blog_posts", "slug", {"unique": True}),
    ("invoices", "invoice_number", {"unique": True}),
    ("logistics", "registration_no", {"unique": True}),
    ("logistics", "chassis_no", {"unique": True}),
    ("newsletter", "email", {"unique": True}),
    ("orders", [("user", 1), ("created_at", -1)], {}),
    ("audit_logs", [("created_at", -1)], {}),
    ("audit_logs", [("user_email", 1), ("user_name", 1), ("action", 1)], {}),
    (
        "invoice_counters",
        [("year", 1), ("month", 1), ("period_type", 1), ("period_number", 1)],
        {"unique": True},
    ),
)


def ensure_indexes(app: Flask) -> None:
    for collection_name, keys, options in INDEX_SPECS:
        try:
            mongo.db[collection_name].create_index(keys, **options)
        except Exception as exc:
            app.logger.warning("Unable to ensure index on %s: %s", collection_name, exc)


def register_blueprints(app: Flask) -> None:
    from .routes import (
        audit_logs,
        auth_routes,
        blog,
        brands,
        catalog,
        categories,
        checkout,
        content,
        invoices,
        logistics,
        newsletter,
        orders,
        reviews,
        settings,
        specifications,
        users,
        webhook,
    )

    for module in (
        auth_routes,
        users,
        catalog,
        categories,
        specifications,
        brands,
        reviews,
        checkout,
        webhook,
        orders,
        invoices,
        logistics,
        newsletter,
        blog,
        content,
        settings,
        audit_logs,
    ):
        app.register_blueprint(module.bp)


def create_app(test_config: Optional[Dict[str, object]] = None) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    apply_config(app, test_config)
    app.logger.setLevel(getattr(logging, str(app.config["LOG_LEVEL"]), logging.INFO))

    # Honor proxy headers so redirect URLs keep the public HTTPS origin.
    trusted_proxy_hops = max(0, int(app.config.get("TRUSTED_PROXY_HOPS") or 0))
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
            x_port=trusted_proxy_hops,
        )

    cors.init_app(
        app,
        supports_credentials=True,
        origins=app.config["CORS_ALLOWED_ORIGINS"] or "*",
    )
    jwt.init_app(app)
    mongo.init_app(app)

    register_error_handlers(app, jwt)
    register_blueprints(app)

    if not app.testing:
        ensure_indexes(app)

    return app
