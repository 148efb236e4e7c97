from typing import Dict, Optional

from flask import current_app, jsonify
from werkzeug.exceptions import HTTPException


class ValidationError(Exception):
    """Raised by normalizers when a payload cannot be stored as-is."""

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details


def error_response(message: str, status_code: int, **extra):
    body: Dict[str, object] = {"error": message}
    for key, value in extra.items():
        if value is not None:
            body[key] = value
    return jsonify(body), status_code


def register_error_handlers(app, jwt_manager) -> None:
    @app.errorhandler(ValidationError)
    def handle_validation_error(exc: ValidationError):
        return error_response(exc.message, 400, details=exc.details)

    @app.errorhandler(HTTPException)
    def handle_http_exception(exc: HTTPException):
        return error_response(exc.description or exc.name, exc.code or 500)

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc: Exception):
        current_app.logger.exception("Unhandled error: %s", exc)
        return error_response("Internal server error", 500)

    @jwt_manager.unauthorized_loader
    def handle_missing_token(reason: str):
        return error_response("Authentication required", 401)

    @jwt_manager.invalid_token_loader
    def handle_invalid_token(reason: str):
        return error_response("Invalid session token", 401)

    @jwt_manager.expired_token_loader
    def handle_expired_token(jwt_header, jwt_payload):
        return error_response("Session expired, please sign in again", 401)
